"""
Layer descriptors for a sequential network.

A descriptor is a plain record tagged by its ``type``. It carries the fields
its operator needs (see ``_operators``) and nothing else; the numerical work
is dispatched on the tag.
"""
import copy

import numpy as np

from ..exceptions import UnknownPoolingMethod

POOLING_METHODS = ('max', 'avg')

# Fields attached for optimisation only. They are removed before a model is
# exported for inference; new optimizer state must be listed here.
TRAINING_FIELDS = (
    'filters_momentum',
    'biases_momentum',
    'filters_learning_rate',
    'biases_learning_rate',
    'filters_weight_decay',
    'biases_weight_decay',
    'labels',
)


def _pair(value):
    """Expand a scalar to a (vertical, horizontal) pair."""
    if np.isscalar(value):
        return (int(value), int(value))
    value = tuple(int(v) for v in value)
    if len(value) != 2:
        raise ValueError(f"Expected a scalar or a pair, got {value}")
    return value


def _padding(value):
    """Expand padding to (top, bottom, left, right)."""
    if np.isscalar(value):
        return (int(value),) * 4
    value = tuple(int(v) for v in value)
    if len(value) == 2:
        return (value[0], value[0], value[1], value[1])
    if len(value) != 4:
        raise ValueError(f"Padding must have 1, 2 or 4 entries, got {value}")
    return value


def check_pooling_method(method):
    """Raise UnknownPoolingMethod unless `method` is 'max' or 'avg'."""
    if method not in POOLING_METHODS:
        raise UnknownPoolingMethod(method)
    return method


class Layer:
    """Base class for all layer descriptors."""

    type = None

    def __init__(self, name=None):
        self.name = name

    @property
    def params(self):
        """Names of the learnable array fields."""
        return ()

    def copy(self):
        """Deep copy, arrays included."""
        return copy.deepcopy(self)

    def strip(self):
        """Return a copy without any training-only field."""
        layer = self.copy()
        for field in TRAINING_FIELDS:
            layer.__dict__.pop(field, None)
        return layer

    def to_dict(self):
        """
        Split the descriptor into a JSON-able record and its arrays.

        Returns:
            tuple: (record, arrays) where record holds the ``type`` tag and the
                scalar fields, arrays maps field names to ndarrays
        """
        record = {'type': self.type}
        arrays = {}
        for key, value in self.__dict__.items():
            if isinstance(value, np.ndarray):
                arrays[key] = value
            elif isinstance(value, tuple):
                record[key] = list(value)
            else:
                record[key] = value
        return record, arrays

    @staticmethod
    def from_dict(record, arrays=None):
        """Rebuild a descriptor from the output of `to_dict`."""
        fields = dict(record)
        layer_type = fields.pop('type', None)
        if layer_type not in LAYER_TYPES:
            raise ValueError(f"Unknown layer type: {layer_type!r}")
        layer_cls = LAYER_TYPES[layer_type]
        layer = layer_cls.__new__(layer_cls)
        for key, value in fields.items():
            layer.__dict__[key] = tuple(value) if isinstance(value, list) else value
        for key, value in (arrays or {}).items():
            layer.__dict__[key] = np.asarray(value)
        return layer

    def __eq__(self, other):
        if type(self) is not type(other):
            return False
        if self.__dict__.keys() != other.__dict__.keys():
            return False
        for key, value in self.__dict__.items():
            theirs = other.__dict__[key]
            if isinstance(value, np.ndarray) or isinstance(theirs, np.ndarray):
                if not (isinstance(value, np.ndarray) and isinstance(theirs, np.ndarray)
                        and np.array_equal(value, theirs)):
                    return False
            elif value != theirs:
                return False
        return True

    __hash__ = None

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


class ConvLayer(Layer):
    """
    Convolution (also used for fully connected layers as 1x1 or full-size filters).

    Filters have shape (filter_h, filter_w, filter_channels, n_filters). When the
    input has more channels than `filter_channels` the filters are applied in
    groups, as in the two-tower AlexNet layers.
    """

    type = 'conv'

    def __init__(self, name=None, filters=None, biases=None, stride=1, pad=0,
                 filters_learning_rate=None, biases_learning_rate=None,
                 filters_weight_decay=None, biases_weight_decay=None):
        super().__init__(name)
        if filters is None:
            raise ValueError("A conv layer needs a filter bank")
        self.filters = np.asarray(filters)
        if self.filters.ndim != 4:
            raise ValueError(f"Filters must be 4-D, got shape {self.filters.shape}")
        if biases is None:
            biases = np.zeros(self.filters.shape[3], dtype=self.filters.dtype)
        self.biases = np.asarray(biases).reshape(-1)
        if self.biases.shape[0] != self.filters.shape[3]:
            raise ValueError(
                f"Expected {self.filters.shape[3]} biases, got {self.biases.shape[0]}")
        self.stride = _pair(stride)
        self.pad = _padding(pad)
        self.filters_learning_rate = filters_learning_rate
        self.biases_learning_rate = biases_learning_rate
        self.filters_weight_decay = filters_weight_decay
        self.biases_weight_decay = biases_weight_decay
        self.filters_momentum = None
        self.biases_momentum = None

    @property
    def params(self):
        return ('filters', 'biases')

    @property
    def output_width(self):
        """Number of output channels."""
        return self.filters.shape[3]

    def __repr__(self):
        return (f"ConvLayer(name={self.name!r}, filters={self.filters.shape}, "
                f"stride={self.stride}, pad={self.pad})")


class ReLULayer(Layer):
    """Rectified linear unit."""

    type = 'relu'


class PoolLayer(Layer):
    """Spatial max or average pooling."""

    type = 'pool'

    def __init__(self, name=None, method='max', pool=(3, 3), stride=2, pad=0):
        super().__init__(name)
        self.method = check_pooling_method(method)
        self.pool = _pair(pool)
        self.stride = _pair(stride)
        self.pad = _padding(pad)

    def __repr__(self):
        return (f"PoolLayer(name={self.name!r}, method={self.method!r}, "
                f"pool={self.pool}, stride={self.stride})")


class NormalizeLayer(Layer):
    """Local response normalization across channels: (depth, kappa, alpha, beta)."""

    type = 'normalize'

    def __init__(self, name=None, param=(5, 1, 0.0001 / 5, 0.75)):
        super().__init__(name)
        if len(param) != 4:
            raise ValueError(f"LRN needs (depth, kappa, alpha, beta), got {param}")
        self.param = (int(param[0]), float(param[1]), float(param[2]), float(param[3]))


class DropoutLayer(Layer):
    """Dropout; active only during training."""

    type = 'dropout'

    def __init__(self, name=None, rate=0.5):
        super().__init__(name)
        if not 0.0 <= rate < 1.0:
            raise ValueError(f"Dropout rate must be in [0, 1), got {rate}")
        self.rate = float(rate)

    def __repr__(self):
        return f"DropoutLayer(name={self.name!r}, rate={self.rate})"


class SoftmaxLossLayer(Layer):
    """Softmax followed by the multinomial log loss."""

    type = 'softmaxloss'

    def __init__(self, name=None):
        super().__init__(name)
        self.labels = None


class SoftmaxLayer(Layer):
    """Softmax over the channel axis."""

    type = 'softmax'


class ViewPoolLayer(Layer):
    """
    Pool the views of every object into a single slice.

    `stride` is the number of views per object; the instance axis of the input
    must hold them contiguously.
    """

    type = 'viewpool'

    def __init__(self, name='viewpool', stride=1, method='max'):
        super().__init__(name)
        if int(stride) != stride or stride < 1:
            raise ValueError(f"View stride must be a positive integer, got {stride}")
        self.stride = int(stride)
        self.method = check_pooling_method(method)

    def __repr__(self):
        return (f"ViewPoolLayer(name={self.name!r}, stride={self.stride}, "
                f"method={self.method!r})")


LAYER_TYPES = {
    layer_cls.type: layer_cls
    for layer_cls in (ConvLayer, ReLULayer, PoolLayer, NormalizeLayer,
                      DropoutLayer, SoftmaxLossLayer, SoftmaxLayer, ViewPoolLayer)
}
