"""
Edits of a layer list: dropout and view pooling insertion, head replacement,
and stripping for deployment.

Every function returns a new list of copied descriptors and leaves its input
untouched, so several network variants can be derived from one base.
"""
import numpy as np

from ..exceptions import LayerNotFound
from .layers import (
    ConvLayer,
    DropoutLayer,
    SoftmaxLayer,
    SoftmaxLossLayer,
    ViewPoolLayer,
    check_pooling_method
)


def _copied(layers):
    return [layer.copy() for layer in layers]


def find_layer(layers, name):
    """Index of the first layer called `name`; LayerNotFound otherwise."""
    for i, layer in enumerate(layers):
        if layer.name == name:
            return i
    raise LayerNotFound(name)


def add_dropout(layers, rate=0.5):
    """
    Insert dropout in front of the last two fully connected layers.

    The list is expected to end with ``fc, relu, fc, relu, fc, loss`` (the
    layout of the VGG/AlexNet family); dropout goes in front of the second and
    third fc layers.

    Args:
        layers (list): Layer descriptors
        rate (float): Dropout rate

    Returns:
        list: New layer list, two layers longer
    """
    if len(layers) < 6:
        raise ValueError(
            f"Dropout insertion needs at least 6 layers, got {len(layers)}")
    layers = _copied(layers)

    def dropout_before(layer):
        name = f"dropout_{layer.name}" if layer.name else 'dropout'
        return DropoutLayer(name=name, rate=rate)

    return (layers[:-4]
            + [dropout_before(layers[-4])] + layers[-4:-2]
            + [dropout_before(layers[-2])] + layers[-2:])


def insert_layer(layers, layer, loc):
    """
    Insert `layer` immediately after the first layer named `loc`.

    Raises:
        LayerNotFound: if no layer is called `loc`
    """
    index = find_layer(layers, loc)
    layers = _copied(layers)
    return layers[:index + 1] + [layer.copy()] + layers[index + 1:]


def add_viewpool(layers, n_views, loc='fc7', method='max'):
    """
    Insert a view pooling layer after the layer named `loc`.

    Args:
        layers (list): Layer descriptors
        n_views (int): Number of views per object
        loc (str): Name of the layer to pool after
        method (str): 'max' or 'avg'

    Returns:
        list: New layer list with the ``viewpool`` layer in place
    """
    check_pooling_method(method)
    viewpool = ViewPoolLayer(name='viewpool', stride=n_views, method=method)
    return insert_layer(layers, viewpool, loc)


def replace_head(layers, n_classes, scale=1, rng=None):
    """
    Reinitialize the classifier for a new label set.

    The second-to-last layer becomes a fresh ``fc8`` sized to `n_classes` and
    the last one a softmax log-loss. Every other layer keeps its weights.

    Args:
        layers (list): Pretrained layer descriptors
        n_classes (int): Number of target classes
        scale (float): Initial weights are drawn from N(0, (0.01 / scale)^2)
        rng (np.random.Generator, optional): Random number generator

    Returns:
        list: New layer list
    """
    if len(layers) < 2 or not isinstance(layers[-2], ConvLayer):
        raise ValueError("The second-to-last layer must be the conv classifier")
    if rng is None:
        rng = np.random.default_rng()

    width = layers[-2].filters.shape[2]
    dtype = layers[-2].filters.dtype
    classifier = ConvLayer(
        name='fc8',
        filters=(0.01 / scale * rng.standard_normal((1, 1, width, n_classes))).astype(dtype),
        biases=np.zeros(n_classes, dtype=dtype),
        stride=1,
        pad=0,
        filters_learning_rate=10,
        biases_learning_rate=20,
        filters_weight_decay=1,
        biases_weight_decay=0)

    return _copied(layers[:-2]) + [classifier, SoftmaxLossLayer(name='loss')]


def strip_for_deployment(layers):
    """
    Turn a training layer list into an inference one.

    Removes dropout, removes every training-only field and replaces the
    terminal loss with a softmax called ``prob``. Stripping twice is the same
    as stripping once.
    """
    stripped = [layer.strip() for layer in layers
                if not isinstance(layer, DropoutLayer)]
    if stripped and isinstance(stripped[-1], (SoftmaxLossLayer, SoftmaxLayer)):
        stripped[-1] = SoftmaxLayer(name='prob')
    return stripped
