"""
The network record: layers, input normalization and class names.
"""
import copy

import numpy as np

from ..base import BaseClassifier
from ._simplenn import simplenn
from .layers import ConvLayer, SoftmaxLossLayer


class Normalization:
    """
    How raw images are turned into network input.

    Args:
        image_size (tuple): (height, width, channels) of the network input
        interpolation (str): Resize filter ('bicubic', 'bilinear', 'nearest')
        border (tuple): Extra (height, width) resized around the crop
        average_image (ndarray, optional): Mean image subtracted from every input;
            either (H, W, C) or a per-channel (C,) vector
        keep_aspect (bool): Resize the shorter side and crop instead of stretching
    """

    def __init__(self, image_size=(227, 227, 3), interpolation='bicubic',
                 border=(0, 0), average_image=None, keep_aspect=True):
        self.image_size = tuple(int(s) for s in image_size)
        self.interpolation = interpolation
        self.border = tuple(int(b) for b in border)
        self.average_image = (None if average_image is None
                              else np.asarray(average_image, dtype=np.float32))
        self.keep_aspect = bool(keep_aspect)

    def to_dict(self):
        return {
            'image_size': list(self.image_size),
            'interpolation': self.interpolation,
            'border': list(self.border),
            'keep_aspect': self.keep_aspect,
        }

    def __repr__(self):
        return (f"Normalization(image_size={self.image_size}, "
                f"interpolation={self.interpolation!r}, border={self.border})")


class Network(BaseClassifier):
    """
    A layer list plus the input normalization and the class names.

    Args:
        layers (list): Layer descriptors, executed in order
        normalization (Normalization, optional): Input preprocessing metadata
        classes (list, optional): Class names, one per output of the classifier
        description (list, optional): Human readable class descriptions
    """

    def __init__(self, layers, normalization=None, classes=None, description=None):
        self.layers = list(layers)
        self.normalization = normalization if normalization is not None else Normalization()
        self.classes = list(classes) if classes is not None else []
        self.description = list(description) if description is not None else list(self.classes)

    @property
    def n_outputs(self):
        """Output width of the last conv layer."""
        for layer in reversed(self.layers):
            if isinstance(layer, ConvLayer):
                return layer.output_width
        return None

    def validate(self):
        """Check that there is one class name per classifier output."""
        if self.n_outputs is None:
            raise ValueError("The network has no conv classifier layer")
        if len(self.classes) != self.n_outputs:
            raise ValueError(
                f"{len(self.classes)} class names for a classifier with "
                f"{self.n_outputs} outputs")
        return self

    def copy(self):
        return Network([layer.copy() for layer in self.layers],
                       normalization=copy.deepcopy(self.normalization),
                       classes=self.classes, description=self.description)

    def _trainable_params(self):
        params = {}
        for i, layer in enumerate(self.layers):
            for name in layer.params:
                params[f"{layer.name or i}.{name}"] = getattr(layer, name)
        return params

    def _non_trainable_params(self):
        params = {key: value for key, value in self.__dict__.items() if key != 'layers'}
        for i, layer in enumerate(self.layers):
            for field, value in layer.__dict__.items():
                if field not in layer.params:
                    params[f"{layer.name or i}.{field}"] = value
        return params

    def scores(self, images):
        """Class scores (K, N') for a batch of preprocessed images (H, W, C, N)."""
        layers = self.layers
        if layers and isinstance(layers[-1], SoftmaxLossLayer):
            layers = layers[:-1]
        res = simplenn(layers, images, training=False, conserve_memory=True)
        return np.sum(res[-1].x, axis=(0, 1))

    def predict(self, X):
        """Prediction: predict(X) -> ndarray of class indices"""
        return np.argmax(self.scores(X), axis=0)

    def __repr__(self):
        return f"Network(n_layers={len(self.layers)}, n_classes={len(self.classes)})"
