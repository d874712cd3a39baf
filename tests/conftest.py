import os

import numpy as np
import pytest
from PIL import Image

from mvcnn.neural_networks import (
    ConvLayer,
    ReLULayer,
    PoolLayer,
    SoftmaxLossLayer
)


def write_views(root, class_name, split, shape, n_views, size=12, rng=None):
    rng = np.random.default_rng() if rng is None else rng
    directory = os.path.join(root, class_name, split)
    os.makedirs(directory, exist_ok=True)
    for view in range(1, n_views + 1):
        pixels = rng.integers(0, 256, size=(size, size, 3), dtype=np.uint8)
        Image.fromarray(pixels).save(os.path.join(directory, f"{shape}_{view:03d}.png"))


@pytest.fixture
def shape_dataset(tmp_path):
    """data/shapes: 2 classes, 2 train and 1 test shape each, 3 views per shape."""
    rng = np.random.default_rng(0)
    root = tmp_path / 'data' / 'shapes'
    for class_name in ('chair', 'desk'):
        for k in range(2):
            write_views(str(root), class_name, 'train', f"{class_name}_{k + 1:04d}", 3, rng=rng)
        write_views(str(root), class_name, 'test', f"{class_name}_0010", 3, rng=rng)
    return root


@pytest.fixture
def vgg_like_layers():
    """A small layer list ending like VGG/AlexNet: fc6, relu, fc7, relu, fc8, loss."""
    rng = np.random.default_rng(1)

    def conv(name, shape, **kwargs):
        return ConvLayer(name=name, filters=rng.standard_normal(shape),
                         biases=rng.standard_normal(shape[3]), **kwargs)

    return [
        conv('conv1', (3, 3, 3, 4), pad=1, filters_learning_rate=1, biases_learning_rate=2,
             filters_weight_decay=1, biases_weight_decay=0),
        ReLULayer('relu1'),
        PoolLayer('pool1', method='max', pool=2, stride=2),
        conv('fc6', (4, 4, 4, 8)),
        ReLULayer('relu6'),
        conv('fc7', (1, 1, 8, 8)),
        ReLULayer('relu7'),
        conv('fc8', (1, 1, 8, 5)),
        SoftmaxLossLayer('loss'),
    ]
