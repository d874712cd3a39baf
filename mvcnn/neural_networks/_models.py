"""
Network construction: a fresh AlexNet or a pretrained model with a new head.
"""
import os
import shutil

import numpy as np
import requests

from ._editing import replace_head
from ._network import Network, Normalization
from ._serialization import load_network
from .layers import (
    ConvLayer,
    ReLULayer,
    PoolLayer,
    NormalizeLayer,
    DropoutLayer,
    SoftmaxLossLayer
)


def download_model(name, model_dir, model_url, verbose=True):
    """Fetch ``<model_url>/<name>.npz`` into `model_dir` and return its path."""
    os.makedirs(model_dir, exist_ok=True)
    path = os.path.join(model_dir, f"{name}.npz")
    if verbose:
        print(f"Downloading model ({name}) ...", end='', flush=True)
    response = requests.get(f"{model_url.rstrip('/')}/{name}.npz", stream=True, timeout=60)
    response.raise_for_status()
    with open(path, 'wb') as f:
        response.raw.decode_content = True
        shutil.copyfileobj(response.raw, f)
    if verbose:
        print(" done!")
    return path


def initialize_network(base_model, class_names, model_dir=os.path.join('data', 'models'),
                       model_url=None, scale=1, init_bias=0.1, rng=None, verbose=True):
    """
    Build the network to train.

    With a `base_model` the pretrained model ``<model_dir>/<base_model>.npz``
    is loaded (downloaded from `model_url` first when missing) and its head is
    replaced for `class_names`. Without one a fresh AlexNet-style network is
    created.

    Args:
        base_model (str or None): Name of the pretrained model
        class_names (list): Target class names
        model_dir (str): Where pretrained models are kept
        model_url (str, optional): Base URL to download missing models from
        scale (float): Initial weights are drawn from N(0, (0.01 / scale)^2)
        init_bias (float): Initial bias of the hidden layers of a fresh network
        rng (np.random.Generator, optional): Random number generator
        verbose (bool): Print progress messages

    Returns:
        Network: Network ending in a softmax log-loss
    """
    if rng is None:
        rng = np.random.default_rng()
    n_classes = len(class_names)

    if base_model:
        path = os.path.join(model_dir, f"{base_model}.npz")
        if not os.path.exists(path):
            if not model_url:
                raise FileNotFoundError(
                    f"Pretrained model {path} not found and no model URL given")
            download_model(base_model, model_dir, model_url, verbose=verbose)
        net = load_network(path)
        if verbose:
            print(f"Initializing from model: {base_model}")
        net.layers = replace_head(net.layers, n_classes, scale=scale, rng=rng)
        net.classes = list(class_names)
        net.description = list(class_names)
        return net.validate()

    net = Network(build_alexnet(n_classes, scale=scale, init_bias=init_bias, rng=rng),
                  normalization=Normalization(image_size=(227, 227, 3),
                                              interpolation='bicubic',
                                              border=(256 - 227, 256 - 227),
                                              keep_aspect=True),
                  classes=class_names)
    return net.validate()


def build_alexnet(n_classes, scale=1, init_bias=0.1, rng=None):
    """
    Layers of a randomly initialized AlexNet for 227x227x3 input.

    conv2, conv4 and conv5 use two filter groups.
    """
    if rng is None:
        rng = np.random.default_rng()

    def conv(name, shape, bias, stride=1, pad=0):
        return ConvLayer(
            name=name,
            filters=(0.01 / scale * rng.standard_normal(shape)).astype(np.float32),
            biases=np.full(shape[3], bias, dtype=np.float32),
            stride=stride,
            pad=pad,
            filters_learning_rate=1,
            biases_learning_rate=2,
            filters_weight_decay=1,
            biases_weight_decay=0)

    def pool():
        return PoolLayer(method='max', pool=(3, 3), stride=2, pad=0)

    def normalize():
        return NormalizeLayer(param=(5, 1, 0.0001 / 5, 0.75))

    layers = []
    # Block 1
    layers += [conv('conv1', (11, 11, 3, 96), 0, stride=4), ReLULayer('relu1'),
               pool(), normalize()]
    # Block 2
    layers += [conv('conv2', (5, 5, 48, 256), init_bias, pad=2), ReLULayer('relu2'),
               pool(), normalize()]
    # Blocks 3-5
    layers += [conv('conv3', (3, 3, 256, 384), init_bias, pad=1), ReLULayer('relu3')]
    layers += [conv('conv4', (3, 3, 192, 384), init_bias, pad=1), ReLULayer('relu4')]
    layers += [conv('conv5', (3, 3, 192, 256), init_bias, pad=1), ReLULayer('relu5'),
               pool()]
    # Fully connected blocks
    layers += [conv('fc6', (6, 6, 256, 4096), init_bias), ReLULayer('relu6'),
               DropoutLayer(name='dropout6', rate=0.5)]
    layers += [conv('fc7', (1, 1, 4096, 4096), init_bias), ReLULayer('relu7'),
               DropoutLayer(name='dropout7', rate=0.5)]
    layers += [conv('fc8', (1, 1, 4096, n_classes), 0)]
    layers += [SoftmaxLossLayer(name='loss')]
    return layers
