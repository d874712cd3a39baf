"""
Sequential execution of a layer list.
"""
import numpy as np

from ._operators import (
    ConvOperator,
    ReLUOperator,
    PoolOperator,
    NormalizeOperator,
    DropoutOperator,
    SoftmaxOperator,
    SoftmaxLossOperator
)
from ._viewpool import ViewPoolOperator

OPERATORS = {
    'conv': ConvOperator(),
    'relu': ReLUOperator(),
    'pool': PoolOperator(),
    'normalize': NormalizeOperator(),
    'dropout': DropoutOperator(),
    'softmax': SoftmaxOperator(),
    'softmaxloss': SoftmaxLossOperator(),
    'viewpool': ViewPoolOperator(),
}


def get_operator(layer):
    """Look up the operator for a layer descriptor by its type tag."""
    try:
        return OPERATORS[layer.type]
    except KeyError:
        raise ValueError(f"No operator for layer type {layer.type!r}") from None


class Result:
    """Values at one layer boundary: input x, its gradient, parameter gradients."""

    def __init__(self):
        self.x = None
        self.dzdx = None
        self.dzdw = {}
        self.aux = {}


def simplenn(layers, x, dzdy=None, training=False, conserve_memory=False, rng=None):
    """
    Run a layer list forward and, if `dzdy` is given, backward.

    Args:
        layers (list): Layer descriptors, executed in order
        x (ndarray): Network input of shape (H, W, C, N)
        dzdy (ndarray or float, optional): Gradient of the objective with
            respect to the network output; enables the backward pass
        training (bool): Whether dropout is active
        conserve_memory (bool): Drop intermediate activations and gradients
            once the backward pass no longer needs them; the input of the
            last layer (the class scores) is always kept
        rng (np.random.Generator, optional): Random generator for dropout

    Returns:
        list: ``len(layers) + 1`` Result records; ``res[i].x`` is the input of
            layer i and ``res[-1].x`` the network output. After a backward
            pass ``res[i].dzdx`` is the gradient with respect to ``res[i].x``
            and ``res[i].dzdw`` holds the parameter gradients of layer i.
    """
    if rng is None:
        rng = np.random.default_rng()

    n_layers = len(layers)
    res = [Result() for _ in range(n_layers + 1)]
    res[0].x = x

    for i, layer in enumerate(layers):
        res[i].aux = {'training': training, 'rng': rng}
        res[i + 1].x = get_operator(layer).forward(layer, res[i].x, res[i].aux)

    if dzdy is None:
        if conserve_memory:
            for i in range(1, n_layers - 1):
                res[i].x = None
        return res

    res[n_layers].dzdx = dzdy
    for i in reversed(range(n_layers)):
        layer = layers[i]
        res[i].dzdx, res[i].dzdw = get_operator(layer).backward(
            layer, res[i].x, res[i + 1].dzdx, res[i].aux)
        if conserve_memory and i + 1 < n_layers - 1:
            res[i + 1].x = None
            res[i + 1].dzdx = None

    return res
