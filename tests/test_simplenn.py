import numpy as np
import pytest

from mvcnn.neural_networks import (
    ConvLayer,
    Layer,
    ReLULayer,
    SoftmaxLossLayer,
    ViewPoolLayer,
    simplenn
)


def multiview_layers(rng, method='max'):
    return [
        ConvLayer(name='fc6', filters=rng.standard_normal((3, 3, 2, 4)),
                  biases=rng.standard_normal(4)),
        ReLULayer('relu6'),
        ViewPoolLayer(stride=3, method=method),
        ConvLayer(name='fc8', filters=rng.standard_normal((1, 1, 4, 3)),
                  biases=rng.standard_normal(3)),
        SoftmaxLossLayer('loss'),
    ]


def objective(layers, x):
    return float(simplenn(layers, x)[-1].x)


@pytest.mark.parametrize("method", ["max", "avg"])
def test_network_gradient_through_view_pooling(method):
    rng = np.random.default_rng(7)
    layers = multiview_layers(rng, method)
    layers[-1].labels = np.array([2, 0])
    x = rng.standard_normal((3, 3, 2, 6))

    res = simplenn(layers, x, dzdy=1.0)

    assert res[3].x.shape == (1, 1, 4, 2)
    eps = 1e-6
    for index in [(0, 0, 0, 0), (1, 2, 1, 3), (2, 1, 0, 5)]:
        original = x[index]
        x[index] = original + eps
        plus = objective(layers, x)
        x[index] = original - eps
        minus = objective(layers, x)
        x[index] = original
        np.testing.assert_allclose(res[0].dzdx[index], (plus - minus) / (2 * eps),
                                   rtol=1e-5, atol=1e-8)

    filters = layers[0].filters
    original = filters[1, 1, 0, 2]
    filters[1, 1, 0, 2] = original + eps
    plus = objective(layers, x)
    filters[1, 1, 0, 2] = original - eps
    minus = objective(layers, x)
    filters[1, 1, 0, 2] = original
    np.testing.assert_allclose(res[0].dzdw['filters'][1, 1, 0, 2],
                               (plus - minus) / (2 * eps), rtol=1e-5, atol=1e-8)


def test_result_records():
    rng = np.random.default_rng(8)
    layers = multiview_layers(rng)
    layers[-1].labels = np.array([1, 1])
    x = rng.standard_normal((3, 3, 2, 6))

    res = simplenn(layers, x, dzdy=1.0)

    assert len(res) == len(layers) + 1
    assert res[0].x is x
    assert res[-1].x.shape == ()
    assert set(res[0].dzdw) == {'filters', 'biases'}
    assert res[1].dzdw == {}
    assert res[0].dzdx.shape == x.shape


def test_conserve_memory_keeps_the_scores():
    rng = np.random.default_rng(9)
    layers = multiview_layers(rng)
    layers[-1].labels = np.array([0, 1])
    x = rng.standard_normal((3, 3, 2, 6))

    full = simplenn(layers, x, dzdy=1.0)
    lean = simplenn(layers, x, dzdy=1.0, conserve_memory=True)

    np.testing.assert_allclose(lean[-2].x, full[-2].x)
    np.testing.assert_allclose(lean[-1].x, full[-1].x)
    np.testing.assert_allclose(lean[0].dzdw['filters'], full[0].dzdw['filters'])
    assert lean[1].x is None
    assert lean[2].x is None

    forward_only = simplenn(layers, x, conserve_memory=True)
    np.testing.assert_allclose(forward_only[-2].x, full[-2].x)
    assert forward_only[1].x is None


def test_unknown_layer_type():
    class Mystery(Layer):
        type = 'mystery'

    with pytest.raises(ValueError, match="mystery"):
        simplenn([Mystery('m')], np.zeros((1, 1, 1, 1)))
