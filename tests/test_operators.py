import numpy as np
import pytest

from mvcnn.neural_networks import (
    ConvLayer,
    DropoutLayer,
    NormalizeLayer,
    PoolLayer,
    ReLULayer,
    SoftmaxLayer,
    SoftmaxLossLayer,
    get_operator
)


def numerical_gradient(f, array, eps=1e-6):
    """Central differences of the scalar function f() w.r.t. `array`, in place."""
    grad = np.zeros_like(array)
    it = np.nditer(array, flags=['multi_index'])
    for _ in it:
        index = it.multi_index
        original = array[index]
        array[index] = original + eps
        plus = f()
        array[index] = original - eps
        minus = f()
        array[index] = original
        grad[index] = (plus - minus) / (2 * eps)
    return grad


def check_input_gradient(layer, x, rng, aux=None):
    op = get_operator(layer)
    projection = rng.standard_normal(np.shape(op.forward(layer, x, aux)))
    dzdx, dzdw = op.backward(layer, x, projection, aux)
    numeric = numerical_gradient(
        lambda: np.sum(op.forward(layer, x, aux) * projection), x)
    np.testing.assert_allclose(dzdx, numeric, rtol=1e-5, atol=1e-7)
    return projection, dzdw


@pytest.fixture
def rng():
    return np.random.default_rng(42)


def test_conv_gradients_with_groups_stride_and_padding(rng):
    layer = ConvLayer(name='conv', filters=rng.standard_normal((3, 3, 2, 6)),
                      biases=rng.standard_normal(6), stride=(2, 1), pad=(1, 0, 1, 1))
    x = rng.standard_normal((5, 6, 4, 2))
    op = get_operator(layer)

    assert op.forward(layer, x).shape == (2, 6, 6, 2)
    projection, dzdw = check_input_gradient(layer, x, rng)

    for name in ('filters', 'biases'):
        numeric = numerical_gradient(
            lambda: np.sum(op.forward(layer, x) * projection), getattr(layer, name))
        np.testing.assert_allclose(dzdw[name], numeric, rtol=1e-5, atol=1e-7)


def test_full_size_conv_is_a_dense_layer(rng):
    filters = rng.standard_normal((4, 4, 3, 5))
    biases = rng.standard_normal(5)
    layer = ConvLayer(name='fc', filters=filters, biases=biases)
    x = rng.standard_normal((4, 4, 3, 7))

    y = get_operator(layer).forward(layer, x)

    expected = filters.reshape(-1, 5).T @ x.reshape(-1, 7) + biases[:, np.newaxis]
    assert y.shape == (1, 1, 5, 7)
    np.testing.assert_allclose(y[0, 0], expected)


def test_conv_rejects_mismatched_channels(rng):
    layer = ConvLayer(name='conv', filters=rng.standard_normal((1, 1, 3, 4)))

    with pytest.raises(ValueError, match="input channels"):
        get_operator(layer).forward(layer, rng.standard_normal((2, 2, 4, 1)))


def test_conv_layer_defaults():
    layer = ConvLayer(name='conv', filters=np.ones((1, 1, 2, 3)), pad=(1, 2))

    np.testing.assert_array_equal(layer.biases, np.zeros(3))
    assert layer.stride == (1, 1)
    assert layer.pad == (1, 1, 2, 2)
    assert layer.params == ('filters', 'biases')
    with pytest.raises(ValueError):
        ConvLayer(name='conv', filters=np.ones((2, 3)))


@pytest.mark.parametrize("method", ["max", "avg"])
def test_pool_gradient(rng, method):
    layer = PoolLayer(name='pool', method=method, pool=3, stride=2, pad=1)
    x = rng.standard_normal((7, 7, 3, 2))

    assert get_operator(layer).forward(layer, x).shape == (4, 4, 3, 2)
    check_input_gradient(layer, x, rng)


def test_max_pool_values():
    layer = PoolLayer(name='pool', method='max', pool=2, stride=2)
    x = np.arange(16, dtype=float).reshape(4, 4, 1, 1)

    y = get_operator(layer).forward(layer, x)

    np.testing.assert_array_equal(y[:, :, 0, 0], [[5, 7], [13, 15]])


@pytest.mark.parametrize("depth", [3, 4, 5])
def test_normalize_gradient(rng, depth):
    layer = NormalizeLayer(name='norm', param=(depth, 2, 0.1, 0.75))
    x = rng.standard_normal((2, 3, 6, 2))

    check_input_gradient(layer, x, rng)


def test_normalize_single_channel_window(rng):
    layer = NormalizeLayer(name='norm', param=(1, 1, 1, 0.5))
    x = rng.standard_normal((2, 2, 3, 1))

    y = get_operator(layer).forward(layer, x)

    np.testing.assert_allclose(y, x / np.sqrt(1 + x ** 2))


def test_relu_gradient(rng):
    check_input_gradient(ReLULayer('relu'), rng.standard_normal((3, 3, 2, 2)), rng)


def test_softmax_gradient_and_normalisation(rng):
    layer = SoftmaxLayer('prob')
    x = rng.standard_normal((1, 1, 5, 3))

    y = get_operator(layer).forward(layer, x)

    np.testing.assert_allclose(y.sum(axis=2), np.ones((1, 1, 3)))
    check_input_gradient(layer, x, rng)


def test_softmaxloss_value_and_gradient(rng):
    layer = SoftmaxLossLayer('loss')
    layer.labels = np.array([0, 3, 1])
    x = rng.standard_normal((1, 1, 4, 3))

    loss = get_operator(layer).forward(layer, x)

    scores = x[0, 0]
    log_probs = scores - np.log(np.exp(scores).sum(axis=0))
    assert loss.shape == ()
    np.testing.assert_allclose(loss, -log_probs[[0, 3, 1], [0, 1, 2]].sum())
    check_input_gradient(layer, x, rng)


def test_softmaxloss_label_validation(rng):
    layer = SoftmaxLossLayer('loss')
    x = rng.standard_normal((1, 1, 4, 2))
    op = get_operator(layer)

    with pytest.raises(ValueError, match="no labels"):
        op.forward(layer, x)
    layer.labels = np.array([0, 4])
    with pytest.raises(ValueError, match="Labels must lie"):
        op.forward(layer, x)
    layer.labels = np.array([0])
    with pytest.raises(ValueError, match="1 labels for 2 instances"):
        op.forward(layer, x)


def test_dropout_in_training(rng):
    layer = DropoutLayer('dropout', rate=0.5)
    x = np.ones((4, 4, 8, 4), dtype=np.float32)
    aux = {'training': True, 'rng': rng}
    op = get_operator(layer)

    y = op.forward(layer, x, aux)
    dzdx, dzdw = op.backward(layer, x, np.ones_like(x), aux)

    assert y.dtype == np.float32
    assert set(np.unique(y)) <= {0.0, 2.0}
    assert 0 < np.count_nonzero(y) < y.size
    np.testing.assert_array_equal(dzdx, aux['mask'])
    assert dzdw == {}


def test_dropout_is_identity_outside_training(rng):
    layer = DropoutLayer('dropout', rate=0.5)
    x = rng.standard_normal((2, 2, 3, 2))
    aux = {'training': False, 'rng': rng}
    op = get_operator(layer)

    assert op.forward(layer, x, aux) is x
    dzdy = rng.standard_normal(x.shape)
    np.testing.assert_array_equal(op.backward(layer, x, dzdy, aux)[0], dzdy)


@pytest.mark.parametrize("rate", [-0.1, 1.0, 2])
def test_dropout_rate_range(rate):
    with pytest.raises(ValueError):
        DropoutLayer('dropout', rate=rate)
