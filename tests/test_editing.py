import numpy as np
import pytest

from mvcnn.exceptions import LayerNotFound, UnknownPoolingMethod
from mvcnn.neural_networks import (
    ConvLayer,
    DropoutLayer,
    ReLULayer,
    SoftmaxLayer,
    SoftmaxLossLayer,
    TRAINING_FIELDS,
    ViewPoolLayer,
    add_dropout,
    add_viewpool,
    find_layer,
    get_operator,
    insert_layer,
    replace_head,
    strip_for_deployment
)


def names(layers):
    return [layer.name for layer in layers]


def test_add_dropout_positions(vgg_like_layers):
    layers = add_dropout(vgg_like_layers, rate=0.3)

    assert names(layers) == ['conv1', 'relu1', 'pool1', 'fc6', 'relu6',
                             'dropout_fc7', 'fc7', 'relu7', 'dropout_fc8', 'fc8', 'loss']
    dropouts = [layer for layer in layers if isinstance(layer, DropoutLayer)]
    assert [layer.rate for layer in dropouts] == [0.3, 0.3]


def test_add_dropout_leaves_input_untouched(vgg_like_layers):
    before = [layer.copy() for layer in vgg_like_layers]

    layers = add_dropout(vgg_like_layers)

    assert vgg_like_layers == before
    assert layers[0] == vgg_like_layers[0]
    assert layers[0] is not vgg_like_layers[0]
    assert layers[0].filters is not vgg_like_layers[0].filters


def test_add_dropout_needs_six_layers(vgg_like_layers):
    with pytest.raises(ValueError, match="at least 6"):
        add_dropout(vgg_like_layers[-5:])


def test_add_viewpool_after_fc7(vgg_like_layers):
    layers = add_viewpool(vgg_like_layers, 12, loc='fc7', method='avg')

    index = find_layer(layers, 'viewpool')
    assert layers[index - 1].name == 'fc7'
    assert len(layers) == len(vgg_like_layers) + 1
    assert isinstance(layers[index], ViewPoolLayer)
    assert layers[index].stride == 12
    assert layers[index].method == 'avg'
    assert layers[index].type == 'viewpool'


def test_add_viewpool_at_the_end(vgg_like_layers):
    layers = add_viewpool(vgg_like_layers, 2, loc='loss')

    assert isinstance(layers[-1], ViewPoolLayer)


def test_add_viewpool_unknown_location(vgg_like_layers):
    with pytest.raises(LayerNotFound) as excinfo:
        add_viewpool(vgg_like_layers, 12, loc='fc9')

    assert excinfo.value.name == 'fc9'
    assert 'fc9' in str(excinfo.value)


def test_add_viewpool_unknown_method(vgg_like_layers):
    with pytest.raises(UnknownPoolingMethod):
        add_viewpool(vgg_like_layers, 12, method='sum')


def test_insert_layer_copies_the_layer(vgg_like_layers):
    relu = ReLULayer('extra')

    layers = insert_layer(vgg_like_layers, relu, 'conv1')

    assert names(layers)[:3] == ['conv1', 'extra', 'relu1']
    assert layers[1] is not relu


def test_replace_head(vgg_like_layers):
    rng = np.random.default_rng(0)
    wide = [layer.copy() for layer in vgg_like_layers]
    wide[-4] = ConvLayer(name='fc7', filters=rng.standard_normal((1, 1, 8, 400)))
    wide[-3] = ReLULayer('relu7')
    wide[-2] = ConvLayer(name='fc8', filters=rng.standard_normal((1, 1, 400, 5)))

    layers = replace_head(wide, 40, rng=rng)

    head = layers[-2]
    assert head.name == 'fc8'
    assert head.filters.shape == (1, 1, 400, 40)
    np.testing.assert_array_equal(head.biases, np.zeros(40))
    assert 0.008 < head.filters.std() < 0.012
    assert (head.filters_learning_rate, head.biases_learning_rate) == (10, 20)
    assert (head.filters_weight_decay, head.biases_weight_decay) == (1, 0)
    assert isinstance(layers[-1], SoftmaxLossLayer)
    assert layers[-1].name == 'loss'
    assert layers[:-2] == wide[:-2]


def test_replace_head_scale(vgg_like_layers):
    layers = replace_head(vgg_like_layers, 3, scale=10, rng=np.random.default_rng(1))

    assert np.abs(layers[-2].filters).max() < 0.01


def test_replace_head_needs_a_conv_classifier():
    with pytest.raises(ValueError):
        replace_head([ReLULayer('relu'), SoftmaxLossLayer('loss')], 3)


def test_strip_for_deployment(vgg_like_layers):
    training = add_viewpool(add_dropout(vgg_like_layers), 4, loc='fc7')
    training[0].filters_momentum = np.ones_like(training[0].filters)
    training[-1].labels = np.array([1, 2])

    stripped = strip_for_deployment(training)

    assert not any(isinstance(layer, DropoutLayer) for layer in stripped)
    assert any(isinstance(layer, ViewPoolLayer) for layer in stripped)
    assert isinstance(stripped[-1], SoftmaxLayer)
    assert stripped[-1].name == 'prob'
    for layer in stripped:
        for field in TRAINING_FIELDS:
            assert not hasattr(layer, field)
    np.testing.assert_array_equal(stripped[0].filters, training[0].filters)
    assert training[0].filters_momentum is not None
    assert training[0].filters_learning_rate == 1


def test_strip_is_idempotent(vgg_like_layers):
    once = strip_for_deployment(add_dropout(vgg_like_layers))

    assert strip_for_deployment(once) == once


def test_strip_keeps_a_non_loss_tail():
    layers = [ConvLayer(name='fc', filters=np.ones((1, 1, 2, 2))), ReLULayer('relu')]

    stripped = strip_for_deployment(layers)

    assert names(stripped) == ['fc', 'relu']


def test_stripped_loss_layer_has_no_labels_field():
    loss = SoftmaxLossLayer('loss')
    loss.labels = np.array([0])

    stripped = loss.strip()

    assert 'labels' not in stripped.__dict__
    assert stripped.to_dict() == ({'type': 'softmaxloss', 'name': 'loss'}, {})
    with pytest.raises(ValueError, match="no labels"):
        get_operator(stripped).forward(stripped, np.zeros((1, 1, 3, 1)))
