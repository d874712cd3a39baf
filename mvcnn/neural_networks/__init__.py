"""
Layer descriptors, their operators, the sequential engine, network editing
and training.
"""
from .layers import (
    Layer,
    ConvLayer,
    ReLULayer,
    PoolLayer,
    NormalizeLayer,
    DropoutLayer,
    SoftmaxLossLayer,
    SoftmaxLayer,
    ViewPoolLayer,
    TRAINING_FIELDS
)
from ._operators import Operator
from ._viewpool import (
    viewpool_forward,
    viewpool_backward,
    ViewPoolOperator
)
from ._simplenn import (
    simplenn,
    get_operator,
    Result
)
from ._editing import (
    find_layer,
    add_dropout,
    insert_layer,
    add_viewpool,
    replace_head,
    strip_for_deployment
)
from ._network import (
    Network,
    Normalization
)
from ._serialization import (
    save_network,
    load_network
)
from ._models import (
    initialize_network,
    build_alexnet,
    download_model
)
from .optimizers import SGDOptimizer
from ._train import (
    SGDTrainer,
    DEFAULT_LEARNING_RATE
)

__all__ = [
    'Layer',
    'ConvLayer',
    'ReLULayer',
    'PoolLayer',
    'NormalizeLayer',
    'DropoutLayer',
    'SoftmaxLossLayer',
    'SoftmaxLayer',
    'ViewPoolLayer',
    'TRAINING_FIELDS',
    'Operator',
    'viewpool_forward',
    'viewpool_backward',
    'ViewPoolOperator',
    'simplenn',
    'get_operator',
    'Result',
    'find_layer',
    'add_dropout',
    'insert_layer',
    'add_viewpool',
    'replace_head',
    'strip_for_deployment',
    'Network',
    'Normalization',
    'save_network',
    'load_network',
    'initialize_network',
    'build_alexnet',
    'download_model',
    'SGDOptimizer',
    'SGDTrainer',
    'DEFAULT_LEARNING_RATE'
]
