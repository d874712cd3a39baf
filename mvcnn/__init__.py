"""
Multi-view CNN training: view pooling, network editing and an SGD trainer
built on numpy.
"""
from .exceptions import (
    ViewCountMismatch,
    UnknownPoolingMethod,
    LayerNotFound
)

__version__ = '0.1.0'

__all__ = [
    'ViewCountMismatch',
    'UnknownPoolingMethod',
    'LayerNotFound'
]
