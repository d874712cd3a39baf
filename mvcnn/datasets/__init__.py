"""
Image databases and batch loading.
"""
from ._imdb import (
    ImageDatabase,
    setup_imdb,
    get_imdb
)
from ._image_batch import (
    load_image,
    get_image_batch,
    get_batch,
    get_batch_wrapper
)

__all__ = [
    'ImageDatabase',
    'setup_imdb',
    'get_imdb',
    'load_image',
    'get_image_batch',
    'get_batch',
    'get_batch_wrapper'
]
