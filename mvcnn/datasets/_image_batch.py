"""
Decoding and preprocessing of image batches with Pillow.
"""
from functools import partial

import numpy as np
from PIL import Image, ImageOps

INTERPOLATION = {
    'bicubic': Image.Resampling.BICUBIC,
    'bilinear': Image.Resampling.BILINEAR,
    'nearest': Image.Resampling.NEAREST,
}

AUGMENTATIONS = ('none', 'f2')


def load_image(path, normalization, flip=False, invert=False):
    """
    Read one image and bring it to the network input size.

    The image is resized to ``image_size + border`` (keeping its aspect ratio
    when `normalization.keep_aspect` is set) and center-cropped to
    ``image_size``.

    Returns:
        ndarray: float32 array of shape (H, W, C)
    """
    height, width, channels = normalization.image_size
    target_h = height + normalization.border[0]
    target_w = width + normalization.border[1]
    resample = INTERPOLATION.get(normalization.interpolation)
    if resample is None:
        raise ValueError(f"Unknown interpolation: {normalization.interpolation!r}")

    with Image.open(path) as image:
        image = image.convert('RGB' if channels == 3 else 'L')
        if normalization.keep_aspect:
            factor = max(target_h / image.height, target_w / image.width)
            size = (max(target_w, round(image.width * factor)),
                    max(target_h, round(image.height * factor)))
        else:
            size = (target_w, target_h)
        image = image.resize(size, resample=resample)

        left = (image.width - width) // 2
        top = (image.height - height) // 2
        image = image.crop((left, top, left + width, top + height))
        if flip:
            image = ImageOps.mirror(image)
        array = np.asarray(image, dtype=np.float32)

    if array.ndim == 2:
        array = array[:, :, np.newaxis]
    if invert:
        array = 255 - array
    return array


def get_image_batch(paths, normalization, augmentation='none', invert=False, rng=None):
    """
    Load images into one (H, W, C, N) array.

    Args:
        paths (list): Image files
        normalization (Normalization): Input size, resize and mean image settings
        augmentation (str): 'none' or 'f2' (random horizontal flips)
        invert (bool): Invert intensities (for sketch-like data)
        rng (np.random.Generator, optional): Random generator for augmentation

    Returns:
        ndarray: float32 batch with the average image subtracted
    """
    if augmentation not in AUGMENTATIONS:
        raise ValueError(
            f"Unknown augmentation {augmentation!r}. Choose from {AUGMENTATIONS}")
    if rng is None:
        rng = np.random.default_rng()

    height, width, channels = normalization.image_size
    if not paths:
        return np.zeros((height, width, channels, 0), dtype=np.float32)

    flips = (rng.random(len(paths)) < 0.5 if augmentation == 'f2'
             else np.zeros(len(paths), dtype=bool))
    batch = np.stack([load_image(path, normalization, flip=flip, invert=invert)
                      for path, flip in zip(paths, flips)], axis=3)

    average = normalization.average_image
    if average is not None:
        if average.ndim == 1:
            average = average.reshape(1, 1, -1)
        batch -= average[..., np.newaxis]
    return batch


def get_batch(imdb, batch, normalization, augmentation='none', invert=False, rng=None):
    """Images and labels of the rows `batch` of `imdb`."""
    images = get_image_batch(imdb.paths(batch), normalization,
                             augmentation=augmentation, invert=invert, rng=rng)
    return images, imdb.labels(batch)


def get_batch_wrapper(normalization, augmentation='none', invert=False, rng=None):
    """Bind the preprocessing options: returns ``fn(imdb, batch) -> (images, labels)``."""
    return partial(get_batch, normalization=normalization, augmentation=augmentation,
                   invert=invert, rng=rng)
