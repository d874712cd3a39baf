import os

import numpy as np


def experiment_dir(imdb_name, base_model=None, prefix='v1', seed=1, data_dir='data'):
    """data/<prefix>/<base>-finetuned-<imdb>-seed-NN, or <imdb>-seed-NN from scratch."""
    name = f"{base_model}-finetuned-{imdb_name}" if base_model else imdb_name
    return os.path.join(data_dir, prefix, f"{name}-seed-{seed:02d}")


def compute_average_image(imdb, get_batch, path, batch_size=256, verbose=True):
    """
    Mean of the training images, cached at `path` (a ``.npy`` file).

    `get_batch` must return raw images, i.e. be built from a normalization
    without an average image.
    """
    if os.path.exists(path):
        return np.load(path)

    train = imdb.subset(1)
    if len(train) == 0:
        raise ValueError("Cannot compute an average image without training images")

    total = None
    for first in range(0, len(train), batch_size):
        batch = train[first:first + batch_size]
        if verbose:
            print(f"Computing average image: processing batch starting with image {batch[0]} ...")
        images, _ = get_batch(imdb, batch)
        batch_sum = np.sum(images, axis=3, dtype=np.float64)
        total = batch_sum if total is None else total + batch_sum

    average = (total / len(train)).astype(np.float32)
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    np.save(path, average)
    return average
