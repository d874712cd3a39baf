"""
Image databases: a table of images with their label, split and shape id.
"""
import os
import re

import numpy as np
import pandas as pd

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png')

# Split directory -> set id
SPLITS = {'train': 1, 'val': 2, 'test': 3}

# "<shape>_<view>" where the shape itself ends in a number, e.g. chair_0001_003
_VIEW_NAME = re.compile(r'^(?P<shape>.+_\d+)_(?P<view>\d+)$')


class ImageDatabase:
    """
    Images of a dataset, one row each.

    The ``images`` table has the columns ``name`` (path relative to
    `image_dir`), ``label`` (0-based class index), ``set`` (1 train, 2 val,
    3 test), ``sid`` (shape id) and ``view``. Rows are ordered so the views of
    a shape are contiguous and in view order.
    """

    def __init__(self, image_dir, images, classes, invert=False):
        self.image_dir = image_dir
        self.images = images.reset_index(drop=True)
        self.classes = list(classes)
        self.invert = invert

    def __len__(self):
        return len(self.images)

    @property
    def n_shapes(self):
        return int(self.images['sid'].nunique())

    @property
    def n_views(self):
        """Views per shape; every shape must have the same number."""
        counts = self.images.groupby('sid').size()
        if counts.empty:
            return 0
        if counts.nunique() != 1:
            raise ValueError(
                f"All shapes should have the same number of views, found "
                f"{sorted(counts.unique().tolist())}")
        return int(counts.iloc[0])

    def subset(self, set_id):
        """Row indices of the images in one split."""
        return np.flatnonzero(self.images['set'].to_numpy() == set_id)

    def shape_ids(self, set_id):
        """Shape ids of one split, in table order."""
        return pd.unique(self.images.loc[self.subset(set_id), 'sid'])

    def images_of_shapes(self, sids):
        """Row indices of every view of the given shapes, shape by shape."""
        if len(sids) == 0:
            return np.zeros(0, dtype=np.int64)
        groups = self.images.groupby('sid').indices
        return np.concatenate([groups[sid] for sid in sids])

    def paths(self, indices):
        return [os.path.join(self.image_dir, name)
                for name in self.images['name'].to_numpy()[indices]]

    def labels(self, indices):
        return self.images['label'].to_numpy()[indices]

    def save(self, path):
        pd.to_pickle({'image_dir': self.image_dir, 'images': self.images,
                      'classes': self.classes, 'invert': self.invert}, path)

    @classmethod
    def load(cls, path):
        state = pd.read_pickle(path)
        return cls(state['image_dir'], state['images'], state['classes'],
                   invert=state.get('invert', False))

    def __repr__(self):
        return (f"ImageDatabase(n_images={len(self)}, n_shapes={self.n_shapes}, "
                f"n_classes={len(self.classes)})")


def setup_imdb(root, invert=False):
    """
    Scan ``<root>/<class>/<train|val|test>/`` for images.

    A file called ``<shape>_<view>`` whose shape part ends in a number (e.g.
    ``chair_0001_003.png``) is taken as view 3 of shape ``chair_0001``; any
    other image is a shape of its own.

    Args:
        root (str): Dataset directory
        invert (bool): Whether images should be inverted when loaded

    Returns:
        ImageDatabase: Database rooted at `root`
    """
    classes = sorted(entry for entry in os.listdir(root)
                     if os.path.isdir(os.path.join(root, entry)))
    rows = []
    for label, class_name in enumerate(classes):
        for split, set_id in SPLITS.items():
            split_dir = os.path.join(root, class_name, split)
            if not os.path.isdir(split_dir):
                continue
            for filename in sorted(os.listdir(split_dir)):
                stem, ext = os.path.splitext(filename)
                if ext.lower() not in IMAGE_EXTENSIONS:
                    continue
                match = _VIEW_NAME.match(stem)
                shape, view = (match['shape'], int(match['view'])) if match else (stem, 0)
                rows.append({
                    'name': os.path.join(class_name, split, filename),
                    'label': label,
                    'set': set_id,
                    'shape': f"{class_name}/{split}/{shape}",
                    'view': view,
                })

    if not rows:
        raise FileNotFoundError(f"No images found under {root}")

    images = pd.DataFrame(rows).sort_values(['set', 'label', 'shape', 'view'], kind='stable')
    images['sid'] = pd.factorize(images['shape'])[0]
    return ImageDatabase(root, images.drop(columns='shape'), classes, invert=invert)


def get_imdb(name, data_dir='data', invert=False, verbose=False):
    """
    Database of ``<data_dir>/<name>``, cached as ``imdb.pkl`` next to the images.
    """
    root = os.path.join(data_dir, name)
    cache = os.path.join(root, 'imdb.pkl')
    if os.path.exists(cache):
        return ImageDatabase.load(cache)

    imdb = setup_imdb(root, invert=invert)
    imdb.save(cache)
    if verbose:
        print(f"Image database saved to {cache}: {imdb}")
    return imdb
