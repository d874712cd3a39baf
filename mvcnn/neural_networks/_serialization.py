"""
Saving and loading networks as a single ``.npz`` archive.

The architecture (layer records, normalization, class names) is stored as a
JSON string under ``__network__``; every array is stored under
``<layer index>.<field>``, the average image under
``normalization.average_image``.
"""
import json
import os

import numpy as np

from ._network import Network, Normalization
from .layers import Layer

ARCHITECTURE_KEY = '__network__'


def export_architecture(net):
    """
    Split a network into a JSON-able architecture and a flat dict of arrays.

    Args:
        net (Network): Network to export

    Returns:
        tuple: (architecture, params)
    """
    records = []
    params = {}
    for i, layer in enumerate(net.layers):
        record, arrays = layer.to_dict()
        records.append(record)
        for field, value in arrays.items():
            params[f"{i}.{field}"] = value

    if net.normalization.average_image is not None:
        params['normalization.average_image'] = net.normalization.average_image

    architecture = {
        'layers': records,
        'normalization': net.normalization.to_dict(),
        'classes': {'name': list(net.classes), 'description': list(net.description)},
    }
    return architecture, params


def save_network(path, net, verbose=False):
    """Write `net` to `path` (an ``.npz`` file) and return the path."""
    architecture, params = export_architecture(net)
    params[ARCHITECTURE_KEY] = np.array(json.dumps(architecture))

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'wb') as f:
        np.savez(f, **params)
    if verbose:
        print(f"Network saved to {path}")
    return path


def load_network(path):
    """Read a network written by `save_network`."""
    with np.load(path, allow_pickle=False) as data:
        if ARCHITECTURE_KEY not in data.files:
            raise ValueError(f"{path} is not a saved network")
        architecture = json.loads(str(data[ARCHITECTURE_KEY]))
        arrays = {key: data[key] for key in data.files if key != ARCHITECTURE_KEY}

    owned = {}
    for key, value in arrays.items():
        owner, field = key.split('.', 1)
        owned.setdefault(owner, {})[field] = value

    layers = [Layer.from_dict(record, owned.get(str(i)))
              for i, record in enumerate(architecture['layers'])]
    normalization = Normalization(
        average_image=owned.get('normalization', {}).get('average_image'),
        **architecture.get('normalization', {}))
    classes = architecture.get('classes', {})
    net = Network(layers, normalization=normalization,
                  classes=classes.get('name', []),
                  description=classes.get('description'))
    return net.validate()
