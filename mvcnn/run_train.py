"""
Train a CNN on an image database under ``<data_dir>/<imdb_name>``.

With ``--multiview`` the instances are shapes rendered from several views and
a view pooling layer merges the views after ``--viewpool-loc``.

    python -m mvcnn.run_train modelnet40v1 --multiview --base-model imagenet-vgg-m
"""
import argparse
import os

import numpy as np

from .common.utils import compute_average_image, experiment_dir
from .datasets import get_batch_wrapper, get_imdb
from .neural_networks import (
    DEFAULT_LEARNING_RATE,
    DropoutLayer,
    Network,
    SGDTrainer,
    add_viewpool,
    initialize_network,
    save_network,
    strip_for_deployment
)
from .neural_networks import add_dropout as insert_dropout


def run_train(imdb_name, seed=1, batch_size=128, num_epochs=30,
              base_model='imagenet-vgg-m', prefix='v1', aug='none', add_dropout=True,
              border=None, multiview=False, viewpool_loc='fc7', viewpool_method='max',
              learning_rate=DEFAULT_LEARNING_RATE, momentum=0.9, data_dir='data',
              model_url=None, verbose=True):
    """
    Train a CNN model on a provided dataset.

    Args:
        imdb_name (str): Name of a folder under `data_dir`
        seed (int): Random seed
        batch_size (int): Set to a smaller number on limited memory
        num_epochs (int): Set to a higher value when training from scratch
        base_model (str): Pretrained model to fine-tune; empty to train from scratch
        prefix (str): Additional experiment identifier
        aug (str): Augmentation, 'none' or 'f2'
        add_dropout (bool): Add dropout in front of the last two fc layers
        border (int or tuple, optional): Resize border used for cropping
        multiview (bool): Use shapes (with multiple views) instead of images
        viewpool_loc (str): Layer after which views are pooled (multiview only)
        viewpool_method (str): 'max' or 'avg'
        learning_rate (sequence): Learning rate per epoch
        momentum (float): Learning momentum
        data_dir (str): Root of datasets, models and experiments
        model_url (str, optional): Where to download missing pretrained models from
        verbose (bool): Print progress messages

    Returns:
        Network: The trained network, stripped for deployment
    """
    rng = np.random.default_rng(seed)
    exp_dir = experiment_dir(imdb_name, base_model, prefix=prefix, seed=seed,
                             data_dir=data_dir)
    os.makedirs(exp_dir, exist_ok=True)

    # Image database
    imdb = get_imdb(imdb_name, data_dir=data_dir, verbose=verbose)
    n_views = imdb.n_views if multiview else 1

    # Network initialization
    net = initialize_network(base_model, imdb.classes,
                             model_dir=os.path.join(data_dir, 'models'),
                             model_url=model_url, rng=rng, verbose=verbose)
    if border is not None:
        border = (border, border) if np.isscalar(border) else tuple(border)
        if len(border) == 1:
            border = border * 2
        net.normalization.border = tuple(int(b) for b in border)

    if net.normalization.average_image is None:
        net.normalization.average_image = compute_average_image(
            imdb, get_batch_wrapper(net.normalization, augmentation=aug,
                                    invert=imdb.invert, rng=rng),
            os.path.join(exp_dir, 'average.npy'), verbose=verbose)

    if add_dropout and not any(isinstance(layer, DropoutLayer) for layer in net.layers):
        net.layers = insert_dropout(net.layers, rate=0.5)

    if multiview:
        net.layers = add_viewpool(net.layers, n_views, loc=viewpool_loc,
                                  method=viewpool_method)

    # Stochastic gradient descent
    trainer = SGDTrainer(batch_size=batch_size, num_epochs=num_epochs,
                         learning_rate=learning_rate, momentum=momentum,
                         exp_dir=exp_dir, continue_training=True,
                         multiview=multiview, n_views=n_views,
                         conserve_memory=True, random_state=seed, verbose=verbose)
    get_batch = get_batch_wrapper(net.normalization, augmentation=aug,
                                  invert=imdb.invert, rng=rng)
    net, _ = trainer.fit(net, imdb, get_batch)

    # Save model
    final = Network(strip_for_deployment(net.layers), normalization=net.normalization,
                    classes=net.classes, description=net.description)
    save_network(os.path.join(exp_dir, 'final-model.npz'), final, verbose=verbose)
    return final


def _learning_rate(text):
    return tuple(float(value) for value in text.split(','))


def build_parser():
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument('imdb_name', help="dataset folder under --data-dir")
    parser.add_argument('--seed', type=int, default=1)
    parser.add_argument('--batch-size', type=int, default=128)
    parser.add_argument('--num-epochs', type=int, default=30)
    parser.add_argument('--base-model', default='imagenet-vgg-m',
                        help="pretrained model to fine-tune; empty to train from scratch")
    parser.add_argument('--prefix', default='v1')
    parser.add_argument('--aug', choices=('none', 'f2'), default='none')
    parser.add_argument('--add-dropout', action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument('--border', type=int, nargs='+')
    parser.add_argument('--multiview', action='store_true')
    parser.add_argument('--viewpool-loc', default='fc7')
    parser.add_argument('--viewpool-method', choices=('max', 'avg'), default='max')
    parser.add_argument('--learning-rate', type=_learning_rate,
                        default=DEFAULT_LEARNING_RATE,
                        help="comma separated learning rate per epoch")
    parser.add_argument('--momentum', type=float, default=0.9)
    parser.add_argument('--data-dir', default='data')
    parser.add_argument('--model-url')
    parser.add_argument('--quiet', action='store_true')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    run_train(args.imdb_name, seed=args.seed, batch_size=args.batch_size,
              num_epochs=args.num_epochs, base_model=args.base_model or None,
              prefix=args.prefix, aug=args.aug, add_dropout=args.add_dropout,
              border=args.border, multiview=args.multiview,
              viewpool_loc=args.viewpool_loc, viewpool_method=args.viewpool_method,
              learning_rate=args.learning_rate, momentum=args.momentum,
              data_dir=args.data_dir, model_url=args.model_url, verbose=not args.quiet)


if __name__ == '__main__':
    main()
