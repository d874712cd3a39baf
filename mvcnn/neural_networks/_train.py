"""
Training loop: SGD with momentum over an image database, with per-epoch
checkpoints that a later run resumes from.
"""
import json
import os
import re
import time

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt  # pylint: disable=wrong-import-position
import numpy as np
from sklearn.metrics import accuracy_score

from ._serialization import load_network, save_network
from ._simplenn import simplenn
from .layers import SoftmaxLossLayer
from .optimizers import SGDOptimizer

DEFAULT_LEARNING_RATE = (0.001,) * 10 + (0.0001,) * 10 + (0.00001,) * 10

_CHECKPOINT = re.compile(r'^net-epoch-(\d+)\.npz$')
_STATISTICS = ('objective', 'error', 'top_five_error')


def error_counts(scores, labels):
    """
    Top-1 and top-5 misclassifications.

    Args:
        scores (ndarray): Class scores of shape (K, N)
        labels (ndarray): True class indices of shape (N,)

    Returns:
        tuple: (top-1 errors, top-5 errors) as counts
    """
    labels = np.asarray(labels).reshape(-1)
    predictions = np.argmax(scores, axis=0)
    top_one = len(labels) - accuracy_score(labels, predictions, normalize=False)
    ranked = np.argsort(-scores, axis=0, kind='stable')[:5]
    top_five = len(labels) - int(np.sum(np.any(ranked == labels, axis=0)))
    return int(top_one), int(top_five)


class SGDTrainer:
    """
    Mini-batch SGD for a `Network` ending in a softmax log-loss.

    In multiview mode the batches are made of shapes: every shape contributes
    all its views, contiguously, and one label.
    """

    def __init__(self, batch_size=128, num_epochs=30, learning_rate=DEFAULT_LEARNING_RATE,
                 momentum=0.9, weight_decay=0.0005, exp_dir=os.path.join('data', 'exp'),
                 continue_training=True, multiview=False, n_views=1,
                 conserve_memory=True, plot_statistics=True, random_state=None,
                 verbose=True):
        """
        Initialize the trainer.

        Args:
            batch_size (int): Images per batch, or shapes per batch in multiview mode
            num_epochs (int): Number of epochs to train for
            learning_rate (float or sequence): Learning rate, or one per epoch
                (the last value is reused once the schedule runs out)
            momentum (float): Momentum factor
            weight_decay (float): Global L2 weight decay
            exp_dir (str): Directory for checkpoints and plots
            continue_training (bool): Resume from the last checkpoint in `exp_dir`
            multiview (bool): Batch by shapes instead of images
            n_views (int): Views per shape in multiview mode
            conserve_memory (bool): Release intermediate activations early
            plot_statistics (bool): Save training curves to ``net-train.pdf``
            random_state (int, optional): Seed for shuffling and dropout
            verbose (bool): Print progress messages
        """
        self.batch_size = batch_size
        self.num_epochs = num_epochs
        self.learning_rate = (tuple(learning_rate) if np.ndim(learning_rate)
                              else (float(learning_rate),))
        self.momentum = momentum
        self.weight_decay = weight_decay
        self.exp_dir = exp_dir
        self.continue_training = continue_training
        self.multiview = multiview
        self.n_views = n_views if multiview else 1
        self.conserve_memory = conserve_memory
        self.plot_statistics = plot_statistics
        self.random_state = random_state
        self.verbose = verbose

        self.rng_ = np.random.default_rng(random_state)
        self.optimizer_ = SGDOptimizer(lr=self.learning_rate[0], momentum=momentum,
                                       weight_decay=weight_decay)
        self.info_ = None

    def _model_path(self, epoch):
        return os.path.join(self.exp_dir, f"net-epoch-{epoch}.npz")

    def _info_path(self, epoch):
        return os.path.join(self.exp_dir, f"net-epoch-{epoch}.json")

    def last_checkpoint(self):
        """Epoch of the newest checkpoint in `exp_dir`, 0 if there is none."""
        if not os.path.isdir(self.exp_dir):
            return 0
        epochs = [int(match.group(1)) for match in map(_CHECKPOINT.match, os.listdir(self.exp_dir))
                  if match]
        return max(epochs, default=0)

    def _units(self, imdb, set_id):
        """Batchable units of a split: shape ids in multiview mode, else rows."""
        if self.multiview:
            return np.asarray(imdb.shape_ids(set_id))
        return imdb.subset(set_id)

    def _rows(self, imdb, units):
        if self.multiview:
            return imdb.images_of_shapes(units)
        return units

    def fit(self, net, imdb, get_batch):
        """
        Train `net` on the training split of `imdb`.

        Args:
            net (Network): Network whose last layer is a softmax log-loss
            imdb (ImageDatabase): Images, labels and splits
            get_batch (callable): ``get_batch(imdb, rows) -> (images, labels)``

        Returns:
            tuple: (trained network, per-epoch statistics)
        """
        if not net.layers or not isinstance(net.layers[-1], SoftmaxLossLayer):
            raise ValueError("The network must end in a softmax log-loss layer")
        os.makedirs(self.exp_dir, exist_ok=True)

        train = self._units(imdb, 1)
        val = self._units(imdb, 2)
        if len(val) == 0:
            val = self._units(imdb, 3)

        info = {split: {name: [] for name in _STATISTICS} for split in ('train', 'val')}
        start = self.last_checkpoint() if self.continue_training else 0
        if start > 0:
            if self.verbose:
                print(f"Resuming by loading epoch {start}")
            net = load_network(self._model_path(start))
            with open(self._info_path(start), 'r', encoding='utf-8') as f:
                info = json.load(f)

        if self.verbose:
            print(f"Number of epochs: {self.num_epochs}, Batch size: {self.batch_size}, "
                  f"Training units: {len(train)}, Validation units: {len(val)}")

        for epoch in range(start, self.num_epochs):
            lr = self.learning_rate[min(epoch, len(self.learning_rate) - 1)]
            order = self.rng_.permutation(train)

            stats = self._process_epoch(net, imdb, get_batch, order, epoch + 1, lr=lr)
            for name in _STATISTICS:
                info['train'][name].append(stats[name])

            stats = self._process_epoch(net, imdb, get_batch, val, epoch + 1)
            for name in _STATISTICS:
                info['val'][name].append(stats[name])

            save_network(self._model_path(epoch + 1), net)
            with open(self._info_path(epoch + 1), 'w', encoding='utf-8') as f:
                json.dump(info, f)
            if self.plot_statistics:
                self._plot(info)

        self.info_ = info
        return net, info

    def _process_epoch(self, net, imdb, get_batch, units, epoch, lr=None):
        """Run one pass over `units`; trains when `lr` is given."""
        training = lr is not None
        mode = 'training' if training else 'validation'
        totals = dict.fromkeys(_STATISTICS, 0.0)
        count = 0
        n_batches = int(np.ceil(len(units) / self.batch_size))

        for k, first in enumerate(range(0, len(units), self.batch_size)):
            batch_time = time.time()
            rows = self._rows(imdb, units[first:first + self.batch_size])
            images, labels = get_batch(imdb, rows)
            labels = np.asarray(labels)[::self.n_views]
            net.layers[-1].labels = labels

            res = simplenn(net.layers, images, dzdy=1.0 if training else None,
                           training=training, conserve_memory=self.conserve_memory,
                           rng=self.rng_)

            if training:
                for layer, result in zip(net.layers, res):
                    if layer.params:
                        self.optimizer_.update(layer, result.dzdw, len(labels), lr=lr)

            top_one, top_five = error_counts(np.sum(res[-2].x, axis=(0, 1)), labels)
            totals['objective'] += float(res[-1].x)
            totals['error'] += top_one
            totals['top_five_error'] += top_five
            count += len(labels)

            if self.verbose:
                batch_time = time.time() - batch_time
                print(f"{mode}: epoch {epoch:02d}: processing batch {k + 1:3d} of "
                      f"{n_batches:3d} ... {len(rows) / max(batch_time, 1e-12):.1f} images/s "
                      f"err {totals['error'] / count:.3f} "
                      f"err5 {totals['top_five_error'] / count:.3f}")

        return {name: value / max(count, 1) for name, value in totals.items()}

    def _plot(self, info):
        epochs = np.arange(1, len(info['train']['objective']) + 1)
        fig, axes = plt.subplots(1, 2, figsize=(10, 4))
        for split in ('train', 'val'):
            axes[0].plot(epochs, info[split]['objective'], '.-', label=split)
        axes[0].set_xlabel('training epoch')
        axes[0].set_ylabel('energy')
        axes[0].set_title('objective')
        axes[0].grid(True)
        axes[0].legend()
        for split in ('train', 'val'):
            axes[1].plot(epochs, info[split]['error'], '.-', label=f"{split} (top1)")
            axes[1].plot(epochs, info[split]['top_five_error'], '--', label=f"{split} (top5)")
        axes[1].set_xlabel('training epoch')
        axes[1].set_ylabel('error')
        axes[1].set_title('error')
        axes[1].grid(True)
        axes[1].legend()
        fig.tight_layout()
        fig.savefig(os.path.join(self.exp_dir, 'net-train.pdf'))
        plt.close(fig)
