"""
Stochastic gradient descent with momentum for layer descriptors.
"""
import numpy as np


class SGDOptimizer:
    """
    Stochastic Gradient Descent optimizer with momentum and weight decay.

    Momentum buffers are kept on the layer itself (``filters_momentum``,
    ``biases_momentum``) so they are saved and restored with training
    checkpoints. Per-parameter learning-rate and weight-decay multipliers are
    read from ``<param>_learning_rate`` and ``<param>_weight_decay``; a missing
    multiplier counts as 1.
    """

    def __init__(self, lr=0.001, momentum=0.9, weight_decay=0.0005):
        """
        Initialize SGD optimizer.

        Args:
            lr (float): Learning rate
            momentum (float): Momentum factor
            weight_decay (float): Global L2 weight decay
        """
        self.lr = lr
        self.momentum = momentum
        self.weight_decay = weight_decay

    @staticmethod
    def _multiplier(layer, field):
        value = getattr(layer, field, None)
        return 1 if value is None else value

    def update(self, layer, grads, batch_size, lr=None):
        """
        Update the parameters of one layer in place.

        Args:
            layer (Layer): Layer descriptor with learnable arrays
            grads (dict): Gradients keyed by parameter name, summed over the batch
            batch_size (int): Number of instances the gradients were summed over
            lr (float, optional): Learning rate overriding ``self.lr`` for this step

        Returns:
            Layer: The updated layer
        """
        lr = self.lr if lr is None else lr
        for name in layer.params:
            if name not in grads:
                continue
            weights = getattr(layer, name)
            velocity_field = f"{name}_momentum"
            velocity = getattr(layer, velocity_field, None)
            if velocity is None:
                velocity = np.zeros_like(weights)

            step = lr * self._multiplier(layer, f"{name}_learning_rate")
            decay = self.weight_decay * self._multiplier(layer, f"{name}_weight_decay")
            velocity = (self.momentum * velocity
                        - step * decay * weights
                        - step / batch_size * grads[name])

            setattr(layer, velocity_field, velocity.astype(weights.dtype, copy=False))
            setattr(layer, name, weights + getattr(layer, velocity_field))
        return layer
