"""
View pooling: collapse the views of every object into one feature map.

Activations are laid out as (height, width, channels, instances) where the
instance axis enumerates (object, view) pairs with the views of an object
stored contiguously: object 0 views 0..V-1, then object 1, and so on.
"""
import numpy as np

from ..exceptions import ViewCountMismatch
from ._operators import Operator
from .layers import check_pooling_method


def _group_views(x, stride):
    """Reshape (H, W, C, N) to (H, W, C, N / stride, stride)."""
    height, width, channels, n_instances = x.shape
    if n_instances % stride != 0:
        raise ViewCountMismatch(n_instances, stride)
    return x.reshape(height, width, channels, n_instances // stride, stride)


def viewpool_forward(x, stride, method='max'):
    """
    Pool groups of `stride` consecutive instances.

    Args:
        x (ndarray): Activations of shape (H, W, C, N)
        stride (int): Number of views per object
        method (str): 'max' or 'avg'

    Returns:
        ndarray: Pooled activations of shape (H, W, C, N / stride)

    Raises:
        ViewCountMismatch: if N is not a multiple of `stride`
        UnknownPoolingMethod: for any other `method`
    """
    check_pooling_method(method)
    grouped = _group_views(np.asarray(x), stride)
    if method == 'avg':
        return grouped.mean(axis=4)
    return grouped.max(axis=4)


def viewpool_backward(method, stride, x, dzdy):
    """
    Distribute the gradient of the pooled output back over the views.

    For 'avg' every view receives ``dzdy / stride``. For 'max' the whole
    gradient goes to the view that held the maximum in `x`; on ties the first
    view in the group wins.

    Args:
        method (str): 'max' or 'avg'
        stride (int): Number of views per object
        x (ndarray): The input of the matching forward call, shape (H, W, C, N)
        dzdy (ndarray): Gradient of the pooled output, shape (H, W, C, N / stride)

    Returns:
        ndarray: Gradient with respect to `x`, shape (H, W, C, N)
    """
    check_pooling_method(method)
    x = np.asarray(x)
    dzdy = np.asarray(dzdy)
    grouped = _group_views(x, stride)
    if grouped.shape[:4] != dzdy.shape:
        raise ValueError(
            f"Gradient of shape {dzdy.shape} does not match pooled input "
            f"of shape {grouped.shape[:4]}")

    if method == 'avg':
        # np.repeat keeps the copies of group g at g*stride .. g*stride+stride-1
        return np.repeat(dzdy / stride, stride, axis=3)

    # argmax mask: exactly one 1 per (position, channel, object)
    winners = np.argmax(grouped, axis=4)
    mask = np.zeros(grouped.shape, dtype=dzdy.dtype)
    np.put_along_axis(mask, winners[..., np.newaxis], 1, axis=4)
    dzdx = mask * dzdy[..., np.newaxis]
    return dzdx.reshape(x.shape)


class ViewPoolOperator(Operator):
    """Operator for ``viewpool`` layers."""

    def forward(self, layer, x, aux=None):
        """Forward pass through the view pooling layer."""
        return viewpool_forward(x, layer.stride, layer.method)

    def backward(self, layer, x, dzdy, aux=None):
        """Backward pass; the layer has no parameters."""
        return viewpool_backward(layer.method, layer.stride, x, dzdy), {}
