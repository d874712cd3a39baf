"""
Operators for the standard layer kinds.

An operator is stateless. ``forward(layer, x, aux)`` returns the layer output
and ``backward(layer, x, dzdy, aux)`` returns the gradient with respect to
``x`` together with a dict of parameter gradients. ``aux`` is a scratch dict
the engine keeps for one pass of one layer; it carries the ``training`` flag
and the random generator, and dropout stores its mask there.

All activations are (height, width, channels, instances).
"""
import numpy as np


class Operator:
    """Base class for all layer operators."""

    def forward(self, layer, x, aux=None):
        """Compute the layer output from its input."""
        raise NotImplementedError

    def backward(self, layer, x, dzdy, aux=None):
        """Compute (dzdx, parameter gradients) from the input and dzdy."""
        raise NotImplementedError


# Helper Functions
def _output_size(size, pad_before, pad_after, window, stride):
    out = (size + pad_before + pad_after - window) // stride + 1
    if out < 1:
        raise ValueError(
            f"Window of size {window} does not fit an input of size {size} "
            f"padded by ({pad_before}, {pad_after})")
    return out


def _window_slices(out_h, out_w, window, stride):
    """
    Enumerate the offsets of a sliding window.

    For offset (i, j) the returned slices select, for every output position,
    the input pixel that the offset covers.
    """
    for i in range(window[0]):
        rows = slice(i, i + stride[0] * (out_h - 1) + 1, stride[0])
        for j in range(window[1]):
            cols = slice(j, j + stride[1] * (out_w - 1) + 1, stride[1])
            yield i, j, rows, cols


def _pad(x, pad, value=0):
    top, bottom, left, right = pad
    if not any(pad):
        return x
    return np.pad(x, ((top, bottom), (left, right), (0, 0), (0, 0)),
                  mode='constant', constant_values=value)


def _crop(x, pad):
    top, bottom, left, right = pad
    return x[top:x.shape[0] - bottom, left:x.shape[1] - right]


def _as_float(x):
    x = np.asarray(x)
    return x.astype(np.result_type(x.dtype, np.float32), copy=False)


def _softmax(x):
    shifted = x - np.max(x, axis=2, keepdims=True)
    exp_x = np.exp(shifted)
    return exp_x / np.sum(exp_x, axis=2, keepdims=True)


class ConvOperator(Operator):
    """Grouped 2-D convolution with stride and zero padding."""

    @staticmethod
    def _groups(layer, channels):
        filter_channels, n_filters = layer.filters.shape[2:]
        groups, remainder = divmod(channels, filter_channels)
        if remainder or groups == 0 or n_filters % groups:
            raise ValueError(
                f"Layer {layer.name!r}: {channels} input channels do not match "
                f"filters of shape {layer.filters.shape}")
        return groups

    def _geometry(self, layer, x):
        filter_h, filter_w = layer.filters.shape[:2]
        top, bottom, left, right = layer.pad
        out_h = _output_size(x.shape[0], top, bottom, filter_h, layer.stride[0])
        out_w = _output_size(x.shape[1], left, right, filter_w, layer.stride[1])
        return out_h, out_w

    def forward(self, layer, x, aux=None):
        """Forward pass: convolution + bias"""
        x = _as_float(x)
        filter_h, filter_w, filter_channels, n_filters = layer.filters.shape
        groups = self._groups(layer, x.shape[2])
        per_group = n_filters // groups
        out_h, out_w = self._geometry(layer, x)
        x_padded = _pad(x, layer.pad)

        y = np.zeros((out_h, out_w, n_filters, x.shape[3]),
                     dtype=np.result_type(x, layer.filters))
        for g in range(groups):
            x_group = x_padded[:, :, g * filter_channels:(g + 1) * filter_channels]
            out = slice(g * per_group, (g + 1) * per_group)
            for i, j, rows, cols in _window_slices(out_h, out_w, (filter_h, filter_w),
                                                   layer.stride):
                y[:, :, out] += np.einsum('hwcn,ck->hwkn', x_group[rows, cols],
                                          layer.filters[i, j, :, out], optimize=True)
        return y + layer.biases.reshape(1, 1, -1, 1)

    def backward(self, layer, x, dzdy, aux=None):
        """Backward pass: input, filter and bias gradients"""
        x = _as_float(x)
        filter_h, filter_w, filter_channels, n_filters = layer.filters.shape
        groups = self._groups(layer, x.shape[2])
        per_group = n_filters // groups
        out_h, out_w = dzdy.shape[:2]
        x_padded = _pad(x, layer.pad)

        dtype = np.result_type(x, layer.filters, dzdy)
        dzdx_padded = np.zeros(x_padded.shape, dtype=dtype)
        dfilters = np.zeros(layer.filters.shape, dtype=dtype)
        for g in range(groups):
            channels = slice(g * filter_channels, (g + 1) * filter_channels)
            out = slice(g * per_group, (g + 1) * per_group)
            x_group = x_padded[:, :, channels]
            dzdy_group = dzdy[:, :, out]
            for i, j, rows, cols in _window_slices(out_h, out_w, (filter_h, filter_w),
                                                   layer.stride):
                dfilters[i, j, :, out] += np.einsum('hwcn,hwkn->ck', x_group[rows, cols],
                                                    dzdy_group, optimize=True)
                dzdx_padded[rows, cols, channels] += np.einsum(
                    'hwkn,ck->hwcn', dzdy_group, layer.filters[i, j, :, out],
                    optimize=True)

        dbiases = np.sum(dzdy, axis=(0, 1, 3))
        return _crop(dzdx_padded, layer.pad), {'filters': dfilters, 'biases': dbiases}


class ReLUOperator(Operator):
    """ReLU: f(x) = max(0, x)"""

    def forward(self, layer, x, aux=None):
        return np.maximum(x, 0)

    def backward(self, layer, x, dzdy, aux=None):
        return dzdy * (x > 0), {}


class PoolOperator(Operator):
    """Spatial max/average pooling."""

    def _padded(self, layer, x):
        x = _as_float(x)
        top, bottom, left, right = layer.pad
        out_h = _output_size(x.shape[0], top, bottom, layer.pool[0], layer.stride[0])
        out_w = _output_size(x.shape[1], left, right, layer.pool[1], layer.stride[1])
        fill = -np.inf if layer.method == 'max' else 0
        return _pad(x, layer.pad, fill), out_h, out_w

    def forward(self, layer, x, aux=None):
        x_padded, out_h, out_w = self._padded(layer, x)
        windows = _window_slices(out_h, out_w, layer.pool, layer.stride)
        if layer.method == 'max':
            y = None
            for _, _, rows, cols in windows:
                patch = x_padded[rows, cols]
                y = patch.copy() if y is None else np.maximum(y, patch)
            return y

        y = sum(x_padded[rows, cols] for _, _, rows, cols in windows)
        return y / (layer.pool[0] * layer.pool[1])

    def backward(self, layer, x, dzdy, aux=None):
        """Backward pass: route gradients to max locations or spread them evenly"""
        x_padded, out_h, out_w = self._padded(layer, x)
        windows = list(_window_slices(out_h, out_w, layer.pool, layer.stride))
        dzdx_padded = np.zeros(x_padded.shape, dtype=np.result_type(x_padded, dzdy))

        if layer.method == 'max':
            patches = np.stack([x_padded[rows, cols] for _, _, rows, cols in windows])
            winners = np.argmax(patches, axis=0)
            for k, (_, _, rows, cols) in enumerate(windows):
                dzdx_padded[rows, cols] += dzdy * (winners == k)
        else:
            share = dzdy / (layer.pool[0] * layer.pool[1])
            for _, _, rows, cols in windows:
                dzdx_padded[rows, cols] += share

        return _crop(dzdx_padded, layer.pad), {}


def _channel_window_sum(a, before, after):
    """Sum `a` over channels [k - before, k + after] for every channel k."""
    channels = a.shape[2]
    padded = np.pad(a, ((0, 0), (0, 0), (before + 1, after), (0, 0)), mode='constant')
    cumulative = np.cumsum(padded, axis=2)
    return cumulative[:, :, before + after + 1:] - cumulative[:, :, :channels]


class NormalizeOperator(Operator):
    """
    Cross-channel local response normalization.

    y_k = x_k * (kappa + alpha * sum_{q in G(k)} x_q^2) ** -beta where G(k)
    spans `depth` channels around k.
    """

    @staticmethod
    def _window(depth):
        before = (depth - 1) // 2
        return before, depth - 1 - before

    def _scale(self, layer, x):
        depth, kappa, alpha, _ = layer.param
        before, after = self._window(depth)
        return kappa + alpha * _channel_window_sum(x ** 2, before, after)

    def forward(self, layer, x, aux=None):
        x = _as_float(x)
        beta = layer.param[3]
        return x * self._scale(layer, x) ** -beta

    def backward(self, layer, x, dzdy, aux=None):
        x = _as_float(x)
        depth, _, alpha, beta = layer.param
        before, after = self._window(depth)
        scale = self._scale(layer, x)
        # channel q feeds every k whose window contains it: the mirrored window
        spread = _channel_window_sum(dzdy * x * scale ** (-beta - 1), after, before)
        return dzdy * scale ** -beta - 2 * alpha * beta * x * spread, {}


class DropoutOperator(Operator):
    """Inverted dropout; identity outside training."""

    def forward(self, layer, x, aux=None):
        if aux is None or not aux.get('training') or layer.rate == 0.0:
            return x
        rng = aux.get('rng') or np.random.default_rng()
        keep = rng.random(np.shape(x)) >= layer.rate
        aux['mask'] = (keep / (1 - layer.rate)).astype(_as_float(x).dtype)
        return x * aux['mask']

    def backward(self, layer, x, dzdy, aux=None):
        if aux is not None and 'mask' in aux:
            return dzdy * aux['mask'], {}
        return dzdy, {}


class SoftmaxOperator(Operator):
    """Softmax over the channel axis."""

    def forward(self, layer, x, aux=None):
        return _softmax(_as_float(x))

    def backward(self, layer, x, dzdy, aux=None):
        y = _softmax(_as_float(x))
        return y * (dzdy - np.sum(dzdy * y, axis=2, keepdims=True)), {}


class SoftmaxLossOperator(Operator):
    """
    Multinomial log loss of the softmax, summed over instances and positions.

    Labels are 0-based class indices attached to the layer by the caller, one
    per instance.
    """

    @staticmethod
    def _labels(layer, x):
        if getattr(layer, 'labels', None) is None:
            raise ValueError(f"Loss layer {layer.name!r} has no labels attached")
        labels = np.asarray(layer.labels, dtype=np.int64).reshape(-1)
        if labels.shape[0] != x.shape[3]:
            raise ValueError(
                f"Got {labels.shape[0]} labels for {x.shape[3]} instances")
        if labels.size and (labels.min() < 0 or labels.max() >= x.shape[2]):
            raise ValueError(f"Labels must lie in [0, {x.shape[2]})")
        return labels

    def forward(self, layer, x, aux=None):
        x = _as_float(x)
        labels = self._labels(layer, x)
        x_max = np.max(x, axis=2, keepdims=True)
        log_norm = x_max + np.log(np.sum(np.exp(x - x_max), axis=2, keepdims=True))
        log_probs = x - log_norm
        picked = log_probs[:, :, labels, np.arange(x.shape[3])]
        return np.asarray(-np.sum(picked), dtype=x.dtype)

    def backward(self, layer, x, dzdy, aux=None):
        x = _as_float(x)
        labels = self._labels(layer, x)
        grad = _softmax(x)
        grad[:, :, labels, np.arange(x.shape[3])] -= 1
        return dzdy * grad, {}
