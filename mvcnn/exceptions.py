"""
Errors raised while building or running a multi-view network.
"""


class ViewCountMismatch(ValueError):
    """The instance axis cannot be split into groups of `stride` views."""

    def __init__(self, n_instances, stride):
        self.n_instances = n_instances
        self.stride = stride
        super().__init__(
            f"all shapes should have the same number of views: {n_instances} "
            f"instances cannot be grouped by stride {stride}")


class UnknownPoolingMethod(ValueError):
    """A view or spatial pooling method other than 'max' or 'avg' was requested."""

    def __init__(self, method):
        self.method = method
        super().__init__(f"Unknown pooling method: {method!r}")


class LayerNotFound(KeyError):
    """No layer in the sequence carries the requested name."""

    def __init__(self, name):
        self.name = name
        super().__init__(name)

    def __str__(self):
        return f"No layer named {self.name!r} in the network"
