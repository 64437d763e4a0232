"""SGD updater, evaluation metrics, data iterators and network structure configuration on numpy."""

__version__ = "0.1.0"