"""Token management and group-priority channel selection."""

__version__ = "0.1.0"
