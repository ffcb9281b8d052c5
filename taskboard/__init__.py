"""Session-authenticated task tracker backend."""

__version__ = "1.0.0"
