"""memoriq - a private memory journal with on-device semantic recall."""

__version__ = "0.1.0"
