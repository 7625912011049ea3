"""Campaign dashboard backend for the Meta Marketing API."""

__version__ = "1.0.0"
