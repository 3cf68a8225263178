"""Content scanning and manifest building for the photo portfolio."""

__version__ = "0.1.0"
