"""FalconX clone detection API."""

__version__ = "0.1.0"
