"""UCP cart and checkout session lifecycle service."""

__version__ = "0.1.0"
