"""Order intake and cancellation service for the delivery platform."""

__version__ = "0.1.0"
