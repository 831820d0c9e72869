"""roomcron - scheduled chat messages."""

__version__ = "0.1.0"
