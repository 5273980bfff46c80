"""Pet photo stylization job pipeline."""

__version__ = "0.1.0"
