"""amptop – live and historical battery statistics."""

__version__ = "0.2.0"
