"""Daily body scan processing pipeline."""

__version__ = "1.0.0"
