"""Media library indexer."""

__version__ = "0.4.0"
