"""Rates service: tracks instrument prices and flags significant variations."""

__version__ = "0.1.0"
