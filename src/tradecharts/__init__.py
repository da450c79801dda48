"""Crosschain trade candle pipeline."""

__version__ = "0.1.0"
