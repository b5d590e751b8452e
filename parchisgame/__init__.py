"""Parchis board model, dice, AI players, online protocol and matchmaking servers."""

__version__ = "0.1.0"

__all__ = ["__version__"]