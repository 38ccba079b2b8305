"""Asyncio engine for multi-agent simulations, with seeded Poisson sampling and local nonce management."""

__version__ = "0.1.0"
__all__ = ["agent", "machine", "math", "messager", "nonce", "world"]