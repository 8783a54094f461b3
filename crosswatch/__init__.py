"""Streaming EMA crossover monitor with a versioned price-change model lifecycle."""

__version__ = "0.3.0"
