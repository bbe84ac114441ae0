"""AbacaTrack — seedling allocation, fiber stock and delivery tracking."""

__version__ = "0.1.0"
