"""Round-settlement service for the Beer Distribution Game."""

__version__ = "1.0.0"
