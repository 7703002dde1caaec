"""Job application tracker with an optimistic client cache."""

__version__ = "0.1.0"
