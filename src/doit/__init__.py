"""doit - dependency-aware work tracking for agents."""

__version__ = "0.1.0"
