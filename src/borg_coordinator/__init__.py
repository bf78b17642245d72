"""Role-aware task coordinator for external CLI agents."""

__version__ = "0.1.0"
