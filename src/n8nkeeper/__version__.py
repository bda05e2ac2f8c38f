"""Version information for n8nkeeper."""

__version__ = "0.3.0"
