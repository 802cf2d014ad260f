"""AppStats: application usage tracking with automatic grouping."""

__version__ = "0.1.0"
