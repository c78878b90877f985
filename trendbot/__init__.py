"""TrendBot: multi-platform trend intelligence engine."""

__version__ = "0.1.0"
