"""tap_deploy: per-market release publication for the TAP web application."""

__all__ = ["__version__"]

__version__ = "0.1.0"
