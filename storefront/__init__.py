"""Cache-aside data access layer for the storefront backend."""

__version__ = "0.1.0"
