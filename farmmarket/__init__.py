"""Farm Market storefront and back-office API."""

__version__ = "1.0.0"
