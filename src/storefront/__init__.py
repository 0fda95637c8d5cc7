"""Storefront: e-commerce catalog, cart, order and review API."""

__version__ = "0.1.0"
