"""Storefront cart/checkout core."""

__version__ = "0.1.0"
