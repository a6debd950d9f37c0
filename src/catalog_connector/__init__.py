"""Storefront catalog connector service."""

__version__ = "1.0.0"
