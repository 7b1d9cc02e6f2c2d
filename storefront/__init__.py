"""Storefront back-office service: order administration and invoice consistency."""

__version__ = "1.0.0"
