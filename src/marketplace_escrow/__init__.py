"""Marketplace escrow: payment hold, client confirmation and timeout auto-release."""

__version__ = "0.1.0"
