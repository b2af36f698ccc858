"""Relay Trading Bot package."""

__version__ = "0.1.0"
