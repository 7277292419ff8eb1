"""Licence admin service: license lifecycle and provider reconciliation."""

__version__ = "0.1.0"
