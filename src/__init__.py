# src/__init__.py — v1
"""gradecache — offline submission cache and concurrent sync engine."""

__version__ = "0.1.0"
