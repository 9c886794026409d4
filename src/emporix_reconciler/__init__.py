"""Reconciliation core for managing Emporix tenant resources declaratively."""

__version__ = "0.1.0"
