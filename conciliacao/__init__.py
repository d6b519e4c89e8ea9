"""Conciliação: reconciliation of bank statements against settlement reports."""

__version__ = "1.0.0"
