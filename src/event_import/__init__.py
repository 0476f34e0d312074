"""Bulk spreadsheet import reconciliation for event programs, prizes and students."""

__version__ = "0.1.0"
