"""Chat-driven inventory tracker on an append-only spreadsheet ledger."""

__version__ = "2.1.0"
