"""PT Desk: sessions, packages, payments and trainer commissions."""

__version__ = "1.0.0"
