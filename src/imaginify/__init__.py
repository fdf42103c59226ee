"""Identity sync and credit ledger service for the Imaginify image platform."""

__version__ = "0.1.0"
