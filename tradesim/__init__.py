"""Stock-trading simulation backend: share ownership ledger and transfers."""

__version__ = "1.0.0"
