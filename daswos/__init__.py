"""DasWos Coins: wallet ledger and coin economy service for the DasWos marketplace."""

__version__ = "0.1.0"
