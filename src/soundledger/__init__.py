"""SoundLedger - catalog access reconciliation and recommendations."""

__version__ = "0.1.0"
