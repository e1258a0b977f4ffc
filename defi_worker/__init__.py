"""Background worker of the DeFi portfolio dashboard."""

__version__ = "0.1.0"
