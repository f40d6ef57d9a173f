"""Withdrawal settings engine for the wallet management admin dashboard."""

__version__ = "1.0.0"
