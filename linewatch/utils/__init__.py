"""Utility modules."""

from linewatch.utils.logging import setup_logging

__all__ = [
    "setup_logging",
]
