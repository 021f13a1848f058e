"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- login / logout: Manage the stored session
- status: Show sessions and the next action for a receipt
- detect: Document type and transaction count
- process: Run extraction with live progress
- review: Interactive sequential review
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
