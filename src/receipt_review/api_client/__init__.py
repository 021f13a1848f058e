"""
Receipt/transaction backend API client.

Provides:
- Receipt, batch session and detection calls
- Sequential approve/skip/complete calls
- Clarification history and turns
- Read-only reference lists for review cards
- Retry/backoff for transient network failures on reads

401 responses clear the session context and raise AuthenticationRequired.
"""

from .client import (
    ReceiptApiClient,
    ReceiptApiConnectionError,
    ReceiptApiError,
    ReceiptApiResponseError,
    ReferenceItem,
)

__all__ = [
    "ReceiptApiClient",
    "ReceiptApiConnectionError",
    "ReceiptApiError",
    "ReceiptApiResponseError",
    "ReferenceItem",
]
