"""
SSOT (Single Source of Truth) schemas for the review client.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .clarification import ClarificationMessage, MessageRole, unwrap_assistant_text
from .extraction import (
    TERMINAL_STATUSES,
    EnrichmentData,
    ProcessingStatus,
    ProposedTransaction,
    TransactionExtraction,
    TransactionState,
    derive_transaction_state,
    is_clarification_resolved,
    is_complete_flag,
    parse_extractions,
)
from .receipt import (
    BatchSession,
    BatchSessionStatus,
    DetectionResult,
    ExtractionMetadata,
    ExtractionResult,
    Receipt,
    ReceiptStatus,
    parse_timestamp,
)

__all__ = [
    # Clarification
    "ClarificationMessage",
    "MessageRole",
    "unwrap_assistant_text",
    # Extraction records
    "TERMINAL_STATUSES",
    "EnrichmentData",
    "ProcessingStatus",
    "ProposedTransaction",
    "TransactionExtraction",
    "TransactionState",
    "derive_transaction_state",
    "is_clarification_resolved",
    "is_complete_flag",
    "parse_extractions",
    # Receipts and sessions
    "BatchSession",
    "BatchSessionStatus",
    "DetectionResult",
    "ExtractionMetadata",
    "ExtractionResult",
    "Receipt",
    "ReceiptStatus",
    "parse_timestamp",
]
