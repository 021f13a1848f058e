"""
Receipt and batch session records.

Receipt and session rows come from the persistence API in camelCase;
the AI payloads nested inside them stay snake_case.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .extraction import TransactionExtraction, parse_extractions

logger = logging.getLogger(__name__)


class ReceiptStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class BatchSessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent by the backend (``Z`` suffix allowed)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None


@dataclass
class ExtractionMetadata:
    """How the receipt text was obtained."""

    is_pdf: bool = False
    is_scanned: Optional[bool] = None
    page_count: Optional[int] = None
    extraction_method: Optional[str] = None  # "native" or "ocr"
    ocr_confidence: Optional[float] = None
    processing_time: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractionMetadata":
        return cls(
            is_pdf=bool(data.get("isPDF", False)),
            is_scanned=data.get("isScanned"),
            page_count=data.get("pageCount"),
            extraction_method=data.get("extractionMethod"),
            ocr_confidence=data.get("ocrConfidence"),
            processing_time=data.get("processingTime"),
        )


@dataclass
class BatchSession:
    """
    One extraction run over a receipt.

    The session owns its TransactionExtraction records; they are parsed once
    from extracted_data and never shared with another session.
    """

    id: str
    receipt_id: str
    status: BatchSessionStatus
    total_expected: int = 0
    total_processed: int = 0
    current_index: int = 0
    processing_mode: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    extracted_data: dict = field(default_factory=dict)
    transactions: list[TransactionExtraction] = field(default_factory=list)

    @property
    def created_at_dt(self) -> Optional[datetime]:
        return parse_timestamp(self.created_at)

    @classmethod
    def from_dict(cls, data: dict) -> "BatchSession":
        extracted = data.get("extractedData") or {}

        raw_transactions = extracted.get("transaction_results")
        if raw_transactions is None:
            raw_transactions = (extracted.get("extraction_response") or {}).get(
                "transactions", []
            )

        try:
            status = BatchSessionStatus(data.get("status", "in_progress"))
        except ValueError:
            logger.warning(
                "Unknown batch session status %r for %s", data.get("status"), data.get("id")
            )
            status = BatchSessionStatus.FAILED

        return cls(
            id=data["id"],
            receipt_id=data.get("receiptId", ""),
            status=status,
            total_expected=data.get("totalExpected") or 0,
            total_processed=data.get("totalProcessed") or 0,
            current_index=data.get("currentIndex") or 0,
            processing_mode=data.get("processingMode"),
            created_at=data.get("createdAt"),
            completed_at=data.get("completedAt"),
            extracted_data=extracted,
            transactions=parse_extractions(raw_transactions),
        )


@dataclass
class Receipt:
    """An uploaded receipt or bank statement."""

    id: str
    processing_status: ReceiptStatus
    expected_transactions: Optional[int] = None
    raw_ocr_text: Optional[str] = None
    extraction_metadata: Optional[ExtractionMetadata] = None
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    uploaded_at: Optional[str] = None
    document_type: Optional[str] = None
    processed_transactions: int = 0
    detection_completed: bool = False
    batch_sessions: list[BatchSession] = field(default_factory=list)
    # Finalized transactions are opaque here
    transactions: list[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Receipt":
        metadata = data.get("extractionMetadata")
        try:
            status = ReceiptStatus(data.get("processingStatus", "pending"))
        except ValueError:
            logger.warning("Unknown receipt status %r", data.get("processingStatus"))
            status = ReceiptStatus.PENDING

        return cls(
            id=data["id"],
            processing_status=status,
            expected_transactions=data.get("expectedTransactions"),
            raw_ocr_text=data.get("rawOcrText"),
            extraction_metadata=ExtractionMetadata.from_dict(metadata) if metadata else None,
            file_url=data.get("fileUrl"),
            file_type=data.get("fileType"),
            uploaded_at=data.get("uploadedAt"),
            document_type=data.get("documentType"),
            processed_transactions=data.get("processedTransactions") or 0,
            detection_completed=bool(data.get("detectionCompleted", False)),
            batch_sessions=[BatchSession.from_dict(s) for s in data.get("batchSessions") or []],
            transactions=list(data.get("transactions") or []),
        )


@dataclass
class DetectionResult:
    """Outcome of document-type detection (POST /receipt/extract/{id})."""

    document_type: str = "unknown"
    transaction_count: int = 0
    confidence: float = 0.0
    recommended_mode: Optional[str] = None
    transaction_preview: list[dict] = field(default_factory=list)
    notes: str = ""
    receipt: Optional[Receipt] = None

    @property
    def no_transactions_found(self) -> bool:
        return self.transaction_count == 0

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionResult":
        detection = data.get("detection", data)
        receipt = data.get("receipt")
        return cls(
            document_type=detection.get("document_type") or "unknown",
            transaction_count=int(detection.get("transaction_count") or 0),
            confidence=float(detection.get("confidence") or 0.0),
            recommended_mode=detection.get("recommended_mode") or data.get("processingMode"),
            transaction_preview=list(detection.get("transaction_preview") or []),
            notes=detection.get("notes") or "",
            receipt=Receipt.from_dict(receipt) if receipt else None,
        )


@dataclass
class ExtractionResult:
    """Final payload of a successful extraction run."""

    batch_session_id: str
    total_transactions: int = 0
    successfully_initiated: int = 0
    transactions: list[TransactionExtraction] = field(default_factory=list)
    overall_confidence: float = 0.0
    processing_notes: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractionResult":
        return cls(
            batch_session_id=data["batch_session_id"],
            total_transactions=int(data.get("total_transactions") or 0),
            successfully_initiated=int(data.get("successfully_initiated") or 0),
            transactions=parse_extractions(data.get("transactions")),
            overall_confidence=float(data.get("overall_confidence") or 0.0),
            processing_notes=data.get("processing_notes") or "",
        )
