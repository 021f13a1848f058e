"""
AI-proposed transaction records (SSOT).

A TransactionExtraction is one proposed transaction inside a batch session.
The backend sends these as snake_case JSON; this module is the only place
that interprets their flags.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)


class ProcessingStatus(str, Enum):
    """Reviewer disposition of a proposed transaction.

    A record that was never processed has no status (None), which is kept
    distinct from both values below.
    """

    APPROVED = "approved"
    SKIPPED = "skipped"

    @classmethod
    def parse(cls, value: Any) -> Optional["ProcessingStatus"]:
        if value is None or value == "":
            return None
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown processing_status %r, treating as unprocessed", value)
            return None


class TransactionState(str, Enum):
    """Displayed state of a proposed transaction in the review stepper."""

    READY = "READY"
    CLARIFICATION_NEEDED = "CLARIFICATION_NEEDED"
    NEEDS_CONFIRMATION = "NEEDS_CONFIRMATION"
    APPROVED = "APPROVED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionState.APPROVED, TransactionState.SKIPPED)


TERMINAL_STATUSES = frozenset({ProcessingStatus.APPROVED, ProcessingStatus.SKIPPED})


def _parse_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


def _parse_flag(value: Any) -> Optional[bool]:
    # Only real booleans; a missing or null flag stays None
    return value if isinstance(value, bool) else None


@dataclass
class ProposedTransaction:
    """Concrete transaction fields proposed by the extraction service."""

    amount: Optional[float] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    payment_method: Optional[str] = None
    time_sent: Optional[str] = None  # ISO timestamp or date
    category: Optional[str] = None  # Category name as read by the model
    transaction_type: Optional[str] = None
    transaction_direction: Optional[str] = None
    fees: Optional[float] = None
    status: Optional[str] = None
    summary: Optional[str] = None
    raw_input: Optional[str] = None
    sender_name: Optional[str] = None
    sender_bank: Optional[str] = None
    receiver_name: Optional[str] = None
    receiver_bank: Optional[str] = None
    receiver_account_number: Optional[str] = None
    transaction_reference: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProposedTransaction":
        return cls(**{name: data.get(name) for name in cls.__dataclass_fields__})

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class EnrichmentData:
    """Backend lookups resolved for a proposed transaction."""

    contact_id: Optional[str] = None
    category_id: Optional[str] = None
    user_bank_account_id: Optional[str] = None
    to_bank_account_id: Optional[str] = None
    is_self_transaction: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "EnrichmentData":
        return cls(
            contact_id=data.get("contact_id"),
            category_id=data.get("category_id"),
            user_bank_account_id=data.get("user_bank_account_id"),
            to_bank_account_id=data.get("to_bank_account_id"),
            is_self_transaction=bool(data.get("is_self_transaction", False)),
        )

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "category_id": self.category_id,
            "user_bank_account_id": self.user_bank_account_id,
            "to_bank_account_id": self.to_bank_account_id,
            "is_self_transaction": self.is_self_transaction,
        }


@dataclass
class TransactionExtraction:
    """
    One AI-proposed transaction awaiting reviewer disposition.

    transaction and enrichment_data are either both present or both None;
    a record without them cannot be approved as-is.
    """

    transaction_index: int
    transaction: Optional[ProposedTransaction] = None
    enrichment_data: Optional[EnrichmentData] = None
    confidence_score: float = 0.0
    # None when the backend omitted the flag or sent null
    needs_clarification: Optional[bool] = False
    needs_confirmation: Optional[bool] = False
    clarification_session_id: Optional[str] = None
    processing_status: Optional[ProcessingStatus] = None
    notes: str = ""
    # Raw backend value ("true"/"false"); read it through is_complete_flag()
    is_complete: Optional[str] = None
    missing_fields: list[str] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    created_transaction_id: Optional[str] = None

    @property
    def is_renderable(self) -> bool:
        """True when the record holds a concrete transaction."""
        return self.transaction is not None and self.enrichment_data is not None

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionExtraction":
        """
        Deserialize from backend JSON.

        Raises:
            ValueError: transaction_index is missing or not an integer
        """
        index = _parse_index(data.get("transaction_index"))
        if index is None:
            raise ValueError(f"invalid transaction_index {data.get('transaction_index')!r}")

        txn_data = data.get("transaction")
        enrichment = data.get("enrichment_data")

        transaction = ProposedTransaction.from_dict(txn_data) if txn_data else None
        enrichment_data = EnrichmentData.from_dict(enrichment) if enrichment else None

        if (transaction is None) != (enrichment_data is None):
            logger.warning(
                "Transaction %s has %s without %s; treating it as incomplete",
                data.get("transaction_index"),
                "transaction" if transaction else "enrichment_data",
                "enrichment_data" if transaction else "transaction",
            )
            transaction = None
            enrichment_data = None

        is_complete = data.get("is_complete")
        if is_complete is not None and not isinstance(is_complete, str):
            # Kept as the backend sent it; is_complete_flag() decides.
            is_complete = str(is_complete)

        return cls(
            transaction_index=index,
            transaction=transaction,
            enrichment_data=enrichment_data,
            confidence_score=float(data.get("confidence_score") or 0.0),
            needs_clarification=_parse_flag(data.get("needs_clarification")),
            needs_confirmation=_parse_flag(data.get("needs_confirmation")),
            clarification_session_id=data.get("clarification_session_id"),
            processing_status=ProcessingStatus.parse(data.get("processing_status")),
            notes=data.get("notes") or "",
            is_complete=is_complete,
            missing_fields=list(data.get("missing_fields") or []),
            questions=list(data.get("questions") or []),
            created_transaction_id=data.get("created_transaction_id"),
        )

    def to_dict(self) -> dict:
        """Serialize to backend JSON shape."""
        return {
            "transaction_index": self.transaction_index,
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "enrichment_data": self.enrichment_data.to_dict() if self.enrichment_data else None,
            "confidence_score": self.confidence_score,
            "needs_clarification": self.needs_clarification,
            "needs_confirmation": self.needs_confirmation,
            "clarification_session_id": self.clarification_session_id,
            "processing_status": (
                self.processing_status.value if self.processing_status else None
            ),
            "notes": self.notes,
            "is_complete": self.is_complete,
            "missing_fields": self.missing_fields,
            "questions": self.questions,
            "created_transaction_id": self.created_transaction_id,
        }


def parse_extractions(items: Optional[Iterable[Any]]) -> list[TransactionExtraction]:
    """Parse a list of backend records, skipping entries that cannot be matched by index."""
    parsed = []
    for item in items or []:
        if not isinstance(item, dict):
            logger.warning("Skipping transaction entry that is not an object: %r", item)
            continue
        try:
            parsed.append(TransactionExtraction.from_dict(item))
        except ValueError as e:
            logger.warning("Skipping transaction entry: %s", e)
    return parsed


def is_complete_flag(value: Any) -> bool:
    """
    Interpret the backend's is_complete field.

    The backend sends the strings "true"/"false". Only the exact string
    "true" means complete; booleans and other spellings are not coerced.
    """
    # TODO: switch to a boolean once the clarification endpoint returns one
    return value == "true"


def is_clarification_resolved(entry: TransactionExtraction) -> bool:
    """True when a clarification turn reports the transaction as fully resolved."""
    return (
        entry.needs_clarification is False
        and entry.needs_confirmation is False
        and is_complete_flag(entry.is_complete)
    )


def derive_transaction_state(
    record: TransactionExtraction, resolved: bool = False
) -> TransactionState:
    """
    Compute the displayed state of a proposed transaction.

    Args:
        record: The extraction record
        resolved: True once a clarification dialogue for it has completed

    Returns:
        Processing status wins; then a missing payload (always
        CLARIFICATION_NEEDED, even after a clarification); then a completed
        clarification; then the flags.
    """
    if record.processing_status is ProcessingStatus.APPROVED:
        return TransactionState.APPROVED
    if record.processing_status is ProcessingStatus.SKIPPED:
        return TransactionState.SKIPPED
    if not record.is_renderable:
        return TransactionState.CLARIFICATION_NEEDED
    if resolved:
        return TransactionState.READY
    if record.needs_clarification:
        return TransactionState.CLARIFICATION_NEEDED
    if record.needs_confirmation:
        return TransactionState.NEEDS_CONFIRMATION
    return TransactionState.READY
