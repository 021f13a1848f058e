"""
Sequential review of a batch session's proposed transactions.

The stepper owns the ordered list of TransactionExtraction records and the
reviewer's position in it. Approve and skip are two-phase: the change is
applied to a draft copy, persisted, and swapped into the list only after
the backend accepted it.
"""

import copy
import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from ..schemas import (
    BatchSession,
    ExtractionResult,
    ProcessingStatus,
    TransactionExtraction,
    TransactionState,
    derive_transaction_state,
)
from .card import ReviewEdits

if TYPE_CHECKING:
    from ..api_client import ReceiptApiClient
    from .clarification import ClarificationController

logger = logging.getLogger(__name__)


class StepOutcome(str, Enum):
    """Result of an approve or skip request."""

    ADVANCED = "advanced"  # Moved to the next transaction
    FINALIZED = "finalized"  # Last transaction handled, session completed
    FINALIZE_FAILED = "finalize_failed"  # Last transaction handled, completing the session failed
    IGNORED = "ignored"  # Not allowed right now; nothing changed


class ReviewStepper:
    """
    Walks a reviewer through a batch session one transaction at a time.

    Operations are refused (IGNORED) while another operation is in flight,
    so approvals for a transaction are never issued twice concurrently.
    """

    def __init__(
        self,
        api: "ReceiptApiClient",
        batch_session_id: str,
        transactions: Iterable[TransactionExtraction],
        current_index: Optional[int] = None,
    ):
        """
        Args:
            api: Backend client used to persist decisions
            batch_session_id: Session the transactions belong to
            transactions: Proposed transactions (ordered by transaction_index)
            current_index: Starting position; defaults to the first
                transaction that has not been approved or skipped
        """
        self.api = api
        self.batch_session_id = batch_session_id
        self._transactions: list[TransactionExtraction] = sorted(
            transactions, key=lambda t: t.transaction_index
        )
        self._resolved: set[int] = set()
        self._lock = threading.Lock()

        self.is_finalized = False
        self._finalize_pending = False
        self.last_error: Optional[Exception] = None
        self.pending_edits: Optional[ReviewEdits] = None

        if current_index is None:
            first_open = self._first_open_position()
            current_index = first_open if first_open is not None else 0
        self.current_index = self._clamp(current_index)

    @classmethod
    def from_session(cls, api: "ReceiptApiClient", session: BatchSession) -> "ReviewStepper":
        """Resume a stored session at its first unhandled transaction."""
        stepper = cls(api, session.id, session.transactions)
        if stepper._first_open_position() is None:
            stepper.current_index = stepper._clamp(session.current_index)
        return stepper

    @classmethod
    def from_result(cls, api: "ReceiptApiClient", result: ExtractionResult) -> "ReviewStepper":
        """Start reviewing the output of a fresh extraction run."""
        return cls(api, result.batch_session_id, result.transactions, current_index=0)

    # --- Read-only views ---

    @property
    def transactions(self) -> tuple:
        return tuple(self._transactions)

    @property
    def total(self) -> int:
        return len(self._transactions)

    @property
    def current(self) -> Optional[TransactionExtraction]:
        if not self._transactions:
            return None
        return self._transactions[self.current_index]

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def finalize_pending(self) -> bool:
        """True after completing the session failed; finalize() retries it."""
        return self._finalize_pending

    @property
    def is_last(self) -> bool:
        return self.current_index >= len(self._transactions) - 1

    def state_of(self, position: int) -> TransactionState:
        record = self._transactions[position]
        return derive_transaction_state(record, resolved=record.transaction_index in self._resolved)

    @property
    def current_state(self) -> Optional[TransactionState]:
        if not self._transactions:
            return None
        return self.state_of(self.current_index)

    @property
    def states(self) -> list[TransactionState]:
        return [self.state_of(i) for i in range(len(self._transactions))]

    @property
    def processing_status_by_index(self) -> dict[int, Optional[ProcessingStatus]]:
        return {t.transaction_index: t.processing_status for t in self._transactions}

    @property
    def approved_count(self) -> int:
        return sum(1 for t in self._transactions if t.processing_status is ProcessingStatus.APPROVED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for t in self._transactions if t.processing_status is ProcessingStatus.SKIPPED)

    # --- Operations ---

    def approve_current(self, edits: Optional[ReviewEdits] = None) -> StepOutcome:
        """
        Approve the current transaction with the reviewer's edits.

        Advances to the next transaction, or finalizes the session when the
        current one is the last. If completing the session failed earlier,
        approving the handled last transaction retries it.

        Raises:
            ReceiptApiError: The backend rejected the approval; nothing was
                changed locally and the edits are kept in pending_edits
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Approve ignored: another operation is in flight")
            return StepOutcome.IGNORED
        try:
            if not self._can_act():
                return StepOutcome.IGNORED

            position = self.current_index
            state = self.state_of(position)
            if self._finalize_pending and state.is_terminal:
                return self._try_finalize()
            if state is TransactionState.APPROVED:
                return StepOutcome.IGNORED
            if state is TransactionState.CLARIFICATION_NEEDED:
                logger.debug("Approve ignored: transaction %d needs clarification", position)
                return StepOutcome.IGNORED

            draft = copy.deepcopy(self._transactions[position])
            if edits is not None:
                edits.apply_to(draft)
            draft.processing_status = ProcessingStatus.APPROVED

            self.pending_edits = edits
            try:
                response = self.api.approve_transaction(
                    self.batch_session_id,
                    draft.transaction_index,
                    edits.to_payload() if edits is not None else None,
                )
            except Exception as e:
                self.last_error = e
                logger.warning("Approving transaction %d failed: %s", draft.transaction_index, e)
                raise

            draft.created_transaction_id = (
                response.get("created_transaction_id")
                or response.get("transactionId")
                or draft.created_transaction_id
            )
            self._commit(position, draft)
            self.pending_edits = None
            logger.info(
                "Approved transaction %d of session %s", draft.transaction_index, self.batch_session_id
            )
            return self._advance()
        finally:
            self._lock.release()

    def skip_current(self) -> StepOutcome:
        """
        Skip the current transaction without creating it.

        Raises:
            ReceiptApiError: The backend rejected the skip; nothing changed
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Skip ignored: another operation is in flight")
            return StepOutcome.IGNORED
        try:
            if not self._can_act():
                return StepOutcome.IGNORED

            position = self.current_index
            state = self.state_of(position)
            if self._finalize_pending and state.is_terminal:
                return self._try_finalize()
            if state.is_terminal:
                return StepOutcome.IGNORED

            draft = copy.deepcopy(self._transactions[position])
            draft.processing_status = ProcessingStatus.SKIPPED

            try:
                self.api.skip_transaction(self.batch_session_id, draft.transaction_index)
            except Exception as e:
                self.last_error = e
                logger.warning("Skipping transaction %d failed: %s", draft.transaction_index, e)
                raise

            self._commit(position, draft)
            logger.info(
                "Skipped transaction %d of session %s", draft.transaction_index, self.batch_session_id
            )
            return self._advance()
        finally:
            self._lock.release()

    def navigate(self, position: int) -> int:
        """
        Move to another transaction. Does not change any processing status.

        Returns:
            The current position afterwards (unchanged while busy)
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Navigation ignored: an operation is in flight")
            return self.current_index
        try:
            self.current_index = self._clamp(position)
            return self.current_index
        finally:
            self._lock.release()

    def finalize(self) -> bool:
        """
        Mark the batch session completed (retry after a failed finalization).

        Returns:
            True if the session is finalized
        """
        if self.is_finalized:
            return True
        if not self._lock.acquire(blocking=False):
            return False
        try:
            self._finalize()
            return True
        finally:
            self._lock.release()

    def open_clarification(
        self,
        controller: "ClarificationController",
        on_resolved: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        Open the clarification dialogue of the current transaction.

        Only possible for a transaction that needs clarification (or
        confirmation) and has a clarification session.

        Returns:
            True if the controller was opened
        """
        record = self.current
        if record is None or self.is_busy or self.is_finalized:
            return False

        if self.current_state not in (
            TransactionState.CLARIFICATION_NEEDED,
            TransactionState.NEEDS_CONFIRMATION,
        ):
            return False

        if not record.clarification_session_id:
            logger.warning(
                "Transaction %d needs clarification but has no clarification session",
                record.transaction_index,
            )
            return False

        index = record.transaction_index

        def handle_resolved() -> None:
            self.mark_resolved(index, controller.resolved_entry)
            if on_resolved is not None:
                on_resolved()

        controller.on_resolved = handle_resolved
        controller.open(record.clarification_session_id, index)
        return True

    def mark_resolved(
        self, transaction_index: int, snapshot: Optional[TransactionExtraction] = None
    ) -> None:
        """
        Record that a clarification dialogue resolved a transaction.

        The backend's latest snapshot (if given) replaces the proposal; the
        reviewer's processing status and the session link are kept.
        """
        position = self._position_of(transaction_index)
        if position is None:
            logger.warning("Resolved transaction %d is not in this session", transaction_index)
            return

        if snapshot is not None:
            current = self._transactions[position]
            draft = copy.deepcopy(snapshot)
            draft.processing_status = current.processing_status
            draft.clarification_session_id = (
                current.clarification_session_id or snapshot.clarification_session_id
            )
            draft.created_transaction_id = current.created_transaction_id
            if not draft.is_renderable:
                draft.transaction = copy.deepcopy(current.transaction)
                draft.enrichment_data = copy.deepcopy(current.enrichment_data)
            self._commit(position, draft)

        self._resolved.add(transaction_index)
        logger.info("Transaction %d clarified", transaction_index)

    # --- Internals ---

    def _can_act(self) -> bool:
        return bool(self._transactions) and not self.is_finalized

    def _advance(self) -> StepOutcome:
        if self.current_index < len(self._transactions) - 1:
            self.current_index += 1
            return StepOutcome.ADVANCED
        return self._try_finalize()

    def _try_finalize(self) -> StepOutcome:
        # The decision is already committed; only the session stays open.
        try:
            self._finalize()
        except Exception:
            return StepOutcome.FINALIZE_FAILED
        return StepOutcome.FINALIZED

    def _finalize(self) -> None:
        try:
            self.api.complete_session(self.batch_session_id)
        except Exception as e:
            self.last_error = e
            self._finalize_pending = True
            logger.warning("Completing session %s failed: %s", self.batch_session_id, e)
            raise
        self.is_finalized = True
        self._finalize_pending = False
        self.last_error = None
        logger.info(
            "Session %s finalized: %d approved, %d skipped",
            self.batch_session_id,
            self.approved_count,
            self.skipped_count,
        )

    def _commit(self, position: int, draft: TransactionExtraction) -> None:
        updated = list(self._transactions)
        updated[position] = draft
        self._transactions = updated
        self.last_error = None

    def _clamp(self, position: int) -> int:
        if not self._transactions:
            return 0
        return max(0, min(position, len(self._transactions) - 1))

    def _position_of(self, transaction_index: int) -> Optional[int]:
        for position, record in enumerate(self._transactions):
            if record.transaction_index == transaction_index:
                return position
        return None

    def _first_open_position(self) -> Optional[int]:
        for position, record in enumerate(self._transactions):
            if record.processing_status is None:
                return position
        return None
