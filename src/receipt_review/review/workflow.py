"""
Review workflow management.

Ties the pieces together for one receipt:
resolve the entry point → run (or resume) an extraction session → review
each proposed transaction, branching into clarification dialogues.

Transport and backend failures land in ``error``; none of them end the
workflow, the reviewer can always retry or move on.
"""

import logging
import time
from typing import Callable, Optional

from ..api_client import ReceiptApiClient, ReceiptApiError
from ..config import ReviewConfig
from ..progress_stream import ExtractionTracker, ProgressStreamClient, StreamEvent
from ..schemas import DetectionResult, Receipt, TransactionExtraction
from .card import ReferenceData, ReviewCard
from .clarification import ClarificationController
from .resolver import ResolverAction, SessionResolution, SessionResolver
from .stepper import ReviewStepper, StepOutcome

logger = logging.getLogger(__name__)


class ReviewWorkflow:
    """
    Manages the review workflow of one receipt.

    Responsibilities:
    - Decide between starting and continuing a session
    - Run the extraction and follow its progress
    - Keep the review card bound to the current transaction
    - Route clarification results back into the stepper
    """

    def __init__(
        self,
        api: ReceiptApiClient,
        stream_client: ProgressStreamClient,
        config: Optional[ReviewConfig] = None,
        references: Optional[ReferenceData] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api = api
        self.config = config or ReviewConfig()
        self.tracker = ExtractionTracker(stream_client)
        self.resolver = SessionResolver(resume_skipped=self.config.resume_skipped)
        self.clarification = ClarificationController(
            api, resolve_delay=self.config.resolve_delay_seconds, sleep=sleep
        )
        self._references = references

        self.receipt: Optional[Receipt] = None
        self.resolution: Optional[SessionResolution] = None
        self.stepper: Optional[ReviewStepper] = None
        self.card: Optional[ReviewCard] = None
        self.error: Optional[str] = None

    @property
    def references(self) -> ReferenceData:
        """Pick lists, fetched on first use and shared by every card."""
        if self._references is None:
            self._references = ReferenceData.load(self.api)
        return self._references

    @property
    def primary_action(self) -> Optional[ResolverAction]:
        return self.resolution.action if self.resolution else None

    @property
    def is_processing(self) -> bool:
        return self.tracker.is_processing

    # --- Entry point ---

    def load(self, receipt_id: str) -> Optional[SessionResolution]:
        """(Re)load the receipt and recompute the primary action."""
        try:
            self.receipt = self.api.get_receipt(receipt_id)
        except ReceiptApiError as e:
            self._fail(f"Could not load receipt {receipt_id}", e)
            return None

        self.error = None
        self.resolution = self.resolver.resolve(self.receipt)
        logger.debug(
            "Receipt %s: action=%s session=%s",
            receipt_id,
            self.resolution.action.value,
            self.resolution.active_session.id if self.resolution.active_session else None,
        )
        return self.resolution

    def detect(self) -> Optional[DetectionResult]:
        """Run document detection on the loaded receipt."""
        if self.receipt is None:
            return None
        try:
            result = self.api.extract_receipt(self.receipt.id)
        except ReceiptApiError as e:
            self._fail("Document detection failed", e)
            return None
        self.error = None
        return result

    def start(
        self,
        bank_account_id: str,
        on_event: Optional[Callable[[StreamEvent], None]] = None,
    ) -> bool:
        """
        Run a new extraction and open its session for review.

        Returns:
            True if a session is ready for review; on failure or
            cancellation ``error`` holds the reason and start() can be
            called again
        """
        if self.receipt is None or self.tracker.is_processing:
            return False

        self.error = None
        self.stepper = None
        result = self.tracker.run(self.receipt.id, bank_account_id, on_event=on_event)
        if result is None:
            self.error = self.tracker.error
            return False

        self.stepper = ReviewStepper.from_result(self.api, result)
        self._bind_current()
        return True

    def cancel(self) -> None:
        """Cancel a running extraction."""
        self.tracker.cancel()

    def resume(self) -> bool:
        """Open the active session for review when the action is "continue"."""
        if self.resolution is None or self.resolution.action is not ResolverAction.CONTINUE:
            return False
        session = self.resolution.active_session
        if session is None:
            return False

        self.stepper = ReviewStepper.from_session(self.api, session)
        self._bind_current()
        logger.info(
            "Resumed session %s at transaction %d of %d",
            session.id,
            self.stepper.current_index + 1,
            self.stepper.total,
        )
        return True

    # --- Review ---

    def approve(self) -> StepOutcome:
        """Approve the current transaction with the card's edits."""
        if self.stepper is None or self.card is None:
            return StepOutcome.IGNORED
        if not self.stepper.finalize_pending and not self.card.can_submit:
            logger.debug("Approve blocked, missing: %s", ", ".join(self.card.missing_fields()))
            return StepOutcome.IGNORED

        try:
            outcome = self.stepper.approve_current(self.card.edits())
        except ReceiptApiError as e:
            self._fail("Approval failed", e)
            return StepOutcome.IGNORED

        return self._after_step(outcome)

    def skip(self) -> StepOutcome:
        """Skip the current transaction."""
        if self.stepper is None:
            return StepOutcome.IGNORED
        try:
            outcome = self.stepper.skip_current()
        except ReceiptApiError as e:
            self._fail("Skip failed", e)
            return StepOutcome.IGNORED

        return self._after_step(outcome)

    def finalize(self) -> bool:
        """Retry completing the session after a failed finalization."""
        if self.stepper is None:
            return False
        try:
            done = self.stepper.finalize()
        except ReceiptApiError as e:
            self._fail("Completing the session failed", e)
            return False
        self.error = None
        return done

    def navigate(self, position: int) -> int:
        if self.stepper is None:
            return 0
        position = self.stepper.navigate(position)
        self._bind_current()
        return position

    # --- Clarification ---

    def open_clarification(self) -> bool:
        if self.stepper is None:
            return False
        try:
            return self.stepper.open_clarification(
                self.clarification, on_resolved=self._on_clarified
            )
        except ReceiptApiError as e:
            self._fail("Could not load the clarification thread", e)
            return self.clarification.is_open

    def send_clarification(self, message: str) -> Optional[TransactionExtraction]:
        try:
            entry = self.clarification.send(message)
        except ReceiptApiError as e:
            self._fail("Clarification message failed", e)
            return None
        self.error = None
        return entry

    def close_clarification(self) -> None:
        self.clarification.close()

    # --- Internals ---

    def _after_step(self, outcome: StepOutcome) -> StepOutcome:
        if outcome is StepOutcome.FINALIZE_FAILED:
            self._fail("Completing the session failed", self.stepper.last_error)
        elif outcome is not StepOutcome.IGNORED:
            self.error = None
        self._bind_current()
        return outcome

    def _on_clarified(self) -> None:
        self.clarification.close()
        current = self.stepper.current if self.stepper else None
        if self.card is not None and current is not None:
            if current.transaction_index == self.clarification.transaction_index:
                self.card.reset(current)

    def _bind_current(self) -> None:
        if self.stepper is None or self.stepper.current is None:
            return
        if self.card is None:
            try:
                references = self.references
            except ReceiptApiError as e:
                self._fail("Could not load reference lists", e)
                references = ReferenceData()
            self.card = ReviewCard(references, tuple(self.config.required_fields))
        self.card.bind(self.stepper.current)

    def _fail(self, context: str, error: Exception) -> None:
        message = getattr(error, "message", None) or str(error)
        self.error = message
        logger.warning("%s: %s", context, message)
