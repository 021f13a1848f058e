"""
Consumer-side state of an extraction run.

ExtractionTracker follows one ProgressStream and keeps the values a screen
or CLI shows while it runs: percentage, message, current step, whether a
run is in progress, and the final result or error.
"""

import logging
from typing import Callable, Optional

from ..schemas import ExtractionResult
from .client import ProgressStream, ProgressStreamClient
from .events import (
    CANCELLED_MESSAGE,
    CompleteEvent,
    ConnectedEvent,
    ErrorEvent,
    ProcessingStep,
    ProgressEvent,
    StreamEvent,
)

logger = logging.getLogger(__name__)

INCOMPLETE_STREAM_MESSAGE = "Progress stream ended before completion"


class ExtractionTracker:
    """Runs an extraction and records its progress."""

    def __init__(self, stream_client: ProgressStreamClient):
        self.stream_client = stream_client
        self._stream: Optional[ProgressStream] = None
        self._reset()
        self.result: Optional[ExtractionResult] = None
        self.error: Optional[str] = None

    def _reset(self) -> None:
        self.progress = 0
        self.message = ""
        self.step: Optional[str] = None
        self.is_processing = False

    def run(
        self,
        receipt_id: str,
        bank_account_id: str,
        on_event: Optional[Callable[[StreamEvent], None]] = None,
    ) -> Optional[ExtractionResult]:
        """
        Start an extraction and follow it to the end.

        Args:
            receipt_id: Receipt to extract
            bank_account_id: The reviewer's bank account for the run
            on_event: Called with every event after the state is updated

        Returns:
            The extraction result, or None if the run failed or was cancelled
            (see ``error``)
        """
        self._reset()
        self.is_processing = True
        self.result = None
        self.error = None

        self._stream = self.stream_client.start(receipt_id, bank_account_id)
        try:
            for event in self._stream:
                self._apply(event)
                if on_event is not None:
                    on_event(event)
                if isinstance(event, (CompleteEvent, ErrorEvent)):
                    break
            else:
                if self.result is None and self.error is None:
                    logger.warning("Extraction stream for %s ended early", receipt_id)
                    self.error = INCOMPLETE_STREAM_MESSAGE
        except KeyboardInterrupt:
            self.cancel()
            raise
        finally:
            self.is_processing = False
            self._stream = None

        return self.result

    def cancel(self) -> None:
        """Abort the running extraction; safe to call when nothing runs."""
        stream = self._stream
        if stream is not None:
            stream.cancel()
            self.error = CANCELLED_MESSAGE
        self._reset()

    def _apply(self, event: StreamEvent) -> None:
        if isinstance(event, ConnectedEvent):
            logger.debug("Connected to progress stream")
        elif isinstance(event, ProgressEvent):
            self.progress = event.progress
            self.message = event.message
            self.step = event.step
            logger.debug("Extraction step %s (%d%%): %s", event.step, event.progress, event.message)
        elif isinstance(event, CompleteEvent):
            self.result = event.result
            self.progress = 100
            self.message = "Processing complete!"
            self.step = ProcessingStep.COMPLETE.value
            self.is_processing = False
            logger.info(
                "Extraction complete: batch session %s with %d transactions",
                event.result.batch_session_id,
                event.result.total_transactions,
            )
        elif isinstance(event, ErrorEvent):
            self.error = event.message
            self.is_processing = False
            if event.cancelled:
                logger.info("Extraction cancelled")
            else:
                logger.warning("Extraction failed: %s", event.message)
