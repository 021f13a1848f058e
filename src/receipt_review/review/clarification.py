"""
Clarification dialogue for one ambiguous transaction.

The reviewer answers the backend's questions in free text. Each turn
returns fresh snapshots of the batch's transactions; the dialogue ends when
the snapshot of the bound transaction reports it fully resolved.
"""

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, Optional

from ..schemas import (
    ClarificationMessage,
    MessageRole,
    TransactionExtraction,
    is_clarification_resolved,
)

if TYPE_CHECKING:
    from ..api_client import ReceiptApiClient

logger = logging.getLogger(__name__)


class ClarificationController:
    """
    Conversation state for one clarification session.

    Only one turn can be outstanding at a time; send() is refused while a
    turn is in flight, after the dialogue resolved, or when it is closed.
    """

    def __init__(
        self,
        api: "ReceiptApiClient",
        on_resolved: Optional[Callable[[], None]] = None,
        resolve_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            api: Backend client
            on_resolved: Called once when the bound transaction is resolved
            resolve_delay: Seconds to wait before on_resolved so the final
                assistant message can be read
            sleep: Sleep function (replaced in tests)
        """
        self.api = api
        self.on_resolved = on_resolved
        self.resolve_delay = resolve_delay
        self._sleep = sleep
        self._lock = threading.Lock()
        self._reset()

    def _reset(self) -> None:
        self.session_id: Optional[str] = None
        self.transaction_index: Optional[int] = None
        self._messages: list[ClarificationMessage] = []
        self.is_open = False
        self.is_resolved = False
        self.resolved_entry: Optional[TransactionExtraction] = None
        self.last_error: Optional[Exception] = None

    @property
    def messages(self) -> tuple:
        return tuple(self._messages)

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def input_enabled(self) -> bool:
        return self.is_open and not self.is_busy and not self.is_resolved

    def open(self, session_id: str, transaction_index: int) -> None:
        """
        Bind to a clarification session and load its history.

        Raises:
            ReceiptApiError: History could not be loaded (the dialogue stays
                open with an empty thread)
        """
        self._reset()
        self.session_id = session_id
        self.transaction_index = transaction_index
        self.is_open = True

        try:
            history = self.api.get_clarification_history(session_id)
        except Exception as e:
            self.last_error = e
            logger.warning("Loading clarification session %s failed: %s", session_id, e)
            raise

        self._messages = list(history)
        logger.debug(
            "Opened clarification session %s for transaction %d (%d messages)",
            session_id,
            transaction_index,
            len(self._messages),
        )

    def send(self, message: str) -> Optional[TransactionExtraction]:
        """
        Send one reviewer answer.

        Returns:
            The bound transaction's new snapshot, or None if the turn was
            refused or the response did not describe the bound transaction

        Raises:
            ReceiptApiError: The turn failed; the reviewer's message stays in
                the thread
        """
        text = message.strip()
        if not text or not self.is_open or self.is_resolved:
            return None
        if not self._lock.acquire(blocking=False):
            logger.debug("Clarification message ignored: a turn is in flight")
            return None

        try:
            self._messages.append(ClarificationMessage(role=MessageRole.USER, content=text))

            try:
                entries = self.api.send_clarification_message(self.session_id, text)
            except Exception as e:
                self.last_error = e
                logger.warning("Clarification turn for session %s failed: %s", self.session_id, e)
                raise
            self.last_error = None

            entry = next(
                (e for e in entries if e.transaction_index == self.transaction_index), None
            )
            if entry is None:
                logger.warning(
                    "Clarification response for session %s has no transaction %d",
                    self.session_id,
                    self.transaction_index,
                )
                return None

            if entry.notes:
                self._messages.append(
                    ClarificationMessage(role=MessageRole.ASSISTANT, content=entry.notes)
                )

            if is_clarification_resolved(entry):
                self._resolve(entry)
            return entry
        finally:
            self._lock.release()

    def close(self) -> None:
        self.is_open = False

    def _resolve(self, entry: TransactionExtraction) -> None:
        self.is_resolved = True
        self.resolved_entry = entry
        logger.info("Clarification session %s resolved", self.session_id)

        if self.resolve_delay > 0:
            self._sleep(self.resolve_delay)
        if self.on_resolved is not None:
            self.on_resolved()
