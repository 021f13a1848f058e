"""
Progress stream events.

Each event line of the stream carries one JSON object with a "type"
discriminator: connected, progress, complete or error.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..schemas import ExtractionResult

logger = logging.getLogger(__name__)


class ProcessingStep(str, Enum):
    """Named extraction steps, in the order the server usually sends them.

    The order is not guaranteed; steps may repeat or be skipped.
    """

    VALIDATING_RECEIPT = "validating_receipt"
    FETCHING_USER_DATA = "fetching_user_data"
    CHECKING_SESSION = "checking_session"
    INVOKING_AI = "invoking_ai"
    ANALYZING_TRANSACTIONS = "analyzing_transactions"
    EXECUTING_TOOLS = "executing_tools"
    CREATING_SESSION = "creating_session"
    ENRICHING_DATA = "enriching_data"
    FINALIZING_EXTRACTION = "finalizing_extraction"
    COMPLETE = "complete"


CANCELLED_MESSAGE = "Processing cancelled"


@dataclass(frozen=True)
class ConnectedEvent:
    type: str = "connected"


@dataclass(frozen=True)
class ProgressEvent:
    step: str
    message: str
    progress: int
    type: str = "progress"

    @property
    def known_step(self) -> Optional[ProcessingStep]:
        """The step as a ProcessingStep, or None for names this client does not know."""
        try:
            return ProcessingStep(self.step)
        except ValueError:
            return None


@dataclass(frozen=True)
class CompleteEvent:
    result: ExtractionResult
    type: str = "complete"


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    cancelled: bool = False
    type: str = "error"


StreamEvent = Union[ConnectedEvent, ProgressEvent, CompleteEvent, ErrorEvent]


def _clamp_progress(value) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, number))


def parse_stream_event(data: dict) -> Optional[StreamEvent]:
    """
    Map one decoded event object to a typed event.

    Returns:
        The event, or None for unknown or unusable objects (logged, skipped)
    """
    event_type = data.get("type")

    if event_type == "connected":
        return ConnectedEvent()

    if event_type == "progress":
        return ProgressEvent(
            step=str(data.get("step") or ""),
            message=str(data.get("message") or ""),
            progress=_clamp_progress(data.get("progress")),
        )

    if event_type == "complete":
        payload = data.get("data")
        if not isinstance(payload, dict) or "batch_session_id" not in payload:
            logger.warning("Complete event without a batch_session_id, skipping")
            return None
        return CompleteEvent(result=ExtractionResult.from_dict(payload))

    if event_type == "error":
        return ErrorEvent(message=str(data.get("message") or "An error occurred during processing"))

    logger.debug("Skipping unknown stream event type %r", event_type)
    return None
