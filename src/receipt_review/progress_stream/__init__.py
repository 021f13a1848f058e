"""
Extraction progress stream.

Provides:
- Incremental ``data:`` line tokenizer (transport independent)
- Typed progress events
- Cancellable httpx streaming client
- Tracker holding progress/message/step/result/error for a run
"""

from .client import ProgressStream, ProgressStreamClient
from .events import (
    CANCELLED_MESSAGE,
    CompleteEvent,
    ConnectedEvent,
    ErrorEvent,
    ProcessingStep,
    ProgressEvent,
    StreamEvent,
    parse_stream_event,
)
from .tokenizer import EventLineTokenizer
from .tracker import ExtractionTracker

__all__ = [
    "CANCELLED_MESSAGE",
    "CompleteEvent",
    "ConnectedEvent",
    "ErrorEvent",
    "EventLineTokenizer",
    "ExtractionTracker",
    "ProcessingStep",
    "ProgressEvent",
    "ProgressStream",
    "ProgressStreamClient",
    "StreamEvent",
    "parse_stream_event",
]
