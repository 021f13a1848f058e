"""
Entry-point decision for a receipt: continue an open session or process anew.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ..schemas import (
    TERMINAL_STATUSES,
    BatchSession,
    BatchSessionStatus,
    ProcessingStatus,
    Receipt,
    TransactionExtraction,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ResolverAction(str, Enum):
    """Primary call-to-action for a receipt."""

    PROCESS = "process"  # Start a new extraction run
    CONTINUE = "continue"  # Resume reviewing the active session


@dataclass(frozen=True)
class SessionResolution:
    active_session: Optional[BatchSession]
    action: ResolverAction


def _created_key(session: BatchSession) -> datetime:
    created = session.created_at_dt
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


def find_active_session(receipt: Receipt) -> Optional[BatchSession]:
    """Most recently created in-progress session of the receipt, or None."""
    candidates = [
        s for s in receipt.batch_sessions if s.status is BatchSessionStatus.IN_PROGRESS
    ]
    if not candidates:
        return None
    if len(candidates) > 1:
        logger.debug(
            "Receipt %s has %d in-progress sessions, using the newest", receipt.id, len(candidates)
        )
    return max(candidates, key=_created_key)


class SessionResolver:
    """
    Decides whether a receipt's extraction session should be continued.

    Stateless: every call recomputes from the receipt passed in, so a
    reloaded receipt never sees a stale decision.
    """

    def __init__(self, resume_skipped: bool = False):
        """
        Args:
            resume_skipped: Count skipped transactions as pending work
        """
        self.resume_skipped = resume_skipped

    def is_pending(self, record: TransactionExtraction) -> bool:
        status = record.processing_status
        if status is None:
            return True
        if status is ProcessingStatus.SKIPPED:
            return self.resume_skipped
        return status not in TERMINAL_STATUSES

    def resolve(self, receipt: Receipt) -> SessionResolution:
        session = find_active_session(receipt)
        if session is None:
            return SessionResolution(None, ResolverAction.PROCESS)

        if not session.transactions:
            return SessionResolution(session, ResolverAction.PROCESS)

        if any(self.is_pending(t) for t in session.transactions):
            return SessionResolution(session, ResolverAction.CONTINUE)

        # Every transaction is done although the session row is still open
        logger.debug("Session %s has no pending transactions", session.id)
        return SessionResolution(session, ResolverAction.PROCESS)
