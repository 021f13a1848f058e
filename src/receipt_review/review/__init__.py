"""
Human-in-the-loop review module.

Provides:
- Session resolution (start vs. continue)
- Sequential review stepper
- Clarification dialogues
- Review card presentation model
- Review workflow management
"""

from .card import PAYMENT_METHODS, ReferenceData, ReviewCard, ReviewEdits
from .clarification import ClarificationController
from .resolver import ResolverAction, SessionResolution, SessionResolver, find_active_session
from .stepper import ReviewStepper, StepOutcome
from .workflow import ReviewWorkflow

__all__ = [
    "PAYMENT_METHODS",
    "ClarificationController",
    "ReferenceData",
    "ResolverAction",
    "ReviewCard",
    "ReviewEdits",
    "ReviewStepper",
    "ReviewWorkflow",
    "SessionResolution",
    "SessionResolver",
    "StepOutcome",
    "find_active_session",
]
