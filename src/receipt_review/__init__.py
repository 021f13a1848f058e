"""
Receipt → AI extraction → Human-in-the-loop review → Transactions

Client for the sequential receipt-review workflow: resume or start an
extraction run, follow its progress stream, and walk a reviewer through the
AI-proposed transactions one at a time, with clarification dialogues for
the ambiguous ones.
"""

__version__ = "0.1.0"
