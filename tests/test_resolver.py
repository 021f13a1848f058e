"""Tests for the start-or-continue session resolver."""

from receipt_review.review import ResolverAction, SessionResolver, find_active_session
from receipt_review.schemas import Receipt


class TestFindActiveSession:
    """Test candidate session selection."""

    def test_no_sessions(self, make_receipt):
        receipt = Receipt.from_dict(make_receipt())

        assert find_active_session(receipt) is None

    def test_ignores_completed_and_failed(self, make_receipt, make_session):
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-done", status="completed"),
            make_session("bs-failed", status="failed"),
        ]))

        assert find_active_session(receipt) is None

    def test_newest_in_progress_wins(self, make_receipt, make_session):
        """Sessions are ordered by creation time, not list position."""
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-new", created_at="2024-11-20T09:00:00Z"),
            make_session("bs-old", created_at="2024-11-18T09:00:00Z"),
            make_session("bs-newest-done", status="completed", created_at="2024-11-21T09:00:00Z"),
        ]))

        assert find_active_session(receipt).id == "bs-new"

    def test_mixed_timestamp_formats(self, make_receipt, make_session):
        """Naive and offset timestamps compare without errors."""
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-naive", created_at="2024-11-20T09:00:00"),
            make_session("bs-aware", created_at="2024-11-20T10:00:00+00:00"),
        ]))

        assert find_active_session(receipt).id == "bs-aware"

    def test_missing_created_at_sorts_last(self, make_receipt, make_session):
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-unknown", created_at=None),
            make_session("bs-dated", created_at="2024-11-20T09:00:00Z"),
        ]))

        assert find_active_session(receipt).id == "bs-dated"


class TestSessionResolver:
    """Test the primary action decision."""

    def test_no_in_progress_session_means_process(self, make_receipt, make_session):
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-1", status="completed"),
        ]))

        resolution = SessionResolver().resolve(receipt)

        assert resolution.action is ResolverAction.PROCESS
        assert resolution.active_session is None

    def test_empty_session_means_process(self, make_receipt, make_session):
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-1", transactions=[]),
        ]))

        resolution = SessionResolver().resolve(receipt)

        assert resolution.action is ResolverAction.PROCESS
        assert resolution.active_session.id == "bs-1"

    def test_unprocessed_transaction_means_continue(
        self, make_receipt, make_session, make_transaction
    ):
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-1", transactions=[
                make_transaction(0, processing_status="approved"),
                make_transaction(1),
            ]),
        ]))

        resolution = SessionResolver().resolve(receipt)

        assert resolution.action is ResolverAction.CONTINUE
        assert resolution.active_session.id == "bs-1"

    def test_all_terminal_means_process(self, make_receipt, make_session, make_transaction):
        """A logically finished session still marked in_progress is not resumed."""
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-1", transactions=[
                make_transaction(0, processing_status="approved"),
                make_transaction(1, processing_status="skipped"),
                make_transaction(2, processing_status="approved"),
            ]),
        ]))

        resolution = SessionResolver().resolve(receipt)

        assert resolution.action is ResolverAction.PROCESS

    def test_resume_skipped_treats_skipped_as_pending(
        self, make_receipt, make_session, make_transaction
    ):
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-1", transactions=[
                make_transaction(0, processing_status="approved"),
                make_transaction(1, processing_status="skipped"),
            ]),
        ]))

        assert SessionResolver().resolve(receipt).action is ResolverAction.PROCESS
        assert (
            SessionResolver(resume_skipped=True).resolve(receipt).action
            is ResolverAction.CONTINUE
        )

    def test_unknown_status_counts_as_pending(
        self, make_receipt, make_session, make_transaction
    ):
        receipt = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-1", transactions=[
                make_transaction(0, processing_status="approved"),
                make_transaction(1, processing_status="on_hold"),
            ]),
        ]))

        assert SessionResolver().resolve(receipt).action is ResolverAction.CONTINUE

    def test_recomputed_after_reload(self, make_receipt, make_session, make_transaction):
        """The same resolver gives a fresh answer for a reloaded receipt."""
        resolver = SessionResolver()
        before = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-1", transactions=[make_transaction(0)]),
        ]))
        after = Receipt.from_dict(make_receipt(sessions=[
            make_session("bs-1", transactions=[
                make_transaction(0, processing_status="approved"),
            ]),
        ]))

        assert resolver.resolve(before).action is ResolverAction.CONTINUE
        assert resolver.resolve(after).action is ResolverAction.PROCESS

    def test_transactions_from_extraction_response(self, make_receipt, make_session, make_transaction):
        """Older sessions keep their transactions under extraction_response."""
        session = make_session("bs-1", transactions=[])
        session["extractedData"] = {
            "extraction_response": {"transactions": [make_transaction(0)]},
        }
        receipt = Receipt.from_dict(make_receipt(sessions=[session]))

        assert SessionResolver().resolve(receipt).action is ResolverAction.CONTINUE
