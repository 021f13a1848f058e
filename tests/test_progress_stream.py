"""
Tests for the extraction progress stream.

The HTTP side is driven by httpx.MockTransport, so chunk boundaries and
status codes are fully controlled without a server.
"""

import json

import httpx
import pytest

from receipt_review.auth import AuthenticationRequired, SessionContext
from receipt_review.progress_stream import (
    CANCELLED_MESSAGE,
    CompleteEvent,
    ConnectedEvent,
    ErrorEvent,
    EventLineTokenizer,
    ExtractionTracker,
    ProcessingStep,
    ProgressEvent,
    ProgressStreamClient,
    parse_stream_event,
)
from receipt_review.progress_stream.client import INITIATE_FAILED_MESSAGE
from receipt_review.progress_stream.tracker import INCOMPLETE_STREAM_MESSAGE

BASE_URL = "http://backend.test/api"


def line(obj: dict) -> str:
    return f"data: {json.dumps(obj, ensure_ascii=False)}\n"


def complete_payload(session_id: str = "bs-1") -> dict:
    return {
        "type": "complete",
        "data": {
            "batch_session_id": session_id,
            "total_transactions": 1,
            "successfully_initiated": 1,
            "transactions": [
                {
                    "transaction_index": 0,
                    "transaction": {"amount": 11.48, "currency": "EUR", "description": "SPAR"},
                    "enrichment_data": {"category_id": "cat-groceries"},
                    "confidence_score": 0.9,
                }
            ],
            "overall_confidence": 0.9,
            "processing_notes": "",
        },
    }


def make_client(handler, token: str = "tok-123") -> ProgressStreamClient:
    context = SessionContext(token=token)
    return ProgressStreamClient(BASE_URL, context, transport=httpx.MockTransport(handler))


def chunked(*chunks: str):
    """Build a handler answering 200 with the given body chunks."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=iter([c.encode("utf-8") for c in chunks]))

    return handler


class TestEventLineTokenizer:
    """Test the transport-independent line tokenizer."""

    def test_single_chunk_multiple_lines(self):
        """Every complete line is decoded in order."""
        tokenizer = EventLineTokenizer()
        events = tokenizer.feed(line({"type": "connected"}) + line({"type": "progress", "progress": 5}))

        assert [e["type"] for e in events] == ["connected", "progress"]
        assert tokenizer.pending == ""

    def test_partial_line_is_buffered(self):
        """A line split across chunks is decoded once it is complete."""
        tokenizer = EventLineTokenizer()
        text = line({"type": "progress", "step": "invoking_ai", "progress": 40})

        assert tokenizer.feed(text[:12]) == []
        assert tokenizer.pending == text[:12]
        events = tokenizer.feed(text[12:])

        assert events == [{"type": "progress", "step": "invoking_ai", "progress": 40}]

    def test_chunk_boundaries_do_not_change_result(self):
        """Any split of the same stream yields the same events."""
        text = (
            line({"type": "connected"})
            + line({"type": "progress", "step": "validating_receipt", "progress": 5})
            + line({"type": "error", "message": "rate limited"})
        )
        whole = EventLineTokenizer().feed(text)

        for size in (1, 3, 7, 16):
            tokenizer = EventLineTokenizer()
            events = []
            for start in range(0, len(text), size):
                events.extend(tokenizer.feed(text[start:start + size]))
            assert events == whole

    def test_split_utf8_bytes(self):
        """Multi-byte characters split between byte chunks are decoded intact."""
        raw = line({"type": "progress", "message": "Prüfe Beleg"}).encode("utf-8")
        split_at = raw.index("ü".encode("utf-8")) + 1

        tokenizer = EventLineTokenizer()
        assert tokenizer.feed(raw[:split_at]) == []
        events = tokenizer.feed(raw[split_at:])

        assert events[0]["message"] == "Prüfe Beleg"

    def test_malformed_lines_are_skipped(self):
        """Bad JSON, non-objects and non-data lines are dropped."""
        tokenizer = EventLineTokenizer()
        text = (
            "data: {not json}\n"
            "data: [1, 2]\n"
            ": keep-alive comment\n"
            "\n"
            + line({"type": "connected"})
        )

        assert tokenizer.feed(text) == [{"type": "connected"}]

    def test_crlf_line_endings(self):
        """Carriage returns before the newline are ignored."""
        tokenizer = EventLineTokenizer()
        events = tokenizer.feed('data: {"type": "connected"}\r\n')

        assert events == [{"type": "connected"}]

    def test_close_flushes_unterminated_line(self):
        """A final line without newline is parsed on close()."""
        tokenizer = EventLineTokenizer()
        assert tokenizer.feed('data: {"type": "error", "message": "boom"}') == []

        assert tokenizer.close() == [{"type": "error", "message": "boom"}]
        assert tokenizer.pending == ""


class TestParseStreamEvent:
    """Test mapping of decoded objects to typed events."""

    def test_progress_event(self):
        event = parse_stream_event(
            {"type": "progress", "step": "invoking_ai", "message": "Asking AI", "progress": 40}
        )

        assert event == ProgressEvent(step="invoking_ai", message="Asking AI", progress=40)
        assert event.known_step is ProcessingStep.INVOKING_AI

    def test_progress_is_clamped(self):
        """Progress values outside 0..100 are clamped."""
        assert parse_stream_event({"type": "progress", "progress": 140}).progress == 100
        assert parse_stream_event({"type": "progress", "progress": -3}).progress == 0
        assert parse_stream_event({"type": "progress", "progress": "n/a"}).progress == 0

    def test_unknown_step_is_kept(self):
        """Unknown step names are passed through untyped."""
        event = parse_stream_event({"type": "progress", "step": "warming_cache", "progress": 1})

        assert event.step == "warming_cache"
        assert event.known_step is None

    def test_complete_event(self):
        event = parse_stream_event(complete_payload("bs-9"))

        assert isinstance(event, CompleteEvent)
        assert event.result.batch_session_id == "bs-9"
        assert event.result.transactions[0].transaction.amount == 11.48

    def test_complete_drops_entries_without_index(self):
        payload = complete_payload("bs-9")
        payload["data"]["transactions"].append({"transaction_index": None, "notes": "orphan"})

        event = parse_stream_event(payload)

        assert [t.transaction_index for t in event.result.transactions] == [0]

    def test_complete_without_session_is_skipped(self):
        assert parse_stream_event({"type": "complete", "data": {}}) is None

    def test_error_event_default_message(self):
        event = parse_stream_event({"type": "error"})

        assert isinstance(event, ErrorEvent)
        assert event.message
        assert event.cancelled is False

    def test_unknown_type_is_skipped(self):
        assert parse_stream_event({"type": "heartbeat"}) is None
        assert parse_stream_event({}) is None


class TestProgressStreamClient:
    """Test the httpx streaming client."""

    def test_request_shape(self):
        """POSTs the bank account with the bearer token to the receipt's URL."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=line(complete_payload()).encode())

        with make_client(handler) as client:
            list(client.start("rcpt-1", "acc-1"))

        assert seen["method"] == "POST"
        assert seen["url"] == f"{BASE_URL}/transaction/sequential/initiate-with-progress/rcpt-1"
        assert seen["auth"] == "Bearer tok-123"
        assert seen["body"] == {"userBankAccountId": "acc-1"}

    def test_events_in_order_and_stop_at_complete(self):
        """Events arrive in stream order; nothing after the terminal event."""
        handler = chunked(
            line({"type": "connected"}),
            line({"type": "progress", "step": "validating_receipt", "progress": 5})[:20],
            line({"type": "progress", "step": "validating_receipt", "progress": 5})[20:],
            line(complete_payload()),
            line({"type": "progress", "progress": 99}),
        )

        with make_client(handler) as client:
            events = list(client.start("rcpt-1", "acc-1"))

        assert isinstance(events[0], ConnectedEvent)
        assert events[1].progress == 5
        assert isinstance(events[2], CompleteEvent)
        assert len(events) == 3

    def test_error_event_ends_stream(self):
        handler = chunked(
            line({"type": "progress", "step": "invoking_ai", "progress": 40}),
            line({"type": "error", "message": "rate limited"}),
        )

        with make_client(handler) as client:
            events = list(client.start("rcpt-1", "acc-1"))

        assert events[-1] == ErrorEvent("rate limited")

    def test_non_2xx_uses_body_message(self):
        """A non-2xx answer becomes one error event with the body's message."""

        def handler(request):
            return httpx.Response(409, json={"message": "Receipt already processing"})

        with make_client(handler) as client:
            events = list(client.start("rcpt-1", "acc-1"))

        assert events == [ErrorEvent("Receipt already processing")]

    def test_non_2xx_without_message(self):
        def handler(request):
            return httpx.Response(500, json={"error": "boom"})

        with make_client(handler) as client:
            events = list(client.start("rcpt-1", "acc-1"))

        assert events == [ErrorEvent("HTTP error 500")]

    def test_non_2xx_non_json_body(self):
        def handler(request):
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        with make_client(handler) as client:
            events = list(client.start("rcpt-1", "acc-1"))

        assert events == [ErrorEvent(INITIATE_FAILED_MESSAGE)]

    def test_unauthorized_clears_session(self, tmp_path):
        """401 clears the session context and raises."""
        session_file = tmp_path / "session.json"
        context = SessionContext(session_file)
        context.save("tok-old", {"email": "a@b.test"})

        def handler(request):
            return httpx.Response(401, json={"message": "Unauthorized"})

        client = ProgressStreamClient(BASE_URL, context, transport=httpx.MockTransport(handler))
        with pytest.raises(AuthenticationRequired):
            list(client.start("rcpt-1", "acc-1"))

        assert context.token is None
        assert not session_file.exists()

    def test_connection_failure_becomes_error_event(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            events = list(client.start("rcpt-1", "acc-1"))

        assert len(events) == 1
        assert events[0].message.startswith("Connection to progress stream failed")
        assert events[0].cancelled is False

    def test_stream_can_only_be_iterated_once(self):
        with make_client(chunked(line(complete_payload()))) as client:
            stream = client.start("rcpt-1", "acc-1")
            list(stream)
            with pytest.raises(RuntimeError):
                iter(stream)

    def test_cancel_before_start(self):
        """A stream cancelled before iteration yields only the cancellation."""
        requests_made = []

        def handler(request):
            requests_made.append(request)
            return httpx.Response(200, content=b"")

        with make_client(handler) as client:
            stream = client.start("rcpt-1", "acc-1")
            stream.cancel()
            events = list(stream)

        assert events == [ErrorEvent(CANCELLED_MESSAGE, cancelled=True)]
        assert requests_made == []

    def test_cancel_mid_stream_is_idempotent(self):
        """Cancelling twice still yields exactly one terminal event."""
        handler = chunked(
            line({"type": "progress", "step": "validating_receipt", "progress": 5}),
            line({"type": "progress", "step": "invoking_ai", "progress": 40}),
            line(complete_payload()),
        )

        with make_client(handler) as client:
            stream = client.start("rcpt-1", "acc-1")
            events = []
            for event in stream:
                events.append(event)
                if isinstance(event, ProgressEvent):
                    stream.cancel()
                    stream.cancel()

        assert len(events) == 2
        assert events[0].progress == 5
        assert events[1] == ErrorEvent(CANCELLED_MESSAGE, cancelled=True)
        assert not any(isinstance(e, CompleteEvent) for e in events)


class TestExtractionTracker:
    """Test the consumer-side state of a run."""

    def test_successful_run(self):
        handler = chunked(
            line({"type": "connected"}),
            line({"type": "progress", "step": "invoking_ai", "message": "Asking AI", "progress": 40}),
            line(complete_payload("bs-7")),
        )
        seen = []

        with make_client(handler) as client:
            tracker = ExtractionTracker(client)
            result = tracker.run("rcpt-1", "acc-1", on_event=seen.append)

        assert result.batch_session_id == "bs-7"
        assert tracker.progress == 100
        assert tracker.message == "Processing complete!"
        assert tracker.step == "complete"
        assert tracker.is_processing is False
        assert tracker.error is None
        assert len(seen) == 3

    def test_error_after_progress(self):
        """Error after progress keeps the last progress and stops processing."""
        handler = chunked(
            line({"type": "progress", "step": "invoking_ai", "message": "Asking AI", "progress": 40}),
            line({"type": "error", "message": "rate limited"}),
        )

        with make_client(handler) as client:
            tracker = ExtractionTracker(client)
            result = tracker.run("rcpt-1", "acc-1")

        assert result is None
        assert tracker.error == "rate limited"
        assert tracker.progress == 40
        assert tracker.step == "invoking_ai"
        assert tracker.is_processing is False

    def test_stream_ending_without_terminal_event(self):
        handler = chunked(line({"type": "progress", "step": "invoking_ai", "progress": 40}))

        with make_client(handler) as client:
            tracker = ExtractionTracker(client)
            result = tracker.run("rcpt-1", "acc-1")

        assert result is None
        assert tracker.error == INCOMPLETE_STREAM_MESSAGE
        assert tracker.is_processing is False

    def test_cancel_from_callback(self):
        """Cancelling mid-run ends the run with the cancellation message."""
        handler = chunked(
            line({"type": "progress", "step": "validating_receipt", "progress": 5}),
            line(complete_payload()),
        )

        with make_client(handler) as client:
            tracker = ExtractionTracker(client)

            def on_event(event):
                if isinstance(event, ProgressEvent):
                    tracker.cancel()

            result = tracker.run("rcpt-1", "acc-1", on_event=on_event)

        assert result is None
        assert tracker.error == CANCELLED_MESSAGE
        assert tracker.is_processing is False

    def test_keyboard_interrupt_cancels_stream(self):
        """Ctrl-C during a run cancels the stream before propagating."""
        handler = chunked(
            line({"type": "progress", "step": "validating_receipt", "progress": 5}),
            line(complete_payload()),
        )
        streams = []

        with make_client(handler) as client:
            tracker = ExtractionTracker(client)

            def on_event(event):
                streams.append(tracker._stream)
                raise KeyboardInterrupt

            with pytest.raises(KeyboardInterrupt):
                tracker.run("rcpt-1", "acc-1", on_event=on_event)

        assert streams[0].cancelled
        assert tracker.error == CANCELLED_MESSAGE
        assert tracker.is_processing is False
        assert tracker.result is None

    def test_cancel_without_run_is_noop(self):
        with make_client(chunked()) as client:
            tracker = ExtractionTracker(client)
            tracker.cancel()

        assert tracker.error is None
        assert tracker.is_processing is False
