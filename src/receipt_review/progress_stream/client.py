"""
Streaming client for the extraction progress endpoint.

POST /transaction/sequential/initiate-with-progress/{receiptId} answers with
a long-lived text stream of ``data: {...}`` lines. The stream ends after a
complete or error event, when the server closes it, or when it is cancelled.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterator, Optional

import httpx

from ..auth import AuthenticationRequired, SessionContext
from .events import (
    CANCELLED_MESSAGE,
    CompleteEvent,
    ErrorEvent,
    StreamEvent,
    parse_stream_event,
)
from .tokenizer import EventLineTokenizer

logger = logging.getLogger(__name__)

INITIATE_FAILED_MESSAGE = "Failed to initiate processing"


def _initial_error_message(response: httpx.Response) -> str:
    """Error text for a non-2xx answer to the initiate call."""
    try:
        body = response.json()
    except ValueError:
        return INITIATE_FAILED_MESSAGE
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP error {response.status_code}"


class ProgressStream:
    """
    One extraction run's event stream.

    Iterate it once to receive events; at most one terminal event
    (CompleteEvent or ErrorEvent) is produced. cancel() may be called from
    any thread, any number of times.
    """

    def __init__(
        self,
        http: httpx.Client,
        url: str,
        payload: dict,
        session_context: SessionContext,
    ) -> None:
        self._http = http
        self._url = url
        self._payload = payload
        self._session_context = session_context
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._response: Optional[httpx.Response] = None
        self._started = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Abort the run and release the connection. Repeated calls do nothing."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            response = self._response

        logger.info("Extraction stream cancelled by user")
        if response is not None:
            response.close()

    def __iter__(self) -> Iterator[StreamEvent]:
        if self._started:
            raise RuntimeError("A progress stream can only be iterated once")
        self._started = True
        return self._events()

    def _events(self) -> Iterator[StreamEvent]:
        if self.cancelled:
            yield ErrorEvent(CANCELLED_MESSAGE, cancelled=True)
            return

        headers = {"Accept": "text/event-stream", **self._session_context.auth_headers()}

        try:
            with self._http.stream("POST", self._url, json=self._payload, headers=headers) as response:
                with self._lock:
                    self._response = response
                if self.cancelled:
                    response.close()
                else:
                    yield from self._read(response)
                    return
        except (httpx.HTTPError, httpx.StreamError) as e:
            if not self.cancelled:
                logger.error("Progress stream failed: %s (URL: %s)", e, self._url)
                yield ErrorEvent(f"Connection to progress stream failed: {e}")
                return
        finally:
            with self._lock:
                self._response = None

        yield ErrorEvent(CANCELLED_MESSAGE, cancelled=True)

    def _read(self, response: httpx.Response) -> Iterator[StreamEvent]:
        if response.status_code == 401:
            self._session_context.clear()
            raise AuthenticationRequired("Session expired while starting extraction")

        if not response.is_success:
            response.read()
            message = _initial_error_message(response)
            logger.warning("Extraction initiate failed with %s: %s", response.status_code, message)
            yield ErrorEvent(message)
            return

        tokenizer = EventLineTokenizer()
        for chunk in response.iter_bytes():
            if self.cancelled:
                # Handled by the caller after the connection is closed
                raise httpx.StreamClosed()
            for data in tokenizer.feed(chunk):
                event = parse_stream_event(data)
                if event is None:
                    continue
                if self.cancelled:
                    raise httpx.StreamClosed()
                yield event
                if isinstance(event, (CompleteEvent, ErrorEvent)):
                    return

        if self.cancelled:
            raise httpx.StreamClosed()

        for data in tokenizer.close():
            event = parse_stream_event(data)
            if event is not None:
                yield event
                if isinstance(event, (CompleteEvent, ErrorEvent)):
                    return

        logger.warning("Progress stream closed without a terminal event")


class ProgressStreamClient:
    """
    Starts extraction runs and hands back their progress streams.

    No read timeout is applied: extraction jobs are long-running and the
    stream relies on the connection closing. Connect/write/pool still time out.
    """

    def __init__(
        self,
        base_url: str,
        session_context: SessionContext,
        connect_timeout: float = 10.0,
        write_timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """
        Initialize the stream client.

        Args:
            base_url: API root (e.g., "http://localhost:3000/api")
            session_context: Signed-in session supplying the bearer token
            connect_timeout: Seconds to wait for the connection
            write_timeout: Seconds to wait while sending the request
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.session_context = session_context
        self._http = httpx.Client(
            timeout=httpx.Timeout(
                connect=connect_timeout,
                read=None,
                write=write_timeout,
                pool=10.0,
            ),
            transport=transport,
        )
        self._current: Optional[ProgressStream] = None

    def start(self, receipt_id: str, bank_account_id: str) -> ProgressStream:
        """
        Start an extraction run.

        The request is sent when the returned stream is first iterated.
        """
        url = f"{self.base_url}/transaction/sequential/initiate-with-progress/{receipt_id}"
        stream = ProgressStream(
            self._http,
            url,
            {"userBankAccountId": bank_account_id},
            self.session_context,
        )
        self._current = stream
        logger.debug("Starting extraction stream for receipt %s", receipt_id)
        return stream

    def cancel(self) -> None:
        """Cancel the most recently started run, if any."""
        if self._current is not None:
            self._current.cancel()

    def close(self) -> None:
        """Close HTTP client."""
        self._http.close()

    def __enter__(self) -> ProgressStreamClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()
