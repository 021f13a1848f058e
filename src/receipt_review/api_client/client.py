"""
Receipt/transaction backend API client implementation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..auth import AuthenticationRequired, SessionContext
from ..schemas import (
    BatchSession,
    ClarificationMessage,
    DetectionResult,
    Receipt,
    TransactionExtraction,
    parse_extractions,
)

logger = logging.getLogger(__name__)


class ReceiptApiError(Exception):
    """Base exception for backend API errors."""
    pass


class ReceiptApiResponseError(ReceiptApiError):
    """API returned an error response."""
    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"API error {status_code}: {message}")


class ReceiptApiConnectionError(ReceiptApiError):
    """Failed to connect to the backend."""
    pass


@dataclass
class ReferenceItem:
    """A category, contact or bank account as shown in pick lists."""
    id: str
    name: str
    extra: Optional[str] = None  # e.g. bank name for accounts

    @property
    def label(self) -> str:
        return f"{self.extra} - {self.name}" if self.extra else self.name


def _error_message(response: requests.Response) -> str:
    """Prefer the backend's {"message": ...} body over the HTTP reason."""
    try:
        body = response.json()
    except ValueError:
        return response.reason or f"HTTP error {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason or f"HTTP error {response.status_code}"


def _unwrap(data: Any) -> Any:
    """Most endpoints wrap their payload as {"message": ..., "data": ...}."""
    if isinstance(data, dict) and "data" in data:
        return data["data"]
    return data


class ReceiptApiClient:
    """
    Client for the receipt/transaction backend.

    Features:
    - Receipt and batch session reads
    - Document detection
    - Sequential approve/skip/complete
    - Clarification dialogue turns
    - Reference lists (categories, contacts, bank accounts)
    - Automatic retry with backoff
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        session_context: SessionContext,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize API client.

        Args:
            base_url: API root (e.g., "http://localhost:3000/api")
            session_context: Signed-in session supplying the bearer token
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.session_context = session_context
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

        # POST is not retried: approve/skip/clarify turns are not idempotent.
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers=self.session_context.auth_headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise ReceiptApiConnectionError(f"Failed to connect to backend at {self.base_url}: {e}")
        except requests.exceptions.Timeout as e:
            raise ReceiptApiConnectionError(f"Request to backend timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise ReceiptApiError(f"Request failed: {e}")

        if response.status_code == 401:
            logger.info("Backend rejected credentials for %s %s", method, endpoint)
            self.session_context.clear()
            raise AuthenticationRequired(_error_message(response))

        if not response.ok:
            raise ReceiptApiResponseError(
                status_code=response.status_code,
                message=_error_message(response),
                response_body=response.text,
            )

        return response

    def _json(self, response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return _unwrap(response.json())
        except ValueError as e:
            raise ReceiptApiResponseError(
                status_code=response.status_code,
                message=f"Invalid JSON in response: {e}",
                response_body=response.text,
            )

    # --- Authentication ---

    def sign_in(self, email: str, password: str) -> dict:
        """
        Sign in and store the returned token in the session context.

        Returns:
            The user profile
        """
        response = self._request("POST", "/auth/signin", json_data={
            "email": email,
            "password": password,
        })
        data = self._json(response) or {}
        token = data.get("token") or response.cookies.get("token")
        user = data.get("user") or {}
        if not token:
            raise ReceiptApiError("Sign-in response did not include a token")
        self.session_context.save(token, user)
        return user

    def sign_out(self) -> None:
        """Sign out remotely (best effort) and clear the local session."""
        try:
            self._request("POST", "/auth/signout")
        except ReceiptApiError as e:
            logger.warning("Remote sign-out failed: %s", e)
        finally:
            self.session_context.clear()

    def verify_session(self) -> bool:
        """Check the stored credentials with a lightweight authenticated call."""
        try:
            self._request("GET", "/bank-account", params={"isActive": "true"})
            return True
        except (AuthenticationRequired, ReceiptApiError):
            return False

    # --- Receipts and sessions ---

    def get_receipt(self, receipt_id: str) -> Receipt:
        """
        Get a receipt with its batch sessions and finalized transactions.

        Args:
            receipt_id: Receipt identifier
        """
        response = self._request("GET", f"/receipt/{receipt_id}")
        return Receipt.from_dict(self._json(response))

    def extract_receipt(self, receipt_id: str) -> DetectionResult:
        """
        Run document-type detection on a receipt.

        A zero transaction_count is returned as-is (no_transactions_found),
        not raised.
        """
        response = self._request("POST", f"/receipt/extract/{receipt_id}")
        result = DetectionResult.from_dict(self._json(response) or {})
        if result.no_transactions_found:
            logger.info("No transactions found in receipt %s", receipt_id)
        return result

    def get_batch_session(self, receipt_id: str) -> Optional[BatchSession]:
        """Get the batch session recorded for a receipt, if any."""
        try:
            response = self._request("GET", f"/receipt/batch-session/{receipt_id}")
        except ReceiptApiResponseError as e:
            if e.status_code == 404:
                return None
            raise
        data = self._json(response)
        return BatchSession.from_dict(data) if data else None

    # --- Sequential review ---

    def approve_transaction(
        self,
        batch_session_id: str,
        transaction_index: int,
        edits: Optional[dict] = None,
    ) -> dict:
        """
        Approve one proposed transaction, creating the durable transaction.

        Returns:
            Backend response payload (may include created_transaction_id)
        """
        response = self._request("POST", "/transaction/sequential/approve-and-next", json_data={
            "batchSessionId": batch_session_id,
            "transactionIndex": transaction_index,
            "edits": edits or {},
        })
        return self._json(response) or {}

    def skip_transaction(self, batch_session_id: str, transaction_index: int) -> dict:
        """Mark one proposed transaction as skipped."""
        response = self._request(
            "POST",
            f"/transaction/sequential/skip/{batch_session_id}",
            json_data={"transactionIndex": transaction_index},
        )
        return self._json(response) or {}

    def complete_session(self, batch_session_id: str) -> dict:
        """Mark a batch session as completed."""
        response = self._request("POST", f"/transaction/sequential/complete/{batch_session_id}")
        return self._json(response) or {}

    # --- Clarification ---

    def get_clarification_history(self, session_id: str) -> list[ClarificationMessage]:
        """Get the stored messages of a clarification session, oldest first."""
        response = self._request("GET", f"/clarification/session/{session_id}")
        data = self._json(response) or {}
        return [
            ClarificationMessage.from_stored(m)
            for m in data.get("clarificationMessages") or []
        ]

    def send_clarification_message(
        self, session_id: str, message: str
    ) -> list[TransactionExtraction]:
        """
        Send one user turn and return the updated transaction snapshots.

        The response may describe several transactions of the batch.
        """
        response = self._request(
            "POST",
            f"/clarification/session/{session_id}/message",
            json_data={"message": message},
        )
        data = self._json(response) or {}
        return parse_extractions(data.get("transactions"))

    # --- Reference lists (read-only) ---

    def list_categories(self) -> list[ReferenceItem]:
        response = self._request("GET", "/category")
        data = self._json(response) or {}
        items = data.get("categories", []) if isinstance(data, dict) else data
        return [
            ReferenceItem(id=c["id"], name=c.get("name", ""))
            for c in items
            if c.get("isActive", True)
        ]

    def list_contacts(self) -> list[ReferenceItem]:
        response = self._request("GET", "/contact")
        data = self._json(response) or {}
        items = data.get("contacts", []) if isinstance(data, dict) else data
        return [ReferenceItem(id=c["id"], name=c.get("name", "")) for c in items]

    def list_bank_accounts(self) -> list[ReferenceItem]:
        response = self._request("GET", "/bank-account", params={"isActive": "true"})
        data = self._json(response) or {}
        items = data.get("bankAccounts", []) if isinstance(data, dict) else data
        return [
            ReferenceItem(
                id=a["id"],
                name=a.get("accountName", ""),
                extra=a.get("bankName"),
            )
            for a in items
        ]
