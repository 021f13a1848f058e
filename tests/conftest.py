"""Test fixtures and utilities."""

from typing import Optional
from unittest.mock import MagicMock

import pytest

from receipt_review.api_client import ReceiptApiClient, ReferenceItem
from receipt_review.review import ReferenceData


def transaction_dict(
    index: int,
    description: Optional[str] = "SPAR Einkauf",
    amount: float = 11.48,
    category_id: Optional[str] = "cat-groceries",
    processing_status: Optional[str] = None,
    needs_clarification: bool = False,
    needs_confirmation: bool = False,
    clarification_session_id: Optional[str] = None,
    with_payload: bool = True,
    **extra,
) -> dict:
    """One proposed transaction as the backend sends it (snake_case)."""
    data = {
        "transaction_index": index,
        "confidence_score": 0.92,
        "needs_clarification": needs_clarification,
        "needs_confirmation": needs_confirmation,
        "clarification_session_id": clarification_session_id,
        "processing_status": processing_status,
        "notes": "",
    }
    if with_payload:
        data["transaction"] = {
            "amount": amount,
            "currency": "EUR",
            "description": description,
            "payment_method": "card",
            "time_sent": "2024-11-18T10:22:00Z",
            "category": "Groceries",
            "transaction_type": "payment",
            "transaction_direction": "outgoing",
        }
        data["enrichment_data"] = {
            "category_id": category_id,
            "contact_id": None,
            "user_bank_account_id": "acc-1",
            "is_self_transaction": False,
        }
    else:
        data["transaction"] = None
        data["enrichment_data"] = None
    data.update(extra)
    return data


def session_dict(
    session_id: str,
    status: str = "in_progress",
    created_at: str = "2024-11-19T08:00:00Z",
    transactions: Optional[list] = None,
    current_index: int = 0,
) -> dict:
    """A batch session row (camelCase) with its transaction results."""
    transactions = transactions if transactions is not None else [transaction_dict(0)]
    return {
        "id": session_id,
        "receiptId": "rcpt-1",
        "status": status,
        "totalExpected": len(transactions),
        "totalProcessed": sum(1 for t in transactions if t.get("processing_status")),
        "currentIndex": current_index,
        "processingMode": "sequential",
        "createdAt": created_at,
        "completedAt": None,
        "extractedData": {"transaction_results": transactions},
    }


def receipt_dict(sessions: Optional[list] = None, **extra) -> dict:
    """A receipt row as returned by GET /receipt/{id}."""
    data = {
        "id": "rcpt-1",
        "processingStatus": "processed",
        "expectedTransactions": 3,
        "rawOcrText": "SPAR Österreich\nSumme EUR 11,48",
        "extractionMetadata": {
            "isPDF": True,
            "isScanned": False,
            "pageCount": 1,
            "extractionMethod": "native",
        },
        "fileUrl": "https://files.test/rcpt-1.pdf",
        "fileType": "application/pdf",
        "uploadedAt": "2024-11-19T07:55:00Z",
        "documentType": "receipt",
        "batchSessions": sessions or [],
        "transactions": [],
    }
    data.update(extra)
    return data


@pytest.fixture
def make_transaction():
    """Factory for backend transaction dicts."""
    return transaction_dict


@pytest.fixture
def make_session():
    """Factory for backend batch session dicts."""
    return session_dict


@pytest.fixture
def make_receipt():
    """Factory for backend receipt dicts."""
    return receipt_dict


@pytest.fixture
def references() -> ReferenceData:
    """Pick lists with two categories and one contact."""
    return ReferenceData(
        categories=(
            ReferenceItem(id="cat-groceries", name="Groceries"),
            ReferenceItem(id="cat-transport", name="Transport"),
        ),
        contacts=(ReferenceItem(id="ct-spar", name="SPAR"),),
        bank_accounts=(ReferenceItem(id="acc-1", name="Giro", extra="Erste Bank"),),
    )


@pytest.fixture
def mock_api(references: ReferenceData) -> MagicMock:
    """Backend client double; every write succeeds."""
    api = MagicMock(spec=ReceiptApiClient)
    api.approve_transaction.return_value = {"created_transaction_id": "txn-new"}
    api.skip_transaction.return_value = {}
    api.complete_session.return_value = {}
    api.get_clarification_history.return_value = []
    api.send_clarification_message.return_value = []
    api.list_categories.return_value = list(references.categories)
    api.list_contacts.return_value = list(references.contacts)
    api.list_bank_accounts.return_value = list(references.bank_accounts)
    return api
