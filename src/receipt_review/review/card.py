"""
Review card presentation model.

Holds the editable fields shown for the current proposed transaction and
turns them into the edits sent with an approval. Reference lists
(categories, contacts, bank accounts) are loaded once and shared read-only
by every card.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..schemas import EnrichmentData, ProposedTransaction, TransactionExtraction

if TYPE_CHECKING:
    from ..api_client import ReceiptApiClient, ReferenceItem

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("card", "cash", "transfer")


@dataclass(frozen=True)
class ReferenceData:
    """Pick lists for the card fields."""

    categories: tuple = ()
    contacts: tuple = ()
    bank_accounts: tuple = ()

    @classmethod
    def load(cls, api: "ReceiptApiClient") -> "ReferenceData":
        """Fetch all three lists once."""
        data = cls(
            categories=tuple(api.list_categories()),
            contacts=tuple(api.list_contacts()),
            bank_accounts=tuple(api.list_bank_accounts()),
        )
        logger.debug(
            "Loaded %d categories, %d contacts, %d bank accounts",
            len(data.categories),
            len(data.contacts),
            len(data.bank_accounts),
        )
        return data

    @staticmethod
    def _lookup(items: tuple, item_id: Optional[str]) -> Optional["ReferenceItem"]:
        if not item_id:
            return None
        for item in items:
            if item.id == item_id:
                return item
        return None

    def category(self, category_id: Optional[str]) -> Optional["ReferenceItem"]:
        return self._lookup(self.categories, category_id)

    def contact(self, contact_id: Optional[str]) -> Optional["ReferenceItem"]:
        return self._lookup(self.contacts, contact_id)

    def bank_account(self, account_id: Optional[str]) -> Optional["ReferenceItem"]:
        return self._lookup(self.bank_accounts, account_id)

    def category_by_name(self, name: Optional[str]) -> Optional["ReferenceItem"]:
        if not name:
            return None
        wanted = name.strip().lower()
        for item in self.categories:
            if item.name.lower() == wanted:
                return item
        return None


@dataclass
class ReviewEdits:
    """Reviewer changes submitted with an approval."""

    description: Optional[str] = None
    category_id: Optional[str] = None
    transaction_date: Optional[str] = None  # YYYY-MM-DD
    payment_method: Optional[str] = None
    contact_id: Optional[str] = None
    bank_account_id: Optional[str] = None

    def to_payload(self) -> dict:
        """Request body fragment; unset fields are left out."""
        payload = {
            "description": self.description,
            "categoryId": self.category_id,
            "transactionDate": self.transaction_date,
            "paymentMethod": self.payment_method,
            "contactId": self.contact_id,
            "userBankAccountId": self.bank_account_id,
        }
        return {k: v for k, v in payload.items() if v is not None}

    def apply_to(self, record: TransactionExtraction) -> None:
        """Merge the edits into a record (callers pass a draft copy)."""
        if record.transaction is None:
            record.transaction = ProposedTransaction()
        if record.enrichment_data is None:
            record.enrichment_data = EnrichmentData()

        txn = record.transaction
        enrichment = record.enrichment_data

        if self.description is not None:
            txn.description = self.description
        if self.transaction_date is not None:
            txn.time_sent = self.transaction_date
        if self.payment_method is not None:
            txn.payment_method = self.payment_method
        if self.category_id is not None:
            enrichment.category_id = self.category_id
        if self.contact_id is not None:
            enrichment.contact_id = self.contact_id
        if self.bank_account_id is not None:
            enrichment.user_bank_account_id = self.bank_account_id


def _date_part(value: Optional[str]) -> str:
    if not value:
        return ""
    return value[:10]


class ReviewCard:
    """
    Editable fields for one proposed transaction.

    bind() re-initializes the fields only when a different transaction
    (by transaction_index) is bound, so edits survive repeated refreshes of
    the same record.
    """

    def __init__(
        self,
        references: Optional[ReferenceData] = None,
        required_fields: tuple = ("description", "category_id"),
    ) -> None:
        self.references = references or ReferenceData()
        self.required_fields = tuple(required_fields)
        self.bound_index: Optional[int] = None
        self.amount: Optional[float] = None
        self.currency: Optional[str] = None
        self.confidence_score: float = 0.0
        self.description = ""
        self.category_id: Optional[str] = None
        self.transaction_date = ""
        self.payment_method: Optional[str] = None
        self.contact_id: Optional[str] = None
        self.bank_account_id: Optional[str] = None

    def bind(self, record: TransactionExtraction) -> bool:
        """
        Show a record on the card.

        Returns:
            True if the fields were re-initialized
        """
        if self.bound_index == record.transaction_index:
            return False
        self.reset(record)
        return True

    def reset(self, record: TransactionExtraction) -> None:
        """Unconditionally re-initialize the fields from a record."""
        txn = record.transaction
        enrichment = record.enrichment_data

        self.bound_index = record.transaction_index
        self.confidence_score = record.confidence_score
        self.amount = txn.amount if txn else None
        self.currency = txn.currency if txn else None
        self.description = (txn.description or "") if txn else ""
        self.transaction_date = _date_part(txn.time_sent) if txn else ""
        self.payment_method = txn.payment_method if txn else None
        self.category_id = enrichment.category_id if enrichment else None
        self.contact_id = enrichment.contact_id if enrichment else None
        self.bank_account_id = enrichment.user_bank_account_id if enrichment else None

        # The model sometimes names a category without resolving its id
        if self.category_id is None and txn and txn.category:
            match = self.references.category_by_name(txn.category)
            if match is not None:
                self.category_id = match.id

    def missing_fields(self) -> list[str]:
        return [name for name in self.required_fields if not getattr(self, name, None)]

    @property
    def can_submit(self) -> bool:
        return self.bound_index is not None and not self.missing_fields()

    @property
    def category_name(self) -> Optional[str]:
        item = self.references.category(self.category_id)
        return item.name if item else None

    @property
    def contact_name(self) -> Optional[str]:
        item = self.references.contact(self.contact_id)
        return item.name if item else None

    def edits(self) -> ReviewEdits:
        return ReviewEdits(
            description=self.description or None,
            category_id=self.category_id,
            transaction_date=self.transaction_date or None,
            payment_method=self.payment_method,
            contact_id=self.contact_id,
            bank_account_id=self.bank_account_id,
        )
