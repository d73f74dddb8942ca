"""Business records consumed by the scorer and the review scanner."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional


class TransactionKind(Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class Classification(Enum):
    BUSINESS = "business"
    PERSONAL = "personal"
    UNKNOWN = "unknown"


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _id_list(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(";") if v.strip())
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class Transaction:
    """A bank or manually entered transaction of one business."""

    transaction_id: str
    transaction_date: date
    amount: Decimal
    kind: TransactionKind = TransactionKind.EXPENSE
    description: str = ""
    category_id: Optional[str] = None
    classification: Classification = Classification.UNKNOWN
    document_ids: tuple[str, ...] = ()
    provider_txn_id: Optional[str] = None

    @property
    def has_evidence(self) -> bool:
        return len(self.document_ids) > 0

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        return cls(
            transaction_id=str(data.get("transaction_id") or data.get("id", "")),
            transaction_date=_as_date(
                data.get("transaction_date") or data.get("date")
            ),
            amount=Decimal(str(data["amount"])),
            kind=TransactionKind(data.get("kind") or "expense"),
            description=data.get("description") or "",
            category_id=data.get("category_id") or data.get("category") or None,
            classification=Classification(data.get("classification") or "unknown"),
            document_ids=_id_list(
                data.get("document_ids") or data.get("evidence")
            ),
            provider_txn_id=data.get("provider_txn_id") or None,
        )


@dataclass(frozen=True)
class ComplianceTask:
    """A compliance to-do, possibly requiring supporting evidence."""

    task_id: str
    title: str
    evidence_required: bool = False
    document_ids: tuple[str, ...] = ()
    status: str = "open"  # open, in_progress, overdue, done
    due_date: Optional[date] = None

    @property
    def is_open(self) -> bool:
        return self.status in ("open", "in_progress", "overdue")

    @classmethod
    def from_dict(cls, data: dict) -> "ComplianceTask":
        due = data.get("due_date") or data.get("dueDate")
        return cls(
            task_id=str(data.get("task_id") or data.get("id", "")),
            title=data.get("title", ""),
            evidence_required=bool(
                data.get("evidence_required", data.get("evidenceRequired", False))
            ),
            document_ids=_id_list(
                data.get("document_ids") or data.get("documentIds")
            ),
            status=data.get("status", "open"),
            due_date=_as_date(due) if due else None,
        )


def in_tax_year(
    transactions: Iterable[Transaction], tax_year: int
) -> list[Transaction]:
    return [t for t in transactions if t.transaction_date.year == tax_year]


def months_elapsed(tax_year: int, today: date) -> int:
    """
    Months of ``tax_year`` that have started by ``today``.

    12 for past years, the current month number for the running year,
    0 for future years.
    """
    if tax_year < today.year:
        return 12
    if tax_year > today.year:
        return 0
    return today.month
