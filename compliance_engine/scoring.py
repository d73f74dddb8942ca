"""
Tax-safety scoring.

Combines four signals into a 0-100 score:

- eligibility evaluation on file
- records coverage: months with any transaction / months elapsed
- receipt coverage: expenses with evidence / expenses (>= 5 expenses only)
- obligation proximity: overdue, or nearest open deadline

Each signal can only deduct points, and every deduction appends a reason
code in the order above so callers can render "most important first".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional, Union

from compliance_engine.config import EngineSettings, settings as default_settings
from compliance_engine.obligations import Obligation, ObligationStatus
from compliance_engine.records import (
    Transaction,
    TransactionKind,
    in_tax_year,
    months_elapsed,
)

logger = logging.getLogger(__name__)

MAX_SCORE = 100
MIN_SCORE = 0


class ReasonCode(Enum):
    MISSING_ELIGIBILITY = "MISSING_ELIGIBILITY"
    LOW_RECORDS_COVERAGE = "LOW_RECORDS_COVERAGE"
    MEDIUM_RECORDS_COVERAGE = "MEDIUM_RECORDS_COVERAGE"
    LOW_RECEIPT_COVERAGE = "LOW_RECEIPT_COVERAGE"
    MEDIUM_RECEIPT_COVERAGE = "MEDIUM_RECEIPT_COVERAGE"
    OVERDUE_OBLIGATION = "OVERDUE_OBLIGATION"
    DEADLINE_VERY_SOON = "DEADLINE_VERY_SOON"
    DEADLINE_SOON = "DEADLINE_SOON"


class Band(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# reason -> (points deducted, how to fix)
_DEDUCTIONS: dict[ReasonCode, tuple[int, str]] = {
    ReasonCode.MISSING_ELIGIBILITY: (
        20,
        "Run the tax eligibility check for this tax year.",
    ),
    ReasonCode.LOW_RECORDS_COVERAGE: (
        20,
        "Import bank statements or add transactions for the missing months.",
    ),
    ReasonCode.MEDIUM_RECORDS_COVERAGE: (
        10,
        "Fill in the few months that have no transactions yet.",
    ),
    ReasonCode.LOW_RECEIPT_COVERAGE: (
        20,
        "Attach receipts or invoices to your expense transactions.",
    ),
    ReasonCode.MEDIUM_RECEIPT_COVERAGE: (
        10,
        "Attach receipts to the remaining expense transactions.",
    ),
    ReasonCode.OVERDUE_OBLIGATION: (
        30,
        "File the overdue return or mark it as filed if already done.",
    ),
    ReasonCode.DEADLINE_VERY_SOON: (
        15,
        "A filing is due within a week. Prepare it now.",
    ),
    ReasonCode.DEADLINE_SOON: (
        5,
        "A filing is due this month. Start gathering documents.",
    ),
}


@dataclass(frozen=True)
class Deduction:
    code: ReasonCode
    points: int
    how_to_fix: str


@dataclass(frozen=True)
class ScoreBreakdown:
    has_eligibility: bool
    months_elapsed: int
    months_with_transactions: int
    records_coverage_ratio: Optional[float]
    expense_count: int
    expense_with_evidence_count: int
    receipt_coverage_ratio: Optional[float]
    has_overdue_obligation: bool
    days_until_next_deadline: Optional[int]


@dataclass(frozen=True)
class ReadinessStatus:
    """Traffic-light label shown alongside the score."""

    label: str
    message: str


@dataclass
class TaxSafetyScore:
    """A fully determined score snapshot. Recomputed, never patched."""

    business_id: str
    tax_year: int
    score: int
    band: Band
    reasons: list[ReasonCode]
    breakdown: ScoreBreakdown
    deductions: list[Deduction] = field(default_factory=list)

    @property
    def readiness(self) -> ReadinessStatus:
        if self.score >= 80:
            return ReadinessStatus("Green", "You're in a strong filing-ready position.")
        if self.score >= 50:
            return ReadinessStatus("Amber", "Mostly safe, but there are gaps to fix.")
        return ReadinessStatus("Red", "High risk if the tax authority asks questions today.")

    def to_dict(self) -> dict[str, Any]:
        b = self.breakdown
        return {
            "businessId": self.business_id,
            "taxYear": self.tax_year,
            "score": self.score,
            "band": self.band.value,
            "reasons": [r.value for r in self.reasons],
            "readiness": {
                "label": self.readiness.label,
                "message": self.readiness.message,
            },
            "breakdown": {
                "hasEligibility": b.has_eligibility,
                "monthsElapsed": b.months_elapsed,
                "monthsWithTransactions": b.months_with_transactions,
                "recordsCoverageRatio": b.records_coverage_ratio,
                "expenseCount": b.expense_count,
                "expenseWithEvidenceCount": b.expense_with_evidence_count,
                "receiptCoverageRatio": b.receipt_coverage_ratio,
                "hasOverdueObligation": b.has_overdue_obligation,
                "daysUntilNextDeadline": b.days_until_next_deadline,
            },
            "deductions": [
                {"code": d.code.value, "points": d.points, "howToFix": d.how_to_fix}
                for d in self.deductions
            ],
        }


def band_for(score: int) -> Band:
    if score < 50:
        return Band.LOW
    if score < 80:
        return Band.MEDIUM
    return Band.HIGH


def records_coverage(
    transactions: Iterable[Transaction], tax_year: int, today: date
) -> tuple[Optional[float], int, int]:
    """
    Return ``(ratio, months_with_transactions, months_elapsed)``.

    The ratio is ``None`` when no month of ``tax_year`` has started yet.
    """
    elapsed = months_elapsed(tax_year, today)
    months = {
        t.transaction_date.month
        for t in in_tax_year(transactions, tax_year)
        if t.transaction_date.month <= elapsed
    }
    if elapsed < 1:
        return None, len(months), elapsed
    return len(months) / elapsed, len(months), elapsed


def receipt_coverage(
    transactions: Iterable[Transaction],
    tax_year: int,
    min_expense_count: int = 5,
) -> tuple[Optional[float], int, int]:
    """
    Return ``(ratio, expense_count, expenses_with_evidence)``.

    The ratio is ``None`` (not yet evaluated) below ``min_expense_count``
    expense transactions.
    """
    expenses = [
        t for t in in_tax_year(transactions, tax_year)
        if t.kind is TransactionKind.EXPENSE
    ]
    with_evidence = sum(1 for t in expenses if t.has_evidence)
    if len(expenses) < min_expense_count:
        return None, len(expenses), with_evidence
    return with_evidence / len(expenses), len(expenses), with_evidence


def days_until_next_deadline(
    obligations: Iterable[Obligation], today: date
) -> Optional[int]:
    """Days until the nearest open obligation that is not yet overdue."""
    pending = [
        (o.due_date - today).days
        for o in obligations
        if o.status in (ObligationStatus.DUE, ObligationStatus.UPCOMING)
        and o.due_date >= today
    ]
    return min(pending) if pending else None


def compute_score(
    business_id: str,
    tax_year: int,
    *,
    eligibility_on_file: bool,
    obligations: Iterable[Obligation],
    transactions: Iterable[Transaction],
    now: Union[date, datetime, None] = None,
    settings: Optional[EngineSettings] = None,
) -> TaxSafetyScore:
    """Score one business for one tax year from read-only inputs."""
    config = settings or default_settings
    if now is None:
        today = date.today()
    elif isinstance(now, datetime):
        today = now.date()
    else:
        today = now
    obligations = list(obligations)
    transactions = list(transactions)

    codes: list[ReasonCode] = []

    # 1) Eligibility
    if not eligibility_on_file:
        codes.append(ReasonCode.MISSING_ELIGIBILITY)

    # 2) Records coverage
    records_ratio, months_with, elapsed = records_coverage(
        transactions, tax_year, today
    )
    if records_ratio is not None:
        if records_ratio <= 0.5:
            codes.append(ReasonCode.LOW_RECORDS_COVERAGE)
        elif records_ratio < 0.75:
            codes.append(ReasonCode.MEDIUM_RECORDS_COVERAGE)

    # 3) Receipt coverage on expenses
    receipt_ratio, expense_count, with_evidence = receipt_coverage(
        transactions, tax_year, config.receipt_min_expense_count
    )
    if receipt_ratio is not None:
        if receipt_ratio < 0.5:
            codes.append(ReasonCode.LOW_RECEIPT_COVERAGE)
        elif receipt_ratio < 0.8:
            codes.append(ReasonCode.MEDIUM_RECEIPT_COVERAGE)

    # 4) Obligations / deadlines (overdue suppresses proximity)
    has_overdue = any(o.status is ObligationStatus.OVERDUE for o in obligations)
    days_next = days_until_next_deadline(obligations, today)
    if has_overdue:
        codes.append(ReasonCode.OVERDUE_OBLIGATION)
    elif days_next is not None:
        if days_next <= config.very_soon_days:
            codes.append(ReasonCode.DEADLINE_VERY_SOON)
        elif days_next <= config.due_soon_days:
            codes.append(ReasonCode.DEADLINE_SOON)

    deductions = [Deduction(c, *_DEDUCTIONS[c]) for c in codes]
    score = MAX_SCORE - sum(d.points for d in deductions)
    score = min(MAX_SCORE, max(MIN_SCORE, score))

    logger.info(
        "Tax safety for %s/%d: %d (%s)",
        business_id,
        tax_year,
        score,
        ", ".join(c.value for c in codes) or "no deductions",
    )

    return TaxSafetyScore(
        business_id=business_id,
        tax_year=tax_year,
        score=score,
        band=band_for(score),
        reasons=codes,
        breakdown=ScoreBreakdown(
            has_eligibility=eligibility_on_file,
            months_elapsed=elapsed,
            months_with_transactions=months_with,
            records_coverage_ratio=records_ratio,
            expense_count=expense_count,
            expense_with_evidence_count=with_evidence,
            receipt_coverage_ratio=receipt_ratio,
            has_overdue_obligation=has_overdue,
            days_until_next_deadline=days_next,
        ),
        deductions=deductions,
    )
