"""
Review issue scanner.

Scans a business's transactions and compliance tasks for data-quality
defects that would undermine a filing:

- uncategorized           income/expense without a category
- unknown_classification  business vs personal not confirmed
- missing_month           completed months with no transactions at all
- missing_evidence        evidence-required tasks with nothing attached
- possible_duplicate      same amount, close dates, similar description

Scans are reconciled against the previously stored issues so repeated
scans are idempotent: open issues are updated in place, issues whose
condition disappeared are resolved, and issues a person dismissed stay
dismissed unless new records are affected.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from difflib import SequenceMatcher
from enum import Enum
from typing import Any, Iterable, Optional, Union

from compliance_engine.config import EngineSettings, settings as default_settings
from compliance_engine.records import (
    Classification,
    ComplianceTask,
    Transaction,
    TransactionKind,
    in_tax_year,
    months_elapsed,
)

logger = logging.getLogger(__name__)

_ISSUE_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "compliance-engine/review-issue")


class IssueType(Enum):
    UNCATEGORIZED = "uncategorized"
    UNKNOWN_CLASSIFICATION = "unknown_classification"
    MISSING_MONTH = "missing_month"
    MISSING_EVIDENCE = "missing_evidence"
    POSSIBLE_DUPLICATE = "possible_duplicate"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueStatus(Enum):
    OPEN = "open"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


_TYPE_ORDER = {t: i for i, t in enumerate(IssueType)}

# One issue per business, year and type; the rest are per record pair
_GROUPED_TYPES = frozenset(
    {
        IssueType.UNCATEGORIZED,
        IssueType.UNKNOWN_CLASSIFICATION,
        IssueType.MISSING_MONTH,
        IssueType.MISSING_EVIDENCE,
    }
)


@dataclass(frozen=True)
class ReviewIssue:
    """
    A data-quality defect that needs a human decision before filing.

    ``entity`` identifies what the issue is about (a fingerprint of the
    record ids affected when a grouped issue was first raised, or a
    transaction pair) and, together with business, tax year and type,
    forms the dedupe key.
    """

    id: str
    business_id: str
    tax_year: int
    type: IssueType
    severity: Severity
    status: IssueStatus
    entity: str
    title: str
    description: str
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> tuple[str, int, IssueType, str]:
        return (self.business_id, self.tax_year, self.type, self.entity)

    @property
    def entity_ids(self) -> tuple[str, ...]:
        return tuple(self.meta.get("entityIds", ()))

    def dismissed(self) -> "ReviewIssue":
        return replace(self, status=IssueStatus.DISMISSED)

    def resolved(self) -> "ReviewIssue":
        return replace(self, status=IssueStatus.RESOLVED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "businessId": self.business_id,
            "taxYear": self.tax_year,
            "type": self.type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "entity": self.entity,
            "title": self.title,
            "description": self.description,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewIssue":
        return cls(
            id=str(data["id"]),
            business_id=str(data["businessId"]),
            tax_year=int(data["taxYear"]),
            type=IssueType(data["type"]),
            severity=Severity(data["severity"]),
            status=IssueStatus(data["status"]),
            entity=str(data["entity"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            meta=dict(data.get("meta") or {}),
        )


@dataclass(frozen=True)
class DuplicatePair:
    first: str
    second: str
    exact: bool
    reason: str


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------


def normalize_description(description: Optional[str]) -> str:
    if not description:
        return ""
    text = re.sub(r"[^a-z0-9\s]", " ", description.lower())
    return re.sub(r"\s+", " ", text).strip()


def descriptions_similar(a: str, b: str, threshold: float = 0.8) -> bool:
    """Normalized descriptions match, contain one another, or are close."""
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True
    return SequenceMatcher(None, a, b).ratio() >= threshold


def _fingerprint(ids: Iterable[str]) -> str:
    joined = "|".join(sorted(ids))
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:16]


def _scaled(count: int, high_at: int, medium_at: int) -> Severity:
    if count >= high_at:
        return Severity.HIGH
    if count >= medium_at:
        return Severity.MEDIUM
    return Severity.LOW


def issue_id(business_id: str, tax_year: int, issue_type: IssueType, entity: str) -> str:
    name = f"{business_id}:{tax_year}:{issue_type.value}:{entity}"
    return str(uuid.uuid5(_ISSUE_NAMESPACE, name))


def _issue(
    business_id: str,
    tax_year: int,
    issue_type: IssueType,
    severity: Severity,
    entity_ids: list[str],
    title: str,
    description: str,
    entity: Optional[str] = None,
    **meta: Any,
) -> ReviewIssue:
    entity = entity or _fingerprint(entity_ids)
    return ReviewIssue(
        id=issue_id(business_id, tax_year, issue_type, entity),
        business_id=business_id,
        tax_year=tax_year,
        type=issue_type,
        severity=severity,
        status=IssueStatus.OPEN,
        entity=entity,
        title=title,
        description=description,
        meta={"entityIds": list(entity_ids), "count": len(entity_ids), **meta},
    )


# -----------------------------------------------------------------------
# Detectors
# -----------------------------------------------------------------------


def find_duplicate_pairs(
    transactions: Iterable[Transaction],
    window_days: int = 2,
    similarity: float = 0.8,
) -> list[DuplicatePair]:
    """
    Find likely duplicate transaction pairs, each pair reported once.

    A shared provider transaction id is an exact match. Otherwise a pair
    needs an equal amount, dates at most ``window_days`` apart and similar
    descriptions; it is exact when the date and normalized description
    are identical as well.
    """
    ordered = sorted(transactions, key=lambda t: (t.transaction_date, t.transaction_id))
    pairs: list[DuplicatePair] = []
    seen: set[tuple[str, str]] = set()

    def add(a: Transaction, b: Transaction, exact: bool, reason: str) -> None:
        key = tuple(sorted((a.transaction_id, b.transaction_id)))
        if key in seen:
            return
        seen.add(key)
        pairs.append(DuplicatePair(key[0], key[1], exact, reason))

    # Shared provider ids match at any distance
    by_provider: dict[str, list[Transaction]] = {}
    for t in ordered:
        if t.provider_txn_id:
            by_provider.setdefault(t.provider_txn_id, []).append(t)
    for provider_id, group in by_provider.items():
        for i, a in enumerate(group):
            for b in group[i + 1:]:
                add(a, b, True, f"Same provider transaction id: {provider_id}")

    for i, a in enumerate(ordered):
        desc_a = normalize_description(a.description)
        for j in range(i + 1, len(ordered)):
            b = ordered[j]
            gap = (b.transaction_date - a.transaction_date).days
            if gap > window_days:
                break
            if a.amount != b.amount:
                continue
            desc_b = normalize_description(b.description)
            if not descriptions_similar(desc_a, desc_b, similarity):
                continue
            exact = gap == 0 and desc_a == desc_b
            add(
                a,
                b,
                exact,
                "Same date, amount and description"
                if exact
                else f"Same amount within {gap} day(s), similar description",
            )
    return pairs


def detect_issues(
    business_id: str,
    tax_year: int,
    transactions: Iterable[Transaction],
    tasks: Iterable[ComplianceTask] = (),
    now: Union[date, datetime, None] = None,
    settings: Optional[EngineSettings] = None,
) -> list[ReviewIssue]:
    """Run every detector and return fresh open issues (no reconciliation)."""
    config = settings or default_settings
    if now is None:
        today = date.today()
    elif isinstance(now, datetime):
        today = now.date()
    else:
        today = now
    txns = in_tax_year(transactions, tax_year)
    issues: list[ReviewIssue] = []

    # 1) Uncategorized income/expense
    uncategorized = [
        t.transaction_id for t in txns
        if t.kind in (TransactionKind.INCOME, TransactionKind.EXPENSE)
        and not t.category_id
    ]
    if uncategorized:
        issues.append(
            _issue(
                business_id, tax_year, IssueType.UNCATEGORIZED,
                _scaled(len(uncategorized), 25, 10),
                uncategorized,
                "Uncategorized transactions",
                "Some transactions are missing a category. Categorise them "
                "to improve reports and filing readiness.",
                transactionIds=uncategorized,
            )
        )

    # 2) Business vs personal not confirmed
    unknown = [
        t.transaction_id for t in txns
        if t.classification is Classification.UNKNOWN
    ]
    if unknown:
        issues.append(
            _issue(
                business_id, tax_year, IssueType.UNKNOWN_CLASSIFICATION,
                _scaled(len(unknown), 25, 10),
                unknown,
                "Business vs personal not confirmed",
                "Some transactions are not confirmed as business or "
                "personal. Please review them.",
                transactionIds=unknown,
            )
        )

    # 3) Completed months without any transactions
    closed = months_elapsed(tax_year, today)
    if tax_year == today.year:
        closed -= 1
    covered = {t.transaction_date.month for t in txns}
    missing = [
        f"{tax_year}-{m:02d}"
        for m in range(1, closed + 1)
        if m not in covered
    ]
    if missing:
        issues.append(
            _issue(
                business_id, tax_year, IssueType.MISSING_MONTH,
                _scaled(len(missing), 4, 2),
                missing,
                "Missing months of transactions",
                "Some months have no transactions recorded. Import "
                "statements or add missing records.",
                missingMonths=missing,
            )
        )

    # 4) Tasks that need evidence but have none
    no_evidence = [
        t.task_id for t in tasks
        if t.evidence_required and t.is_open and not t.document_ids
    ]
    if no_evidence:
        issues.append(
            _issue(
                business_id, tax_year, IssueType.MISSING_EVIDENCE,
                _scaled(len(no_evidence), 10, 4),
                no_evidence,
                "Missing evidence for tasks",
                "Some compliance tasks require evidence but no document "
                "is attached.",
                taskIds=no_evidence,
            )
        )

    # 5) Possible duplicates, one issue per pair
    for pair in find_duplicate_pairs(
        txns, config.duplicate_window_days, config.duplicate_similarity
    ):
        ids = [pair.first, pair.second]
        issues.append(
            _issue(
                business_id, tax_year, IssueType.POSSIBLE_DUPLICATE,
                Severity.HIGH if pair.exact else Severity.MEDIUM,
                ids,
                "Possible duplicate transactions",
                "These transactions look like duplicates. Review before filing.",
                entity=f"{pair.first}|{pair.second}",
                transactionIds=ids,
                reason=pair.reason,
            )
        )

    return issues


# -----------------------------------------------------------------------
# Reconciliation
# -----------------------------------------------------------------------


def _covered_by_dismissal(issue: ReviewIssue, dismissed: list[ReviewIssue]) -> bool:
    """A dismissed issue of the same type already covers every affected id."""
    affected = set(issue.entity_ids)
    return any(
        d.type is issue.type and affected and affected <= set(d.entity_ids)
        for d in dismissed
    )


def _live_prior(
    issue: ReviewIssue,
    candidates: Iterable[ReviewIssue],
    taken: set[tuple],
) -> Optional[ReviewIssue]:
    """The open (else resolved) prior issue of the same grouped type."""
    live = [
        p for p in candidates
        if p.type is issue.type
        and p.status is not IssueStatus.DISMISSED
        and p.dedupe_key not in taken
    ]
    live.sort(key=lambda p: (p.status is not IssueStatus.OPEN, p.entity))
    return live[0] if live else None


def reconcile(
    detected: Iterable[ReviewIssue],
    previous: Iterable[ReviewIssue],
) -> list[ReviewIssue]:
    """
    Merge fresh detections into previously stored issues.

    - detected + prior open/resolved  -> updated in place, status open
    - detected + prior dismissed      -> left dismissed, untouched
    - detected, ids all covered by a dismissed issue of that type -> dropped
    - detected, new                   -> new open issue
    - prior open, not detected        -> resolved

    Grouped issues (every type except possible_duplicate) are one issue
    per business, year and type. When their set of affected ids changes,
    the live prior of that type is updated in place and keeps its id and
    entity.
    """
    prior_by_key = {p.dedupe_key: p for p in previous}
    dismissed = [p for p in prior_by_key.values() if p.status is IssueStatus.DISMISSED]

    result: dict[tuple, ReviewIssue] = {}
    for issue in detected:
        prior = prior_by_key.get(issue.dedupe_key)
        if prior is None:
            if _covered_by_dismissal(issue, dismissed):
                logger.debug("Issue %s suppressed by an earlier dismissal", issue.entity)
                continue
            if issue.type in _GROUPED_TYPES:
                prior = _live_prior(issue, prior_by_key.values(), set(result))
        if prior is None:
            result[issue.dedupe_key] = issue
        elif prior.status is IssueStatus.DISMISSED:
            result[prior.dedupe_key] = prior
        else:
            result[prior.dedupe_key] = replace(
                issue, id=prior.id, entity=prior.entity, status=IssueStatus.OPEN
            )

    for key, prior in prior_by_key.items():
        if key in result:
            continue
        if prior.status is IssueStatus.OPEN:
            result[key] = prior.resolved()
        else:
            result[key] = prior

    return sorted(result.values(), key=lambda i: (_TYPE_ORDER[i.type], i.entity))


def scan(
    business_id: str,
    tax_year: int,
    transactions: Iterable[Transaction],
    tasks: Iterable[ComplianceTask] = (),
    previous: Iterable[ReviewIssue] = (),
    now: Union[date, datetime, None] = None,
    settings: Optional[EngineSettings] = None,
) -> list[ReviewIssue]:
    """
    Detect and reconcile review issues for one business and tax year.

    Returns the complete issue set to persist (open, resolved and
    dismissed). Scanning unchanged data again returns the same set.
    """
    previous = [
        p for p in previous
        if p.business_id == business_id and p.tax_year == tax_year
    ]
    detected = detect_issues(business_id, tax_year, transactions, tasks, now, settings)
    issues = reconcile(detected, previous)
    logger.info(
        "Review scan for %s/%d: %d detected, %d open",
        business_id,
        tax_year,
        len(detected),
        sum(1 for i in issues if i.status is IssueStatus.OPEN),
    )
    return issues
