"""Tests for the review issue scanner."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from compliance_engine.records import (
    Classification,
    ComplianceTask,
    Transaction,
    TransactionKind,
)
from compliance_engine.review import (
    IssueStatus,
    IssueType,
    ReviewIssue,
    Severity,
    descriptions_similar,
    detect_issues,
    find_duplicate_pairs,
    normalize_description,
    scan,
)

TODAY = date(2025, 6, 15)


def _txn(
    txn_id: str,
    day: date,
    amount: str = "10000",
    description: str = "",
    category: str = "cat-general",
    classification: Classification = Classification.BUSINESS,
    kind: TransactionKind = TransactionKind.EXPENSE,
    provider_txn_id=None,
) -> Transaction:
    return Transaction(
        transaction_id=txn_id,
        transaction_date=day,
        amount=Decimal(amount),
        kind=kind,
        description=description,
        category_id=category,
        classification=classification,
        provider_txn_id=provider_txn_id,
    )


@pytest.fixture
def clean_books() -> list[Transaction]:
    """One categorised, classified transaction in every elapsed month."""
    return [
        _txn(f"t-{m}", date(2025, m, 3), amount=str(1000 * m), description=f"Sale {m}")
        for m in range(1, 7)
    ]


def _of_type(issues: list[ReviewIssue], issue_type: IssueType) -> list[ReviewIssue]:
    return [i for i in issues if i.type is issue_type]


# ── Description matching ────────────────────────────────────────────


def test_normalize_description():
    assert normalize_description("  OFFICE-Rent, Payment!! ") == "office rent payment"
    assert normalize_description(None) == ""


@pytest.mark.parametrize(
    "a, b, similar",
    [
        ("office rent", "office rent payment", True),
        ("diesel for generator", "diesel for generater", True),
        ("office rent", "staff salaries", False),
        ("", "office rent", False),
    ],
)
def test_descriptions_similar(a, b, similar):
    assert descriptions_similar(a, b) is similar


# ── Detectors ───────────────────────────────────────────────────────


def test_clean_books_have_no_issues(clean_books):
    assert detect_issues("biz-1", 2025, clean_books, now=TODAY) == []


def test_uncategorized_grouped_into_one_issue(clean_books):
    txns = clean_books + [
        _txn("u-1", date(2025, 2, 10), description="POS 1", category=None),
        _txn("u-2", date(2025, 3, 10), description="POS 2", category=None),
        _txn("x-1", date(2025, 3, 11), category=None, kind=TransactionKind.TRANSFER),
    ]
    issues = _of_type(detect_issues("biz-1", 2025, txns, now=TODAY), IssueType.UNCATEGORIZED)
    assert len(issues) == 1
    assert sorted(issues[0].entity_ids) == ["u-1", "u-2"]
    assert issues[0].severity is Severity.LOW


def test_uncategorized_severity_scales_with_count(clean_books):
    txns = clean_books + [
        _txn(f"u-{i}", date(2025, 1, 1) + timedelta(days=i), amount=str(100 + i), category=None)
        for i in range(25)
    ]
    issue = _of_type(detect_issues("biz-1", 2025, txns, now=TODAY), IssueType.UNCATEGORIZED)[0]
    assert issue.severity is Severity.HIGH


def test_unknown_classification(clean_books):
    txns = clean_books + [
        _txn("c-1", date(2025, 4, 9), classification=Classification.UNKNOWN),
    ]
    issues = _of_type(detect_issues("biz-1", 2025, txns, now=TODAY), IssueType.UNKNOWN_CLASSIFICATION)
    assert [i.entity_ids for i in issues] == [("c-1",)]


def test_missing_months(clean_books):
    txns = [t for t in clean_books if t.transaction_date.month not in (2, 5)]
    issue = _of_type(detect_issues("biz-1", 2025, txns, now=TODAY), IssueType.MISSING_MONTH)[0]
    assert issue.meta["missingMonths"] == ["2025-02", "2025-05"]
    assert issue.severity is Severity.MEDIUM


def test_future_months_are_not_missing(clean_books):
    issues = detect_issues("biz-1", 2025, clean_books, now=TODAY)
    assert _of_type(issues, IssueType.MISSING_MONTH) == []


@pytest.mark.parametrize("today", [date(2025, 4, 1), date(2025, 4, 30)])
def test_running_month_is_not_missing(clean_books, today):
    txns = [t for t in clean_books if t.transaction_date.month <= 3]
    issues = detect_issues("biz-1", 2025, txns, now=today)
    assert _of_type(issues, IssueType.MISSING_MONTH) == []


def test_past_year_counts_every_month():
    [issue] = detect_issues("biz-1", 2024, [], now=TODAY)
    assert issue.type is IssueType.MISSING_MONTH
    assert issue.meta["missingMonths"][-1] == "2024-12"
    assert len(issue.entity_ids) == 12


def test_missing_evidence_for_open_tasks(clean_books):
    tasks = [
        ComplianceTask("task-1", "Upload VAT receipt", evidence_required=True),
        ComplianceTask("task-2", "Upload WHT credit note", evidence_required=True, document_ids=("d-1",)),
        ComplianceTask("task-3", "Board minutes", evidence_required=True, status="done"),
        ComplianceTask("task-4", "Call accountant"),
    ]
    issues = _of_type(
        detect_issues("biz-1", 2025, clean_books, tasks, now=TODAY),
        IssueType.MISSING_EVIDENCE,
    )
    assert [i.entity_ids for i in issues] == [("task-1",)]


# ── Duplicates ──────────────────────────────────────────────────────


def test_office_rent_duplicate_scenario(clean_books):
    txns = clean_books + [
        _txn("rent-a", date(2025, 4, 1), amount="50000", description="Office rent"),
        _txn("rent-b", date(2025, 4, 1), amount="50000", description="OFFICE RENT PAYMENT"),
    ]
    issues = _of_type(detect_issues("biz-1", 2025, txns, now=TODAY), IssueType.POSSIBLE_DUPLICATE)
    assert len(issues) == 1
    assert set(issues[0].entity_ids) == {"rent-a", "rent-b"}
    assert issues[0].severity is Severity.MEDIUM


def test_exact_duplicate_is_high_severity():
    txns = [
        _txn("a", date(2025, 4, 1), amount="50000", description="Office rent"),
        _txn("b", date(2025, 4, 1), amount="50000", description="office rent"),
    ]
    [pair] = find_duplicate_pairs(txns)
    assert pair.exact is True


def test_duplicate_window():
    txns = [
        _txn("a", date(2025, 4, 1), amount="50000", description="Office rent"),
        _txn("b", date(2025, 4, 3), amount="50000", description="Office rent"),
        _txn("c", date(2025, 4, 9), amount="50000", description="Office rent"),
    ]
    pairs = find_duplicate_pairs(txns, window_days=2)
    assert [(p.first, p.second) for p in pairs] == [("a", "b")]
    assert pairs[0].exact is False


def test_different_amounts_are_not_duplicates():
    txns = [
        _txn("a", date(2025, 4, 1), amount="50000", description="Office rent"),
        _txn("b", date(2025, 4, 1), amount="50001", description="Office rent"),
    ]
    assert find_duplicate_pairs(txns) == []


def test_shared_provider_id_is_exact_duplicate():
    txns = [
        _txn("a", date(2025, 4, 1), amount="50000", description="Transfer", provider_txn_id="mono-123"),
        _txn("b", date(2025, 4, 20), amount="50000", description="NIP/TRF", provider_txn_id="mono-123"),
    ]
    [pair] = find_duplicate_pairs(txns)
    assert pair.exact is True
    assert "mono-123" in pair.reason


def test_shared_provider_id_found_past_busy_days():
    txns = [
        _txn(f"d-{i}", date(2025, 1, 1) + timedelta(days=i), amount=str(100 + i), description="POS")
        for i in range(120)
    ]
    txns.append(_txn("a", date(2025, 1, 5), amount="7000", provider_txn_id="mono-9"))
    txns.append(_txn("b", date(2025, 4, 20), amount="7500", provider_txn_id="mono-9"))
    pairs = find_duplicate_pairs(txns)
    assert [(p.first, p.second, p.exact) for p in pairs] == [("a", "b", True)]


# ── Reconciliation ──────────────────────────────────────────────────


@pytest.fixture
def messy_books(clean_books) -> list[Transaction]:
    return clean_books + [
        _txn("u-1", date(2025, 2, 10), category=None),
        _txn("rent-a", date(2025, 4, 1), amount="50000", description="Office rent"),
        _txn("rent-b", date(2025, 4, 1), amount="50000", description="OFFICE RENT PAYMENT"),
    ]


def _open(issues):
    return {i.dedupe_key: i for i in issues if i.status is IssueStatus.OPEN}


def test_rescan_is_idempotent(messy_books):
    first = scan("biz-1", 2025, messy_books, now=TODAY)
    second = scan("biz-1", 2025, messy_books, previous=first, now=TODAY)
    assert second == first
    assert len(_open(second)) == 2


def test_first_scan_ignores_other_businesses(messy_books):
    foreign = scan("biz-2", 2025, messy_books, now=TODAY)
    issues = scan("biz-1", 2025, messy_books, previous=foreign, now=TODAY)
    assert all(i.business_id == "biz-1" for i in issues)


def test_vanished_issue_is_resolved(messy_books, clean_books):
    first = scan("biz-1", 2025, messy_books, now=TODAY)
    second = scan("biz-1", 2025, clean_books, previous=first, now=TODAY)
    assert {i.status for i in second} == {IssueStatus.RESOLVED}
    assert {i.id for i in second} == {i.id for i in first}


def test_dismissed_issue_stays_dismissed(messy_books):
    first = scan("biz-1", 2025, messy_books, now=TODAY)
    dup = _of_type(first, IssueType.POSSIBLE_DUPLICATE)[0]
    previous = [i.dismissed() if i.id == dup.id else i for i in first]

    second = scan("biz-1", 2025, messy_books, previous=previous, now=TODAY)
    again = next(i for i in second if i.id == dup.id)
    assert again.status is IssueStatus.DISMISSED
    assert len(_of_type(second, IssueType.POSSIBLE_DUPLICATE)) == 1


def test_dismissal_covers_shrinking_group(messy_books):
    extra = _txn("u-2", date(2025, 3, 10), category=None)
    first = scan("biz-1", 2025, messy_books + [extra], now=TODAY)
    group = _of_type(first, IssueType.UNCATEGORIZED)[0]
    previous = [i.dismissed() if i.id == group.id else i for i in first]

    # u-2 gets categorised: the remaining group is a subset of the dismissed one
    second = scan("biz-1", 2025, messy_books, previous=previous, now=TODAY)
    uncategorized = _of_type(second, IssueType.UNCATEGORIZED)
    assert [i.status for i in uncategorized] == [IssueStatus.DISMISSED]


def test_new_records_reopen_after_dismissal(messy_books):
    first = scan("biz-1", 2025, messy_books, now=TODAY)
    group = _of_type(first, IssueType.UNCATEGORIZED)[0]
    previous = [i.dismissed() if i.id == group.id else i for i in first]

    extra = _txn("u-9", date(2025, 5, 10), category=None)
    second = scan("biz-1", 2025, messy_books + [extra], previous=previous, now=TODAY)
    statuses = sorted(i.status.value for i in _of_type(second, IssueType.UNCATEGORIZED))
    assert statuses == ["dismissed", "open"]


def test_resolved_issue_reopens_when_detected_again(messy_books, clean_books):
    first = scan("biz-1", 2025, messy_books, now=TODAY)
    resolved = scan("biz-1", 2025, clean_books, previous=first, now=TODAY)
    reopened = scan("biz-1", 2025, messy_books, previous=resolved, now=TODAY)
    assert reopened == first


def test_issue_dict_round_trip(messy_books):
    issue = scan("biz-1", 2025, messy_books, now=TODAY)[0]
    assert ReviewIssue.from_dict(issue.to_dict()) == issue


def test_shrinking_group_is_updated_in_place(messy_books):
    extra = _txn("u-2", date(2025, 3, 10), category=None)
    first = scan("biz-1", 2025, messy_books + [extra], now=TODAY)
    group = _of_type(first, IssueType.UNCATEGORIZED)[0]
    assert sorted(group.entity_ids) == ["u-1", "u-2"]

    # u-2 gets categorised
    second = scan("biz-1", 2025, messy_books, previous=first, now=TODAY)
    [updated] = _of_type(second, IssueType.UNCATEGORIZED)
    assert updated.status is IssueStatus.OPEN
    assert updated.id == group.id
    assert updated.entity_ids == ("u-1",)
    assert updated.meta["count"] == 1

    third = scan("biz-1", 2025, messy_books, previous=second, now=TODAY)
    assert third == second


def test_missing_months_roll_over_into_same_issue():
    first = scan("biz-9", 2025, [], now=date(2025, 3, 15))
    [issue] = first
    assert issue.meta["missingMonths"] == ["2025-01", "2025-02"]

    second = scan("biz-9", 2025, [], previous=first, now=date(2025, 4, 15))
    [rolled] = second
    assert rolled.id == issue.id
    assert rolled.status is IssueStatus.OPEN
    assert rolled.meta["missingMonths"] == ["2025-01", "2025-02", "2025-03"]
