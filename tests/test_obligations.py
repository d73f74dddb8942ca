"""Tests for obligation status classification and the filing ledger."""

from datetime import date, datetime

import pytest

from compliance_engine.config import EngineSettings
from compliance_engine.obligations import (
    FilingLedger,
    ObligationStatus,
    classify,
    classify_status,
    obligation_id,
)
from compliance_engine.rulesets import DeadlineTemplate
from compliance_engine.scheduler import expand_template

TODAY = date(2025, 6, 15)


@pytest.fixture
def vat_instances():
    template = DeadlineTemplate.from_dict(
        {"key": "vat_monthly", "frequency": "monthly", "offsetDays": 21}
    )
    return expand_template(template, {}, 2025)


# ── Status precedence ───────────────────────────────────────────────


def test_fulfilled_beats_overdue():
    status = classify_status(date(2025, 1, 21), TODAY, fulfilled=True)
    assert status is ObligationStatus.FULFILLED


def test_past_due_date_is_overdue():
    assert classify_status(date(2025, 6, 14), TODAY, fulfilled=False) is ObligationStatus.OVERDUE


@pytest.mark.parametrize("days_ahead", [0, 1, 30])
def test_within_window_is_due(days_ahead):
    due = date.fromordinal(TODAY.toordinal() + days_ahead)
    assert classify_status(due, TODAY, fulfilled=False) is ObligationStatus.DUE


def test_beyond_window_is_upcoming():
    due = date.fromordinal(TODAY.toordinal() + 31)
    assert classify_status(due, TODAY, fulfilled=False) is ObligationStatus.UPCOMING


def test_custom_window():
    due = date.fromordinal(TODAY.toordinal() + 20)
    assert classify_status(due, TODAY, False, due_soon_days=14) is ObligationStatus.UPCOMING


# ── Classifying instances ───────────────────────────────────────────


def test_classify_without_fulfillment(vat_instances):
    obligations = classify(vat_instances, now=TODAY, business_id="biz-1")
    by_period = {o.period_start.month: o for o in obligations}

    # May return is due 2025-06-21, six days away
    assert by_period[5].status is ObligationStatus.DUE
    assert by_period[5].days_until_due == 6
    # April return was due 2025-05-21
    assert by_period[4].status is ObligationStatus.OVERDUE
    assert by_period[12].status is ObligationStatus.UPCOMING
    assert all(o.business_id == "biz-1" for o in obligations)


def test_classify_with_filing_ledger(vat_instances):
    ledger = FilingLedger()
    ledger.mark_filed("vat", date(2025, 4, 1), date(2025, 4, 30))
    obligations = classify(vat_instances, ledger, now=TODAY)

    april = next(o for o in obligations if o.period_start == date(2025, 4, 1))
    march = next(o for o in obligations if o.period_start == date(2025, 3, 1))
    assert april.status is ObligationStatus.FULFILLED
    assert not april.is_open
    assert march.status is ObligationStatus.OVERDUE
    assert len(ledger) == 1


def test_classify_with_callable(vat_instances):
    obligations = classify(vat_instances, lambda i: i.period_start.month <= 5, now=TODAY)
    statuses = {o.status for o in obligations if o.period_start.month <= 5}
    assert statuses == {ObligationStatus.FULFILLED}


def test_classify_accepts_datetime(vat_instances):
    from_date = classify(vat_instances, now=TODAY)
    from_datetime = classify(vat_instances, now=datetime(2025, 6, 15, 17, 30))
    assert [o.status for o in from_date] == [o.status for o in from_datetime]


def test_classify_uses_settings_window(vat_instances):
    narrow = EngineSettings(due_soon_days=3)
    may = classify(vat_instances, now=TODAY, settings=narrow)[4]
    assert may.status is ObligationStatus.UPCOMING


def test_classify_preserves_order(vat_instances):
    obligations = classify(vat_instances, now=TODAY)
    assert [o.due_date for o in obligations] == [i.due_date for i in vat_instances]


# ── Identity ────────────────────────────────────────────────────────


def test_obligation_ids_are_stable(vat_instances):
    first = classify(vat_instances, now=TODAY, business_id="biz-1")
    second = classify(vat_instances, now=date(2025, 12, 1), business_id="biz-1")
    assert [o.id for o in first] == [o.id for o in second]
    assert len({o.id for o in first}) == 12


def test_obligation_ids_differ_per_business():
    assert obligation_id("biz-1", "vat_monthly:2025-01") != obligation_id(
        "biz-2", "vat_monthly:2025-01"
    )


def test_to_dict_uses_iso_dates(vat_instances):
    data = classify(vat_instances, now=TODAY)[0].to_dict()
    assert data["dueDate"] == "2025-02-21"
    assert data["status"] == "overdue"
    assert data["taxType"] == "VAT"
