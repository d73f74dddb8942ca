"""Tests for deadline template expansion."""

from datetime import date

import pytest

from compliance_engine.defaults import load_default_rule_set
from compliance_engine.rulesets import DeadlineTemplate, RuleSet
from compliance_engine.scheduler import expand, expand_template


def _template(**data) -> DeadlineTemplate:
    data.setdefault("key", "vat_monthly")
    return DeadlineTemplate.from_dict(data)


@pytest.fixture
def default_rules() -> RuleSet:
    return load_default_rule_set()


# ── Monthly ─────────────────────────────────────────────────────────


def test_monthly_expands_to_twelve_instances():
    instances = expand_template(_template(frequency="monthly", dueDayOfMonth=21), {}, 2025)
    assert len(instances) == 12
    assert instances[0].period_start == date(2025, 1, 1)
    assert instances[0].period_end == date(2025, 1, 31)
    assert instances[0].due_date == date(2025, 1, 21)
    assert instances[0].key == "vat_monthly:2025-01"
    assert instances[0].tax_type == "VAT"


@pytest.mark.parametrize("year, expected_day", [(2024, 29), (2025, 28)])
def test_day_31_is_clamped_in_february(year, expected_day):
    instances = expand_template(_template(frequency="monthly", dueDayOfMonth=31), {}, year)
    february = instances[1]
    assert february.due_date == date(year, 2, expected_day)
    assert all(i.due_date.month == i.period_start.month for i in instances)


def test_monthly_offset_from_period_end():
    instances = expand_template(_template(frequency="monthly", offsetDays=21), {}, 2025)
    assert instances[0].due_date == date(2025, 2, 21)
    assert instances[1].due_date == date(2025, 3, 21)
    # December's return falls due in the next calendar year
    assert instances[11].due_date == date(2026, 1, 21)


# ── Quarterly ───────────────────────────────────────────────────────


def test_quarterly_periods_and_offsets():
    instances = expand_template(
        _template(key="cit_quarterly", frequency="quarterly", offsetDays=30), {}, 2025
    )
    assert [i.key for i in instances] == [
        "cit_quarterly:2025-Q1",
        "cit_quarterly:2025-Q2",
        "cit_quarterly:2025-Q3",
        "cit_quarterly:2025-Q4",
    ]
    assert instances[0].period_start == date(2025, 1, 1)
    assert instances[0].period_end == date(2025, 3, 31)
    assert instances[0].due_date == date(2025, 4, 30)
    assert instances[3].due_date == date(2026, 1, 30)


# ── Annual and one-time ─────────────────────────────────────────────


def test_annual_on_fixed_date():
    instances = expand_template(
        _template(key="cit_annual", frequency="annual", dueMonth=6, dueDay=30), {}, 2025
    )
    assert len(instances) == 1
    assert instances[0].due_date == date(2025, 6, 30)
    assert instances[0].period_start == date(2025, 1, 1)
    assert instances[0].period_end == date(2025, 12, 31)
    assert instances[0].key == "cit_annual:2025"


def test_annual_day_is_clamped():
    instances = expand_template(
        _template(key="cit_annual", frequency="annual", dueMonth=2, dueDay=30), {}, 2025
    )
    assert instances[0].due_date == date(2025, 2, 28)


def test_legacy_month_zero_means_january():
    instances = expand_template(
        _template(key="wht_annual", frequency="annual", dueMonth=0, dueDay=31), {}, 2025
    )
    assert instances[0].due_date == date(2025, 1, 31)


def test_annual_with_offset_only_counts_from_year_end():
    instances = expand_template(
        _template(key="cit_annual", frequency="annual", offsetDays=181), {}, 2025
    )
    assert instances[0].due_date == date(2026, 6, 30)


def test_annual_without_any_date_is_skipped():
    assert expand_template(_template(key="cit_annual", frequency="annual"), {}, 2025) == []


def test_one_time_with_year_is_literal():
    template = _template(
        key="tin_registration", frequency="one_time", dueYear=2024, dueMonth=3, dueDay=1
    )
    for year in (2024, 2025):
        instances = expand_template(template, {}, year)
        assert [i.due_date for i in instances] == [date(2024, 3, 1)]


def test_one_time_without_year_uses_tax_year():
    template = _template(key="audit", frequency="one_time", dueMonth=9, dueDay=15)
    assert expand_template(template, {}, 2025)[0].due_date == date(2025, 9, 15)


# ── Applicability and validation ────────────────────────────────────


def test_template_not_applicable_yields_nothing():
    template = _template(
        frequency="monthly",
        dueDayOfMonth=21,
        appliesWhenJson={"field": "vatRegistered", "op": "eq", "value": True},
    )
    assert expand_template(template, {"vatRegistered": False}, 2025) == []
    assert expand_template(template, {}, 2025) == []
    assert len(expand_template(template, {"vatRegistered": True}, 2025)) == 12


def test_invalid_day_of_month_is_skipped():
    template = _template(frequency="monthly", dueDayOfMonth=40)
    assert expand_template(template, {}, 2025) == []


def test_no_rule_set_yields_nothing():
    assert expand(None, {"vatRegistered": True}, 2025) == []


# ── Whole rule set ──────────────────────────────────────────────────


def test_expand_default_rules_sorted_by_due_date(default_rules: RuleSet):
    profile = {"vatRegistered": True, "paysContractors": True}
    instances = expand(default_rules, profile, 2025)
    assert len(instances) == 12 + 12 + 4
    due_dates = [i.due_date for i in instances]
    assert due_dates == sorted(due_dates)
    # Same due date: template key breaks the tie
    first_two = instances[:2]
    assert [i.template_key for i in first_two] == ["vat_monthly", "wht_monthly"]


def test_expansion_is_deterministic(default_rules: RuleSet):
    profile = {"vatRegistered": True}
    first = [i.to_dict() for i in expand(default_rules, profile, 2025)]
    second = [i.to_dict() for i in expand(default_rules, profile, 2025)]
    assert first == second
