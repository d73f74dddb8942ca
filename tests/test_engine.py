"""Tests for the ComplianceEngine facade and the in-memory record store."""

from datetime import date
from decimal import Decimal

import pytest

from compliance_engine.defaults import load_default_rule_set
from compliance_engine.engine import NO_RULE_SET_VERSION, ComplianceEngine
from compliance_engine.obligations import ObligationStatus
from compliance_engine.records import Classification, Transaction, TransactionKind
from compliance_engine.review import IssueStatus, IssueType
from compliance_engine.rulesets import InMemoryRuleSetRepository, RuleSet
from compliance_engine.scoring import ReasonCode
from compliance_engine.store import InMemoryRecordStore

NOW = date(2025, 6, 15)


@pytest.fixture
def repo() -> InMemoryRuleSetRepository:
    repo = InMemoryRuleSetRepository([load_default_rule_set()])
    repo.activate("ng-2025.1", on=date(2025, 1, 1))
    return repo


@pytest.fixture
def store() -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    store.put_profile(
        "biz-1",
        {"annualTurnoverNGN": 18_000_000, "vatRegistered": True, "paysContractors": False},
    )
    store.add_transactions(
        "biz-1",
        [
            Transaction(
                transaction_id=f"t-{m}",
                transaction_date=date(2025, m, 3),
                amount=Decimal(1000 * m),
                kind=TransactionKind.INCOME,
                description=f"Sale {m}",
                category_id="sales",
                classification=Classification.BUSINESS,
            )
            for m in range(1, 7)
        ],
    )
    return store


@pytest.fixture
def engine(repo, store) -> ComplianceEngine:
    return ComplianceEngine(
        rule_sets=repo,
        profiles=store,
        transactions=store,
        tasks=store,
        fulfillment=store,
        evaluations=store,
        issues=store,
    )


# ── Evaluate ────────────────────────────────────────────────────────


def test_evaluate_cit_exempt_scenario(repo):
    engine = ComplianceEngine(rule_sets=repo)
    evaluation = engine.evaluate({"annualTurnoverNGN": 10_000_000}, 2025, now=NOW)
    assert evaluation.outcome.cit_status == "exempt"
    assert evaluation.explanations["citStatus"].rule_key == "cit_exempt"
    assert evaluation.rule_set_version == "ng-2025.1"


def test_evaluate_without_active_rule_set():
    engine = ComplianceEngine(rule_sets=InMemoryRuleSetRepository())
    evaluation = engine.evaluate({"annualTurnoverNGN": 10_000_000}, 2025, now=NOW)
    outcome = evaluation.outcome
    assert (outcome.cit_status, outcome.vat_status, outcome.wht_status) == (
        "unknown",
        "unknown",
        "unknown",
    )
    assert evaluation.deadlines == []
    assert evaluation.obligations == []
    assert evaluation.rule_set_version == NO_RULE_SET_VERSION


def test_evaluate_business_builds_obligations(engine, store):
    store.ledger("biz-1").mark_filed("VAT", date(2025, 4, 1), date(2025, 4, 30))
    evaluation = engine.evaluate_business("biz-1", 2025, now=NOW)

    vat = [o for o in evaluation.obligations if o.tax_type == "VAT"]
    assert len(vat) == 12
    statuses = {o.period_start.month: o.status for o in vat}
    assert statuses[3] is ObligationStatus.OVERDUE
    assert statuses[4] is ObligationStatus.FULFILLED
    assert statuses[5] is ObligationStatus.DUE
    assert {o.business_id for o in evaluation.obligations} == {"biz-1"}
    # No contractors, so no WHT remittances
    assert not [o for o in evaluation.obligations if o.tax_type == "WHT"]


def test_evaluate_business_requires_profiles(repo):
    with pytest.raises(ValueError):
        ComplianceEngine(rule_sets=repo).evaluate_business("biz-1", 2025)


def test_evaluation_to_dict(engine):
    data = engine.evaluate_business("biz-1", 2025, now=NOW).to_dict()
    assert data["outcome"]["citStatus"] == "exempt"
    assert data["explanations"]["citStatus"]["ruleKeys"] == ["cit_exempt"]
    assert data["ruleSetVersion"] == "ng-2025.1"
    assert len(data["obligations"]) == len(data["deadlines"])


# ── Dry run ─────────────────────────────────────────────────────────


def test_dry_run_matches_evaluate(engine):
    profile = {"annualTurnoverNGN": 40_000_000, "paysContractors": True}
    dry = engine.dry_run(profile, 2025, now=NOW)
    real = engine.evaluate(profile, 2025, now=NOW)
    assert dry.to_dict() == real.to_dict()
    assert "wht_agent" in dry.applied_rules
    assert dry.applied_templates == ["cit_quarterly", "wht_monthly"]


def test_dry_run_against_draft(engine, repo):
    draft = repo.new_version("ng-2025.1", "ng-2025.2")
    repo.add_rule(
        draft.id,
        {
            "key": "cit_large",
            "priority": 50,
            "conditionsJson": {"field": "annualTurnoverNGN", "op": "gt", "value": 100_000_000},
            "outcomeJson": {"citStatus": "large_company"},
        },
    )
    profile = {"annualTurnoverNGN": 150_000_000}
    dry = engine.dry_run(profile, 2025, rule_set=repo.get(draft.id), now=NOW)
    assert dry.outcome.cit_status == "large_company"
    assert dry.rule_set_version == "ng-2025.2"
    # The active set is untouched
    assert engine.evaluate(profile, 2025, now=NOW).outcome.cit_status == "liable"


def test_activation_switches_evaluations(engine, repo):
    repo.add(
        RuleSet.from_dict(
            {
                "version": "ng-2026.1",
                "rules": [{"key": "all_exempt", "outcomeJson": {"citStatus": "exempt"}}],
            }
        )
    )
    repo.activate("ng-2026.1", on=NOW)
    evaluation = engine.evaluate({"annualTurnoverNGN": 90_000_000}, 2025, now=NOW)
    assert evaluation.rule_set_version == "ng-2026.1"
    assert evaluation.outcome.cit_status == "exempt"


# ── Score ───────────────────────────────────────────────────────────


def test_score_uses_evaluation_on_file(engine, store):
    without = engine.score("biz-1", 2025, now=NOW)
    assert ReasonCode.MISSING_ELIGIBILITY in without.reasons

    store.record_evaluation("biz-1", 2025)
    with_eval = engine.score("biz-1", 2025, now=NOW)
    assert ReasonCode.MISSING_ELIGIBILITY not in with_eval.reasons
    assert with_eval.score == without.score + 20


def test_score_flags_overdue_vat(engine, store):
    store.record_evaluation("biz-1", 2025)
    result = engine.score("biz-1", 2025, now=NOW)
    # Jan-Apr VAT returns are past due and unfiled
    assert result.reasons == [ReasonCode.OVERDUE_OBLIGATION]
    assert result.score == 70


def test_score_many(engine, store):
    store.put_profile("biz-2", {"annualTurnoverNGN": 5_000_000})
    results = engine.score_many(["biz-1", "biz-2", "biz-1"], 2025, now=NOW)
    assert list(results) == ["biz-1", "biz-2"]
    assert results["biz-2"].breakdown.months_with_transactions == 0
    assert ReasonCode.LOW_RECORDS_COVERAGE in results["biz-2"].reasons


# ── Scan ────────────────────────────────────────────────────────────


def test_scan_reads_previous_issues(engine, store):
    store.add_transactions(
        "biz-1",
        [
            Transaction("rent-a", date(2025, 4, 1), Decimal("50000"), description="Office rent"),
            Transaction("rent-b", date(2025, 4, 1), Decimal("50000"), description="OFFICE RENT PAYMENT"),
        ],
    )
    first = engine.scan("biz-1", 2025, now=NOW)
    types = {i.type for i in first}
    assert IssueType.POSSIBLE_DUPLICATE in types
    assert IssueType.UNCATEGORIZED in types

    store.save_issues("biz-1", 2025, first)
    second = engine.scan("biz-1", 2025, now=NOW)
    assert second == first
    assert all(i.status is IssueStatus.OPEN for i in second)


def test_scan_many(engine, store):
    results = engine.scan_many(["biz-1", "biz-3"], 2025, now=NOW)
    assert results["biz-1"] == []
    # biz-3 has no records at all: every completed month is missing
    [missing] = results["biz-3"]
    assert missing.type is IssueType.MISSING_MONTH
    assert len(missing.entity_ids) == 5
