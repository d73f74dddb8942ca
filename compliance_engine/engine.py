"""
Compliance engine facade.

Wires the pure components together behind the operations callers use:

    evaluate / evaluate_business   resolver + scheduler + classifier
    dry_run                        the same path against any rule set, nothing stored
    score / score_many             tax-safety scorer
    scan / scan_many               review issue scanner

The engine holds no mutable state of its own. The active rule set is read
from the collaborator on every call and threaded through explicitly, so a
concurrent activation is seen either entirely or not at all.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional, Protocol, Union

from compliance_engine import review, scheduler
from compliance_engine.config import EngineSettings, settings as default_settings
from compliance_engine.obligations import Fulfillment, FulfillmentLookup, Obligation, classify
from compliance_engine.records import ComplianceTask, Transaction
from compliance_engine.resolver import FieldExplanation, Outcome, resolve
from compliance_engine.review import ReviewIssue
from compliance_engine.rulesets import RuleSet
from compliance_engine.scheduler import DeadlineInstance
from compliance_engine.scoring import TaxSafetyScore, compute_score

logger = logging.getLogger(__name__)

NO_RULE_SET_VERSION = "none"

DateLike = Union[date, datetime, None]


# -----------------------------------------------------------------------
# Collaborator interfaces
# -----------------------------------------------------------------------


class RuleSetReader(Protocol):
    def get_active(self, on: Optional[date] = None) -> Optional[RuleSet]: ...


class ProfileReader(Protocol):
    def get_profile(self, business_id: str) -> Mapping[str, Any]: ...


class TransactionReader(Protocol):
    def list_transactions(self, business_id: str, tax_year: int) -> list[Transaction]: ...


class TaskReader(Protocol):
    def list_tasks(self, business_id: str, tax_year: int) -> list[ComplianceTask]: ...


class FulfillmentReader(Protocol):
    def fulfillment_for(self, business_id: str) -> FulfillmentLookup: ...


class EvaluationReader(Protocol):
    def has_evaluation(self, business_id: str, tax_year: int) -> bool: ...


class IssueReader(Protocol):
    def list_issues(self, business_id: str, tax_year: int) -> list[ReviewIssue]: ...


# -----------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------


@dataclass
class Evaluation:
    """Everything one evaluation produced, as a single immutable snapshot."""

    tax_year: int
    outcome: Outcome
    rule_set_version: str
    evaluated_at: datetime
    deadlines: list[DeadlineInstance] = field(default_factory=list)
    obligations: list[Obligation] = field(default_factory=list)
    business_id: Optional[str] = None

    @property
    def explanations(self) -> dict[str, FieldExplanation]:
        return self.outcome.explanations

    @property
    def applied_rules(self) -> list[str]:
        return [m.key for m in self.outcome.matched_rules]

    @property
    def applied_templates(self) -> list[str]:
        return sorted({d.template_key for d in self.deadlines})

    def to_dict(self) -> dict[str, Any]:
        return {
            "businessId": self.business_id,
            "taxYear": self.tax_year,
            "ruleSetVersion": self.rule_set_version,
            "evaluatedAt": self.evaluated_at.isoformat(),
            "outcome": self.outcome.to_dict(),
            "explanations": {
                k: v.to_dict() for k, v in self.explanations.items()
            },
            "matchedRules": [
                {"key": m.key, "priority": m.priority, "explanation": m.explanation}
                for m in self.outcome.matched_rules
            ],
            "deadlines": [d.to_dict() for d in self.deadlines],
            "obligations": [o.to_dict() for o in self.obligations],
        }


def _as_datetime(now: DateLike) -> datetime:
    if now is None:
        return datetime.now()
    if isinstance(now, datetime):
        return now
    return datetime.combine(now, datetime.min.time())


# -----------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------


class ComplianceEngine:
    """
    Stateless entry point over the rule set and record collaborators.

    Only ``rule_sets`` is required; the business-level operations
    (``evaluate_business``, ``score``, ``scan``) need the readers they
    consume.
    """

    def __init__(
        self,
        rule_sets: RuleSetReader,
        profiles: Optional[ProfileReader] = None,
        transactions: Optional[TransactionReader] = None,
        tasks: Optional[TaskReader] = None,
        fulfillment: Optional[FulfillmentReader] = None,
        evaluations: Optional[EvaluationReader] = None,
        issues: Optional[IssueReader] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self.rule_sets = rule_sets
        self.profiles = profiles
        self.transactions = transactions
        self.tasks = tasks
        self.fulfillment = fulfillment
        self.evaluations = evaluations
        self.issues = issues
        self.settings = settings or default_settings

    # -- evaluation ---------------------------------------------------

    def evaluate(
        self,
        profile: Mapping[str, Any],
        tax_year: int,
        business_id: Optional[str] = None,
        fulfillment: Fulfillment = None,
        now: DateLike = None,
    ) -> Evaluation:
        """Evaluate ``profile`` against the currently active rule set."""
        moment = _as_datetime(now)
        active = self.rule_sets.get_active(moment.date())
        if active is None:
            logger.warning("No active rule set; returning the unknown outcome")
        return self._evaluate_with(active, profile, tax_year, business_id, fulfillment, moment)

    def evaluate_business(
        self, business_id: str, tax_year: int, now: DateLike = None
    ) -> Evaluation:
        profile = self._require(self.profiles, "profiles").get_profile(business_id)
        fulfillment = (
            self.fulfillment.fulfillment_for(business_id) if self.fulfillment else None
        )
        return self.evaluate(profile, tax_year, business_id, fulfillment, now)

    def dry_run(
        self,
        profile: Mapping[str, Any],
        tax_year: int,
        rule_set: Optional[RuleSet] = None,
        now: DateLike = None,
    ) -> Evaluation:
        """
        Evaluate a synthetic profile without persisting anything.

        Uses ``rule_set`` when given (e.g. a draft under test), otherwise
        the active one. Runs exactly the production evaluation path.
        """
        moment = _as_datetime(now)
        target = rule_set if rule_set is not None else self.rule_sets.get_active(moment.date())
        return self._evaluate_with(target, profile, tax_year, None, None, moment)

    def _evaluate_with(
        self,
        rule_set: Optional[RuleSet],
        profile: Mapping[str, Any],
        tax_year: int,
        business_id: Optional[str],
        fulfillment: Fulfillment,
        moment: datetime,
    ) -> Evaluation:
        outcome = resolve(rule_set, profile)
        deadlines = scheduler.expand(rule_set, profile, tax_year)
        obligations = classify(
            deadlines,
            fulfillment,
            moment,
            business_id or "",
            self.settings,
        )
        return Evaluation(
            tax_year=tax_year,
            outcome=outcome,
            rule_set_version=rule_set.version if rule_set else NO_RULE_SET_VERSION,
            evaluated_at=moment,
            deadlines=deadlines,
            obligations=obligations,
            business_id=business_id,
        )

    # -- scoring ------------------------------------------------------

    def score(
        self, business_id: str, tax_year: int, now: DateLike = None
    ) -> TaxSafetyScore:
        moment = _as_datetime(now)
        evaluation = self.evaluate_business(business_id, tax_year, moment)
        transactions = self._require(self.transactions, "transactions").list_transactions(
            business_id, tax_year
        )
        eligibility_on_file = bool(
            self.evaluations and self.evaluations.has_evaluation(business_id, tax_year)
        )
        return compute_score(
            business_id,
            tax_year,
            eligibility_on_file=eligibility_on_file,
            obligations=evaluation.obligations,
            transactions=transactions,
            now=moment,
            settings=self.settings,
        )

    def score_many(
        self, business_ids: Iterable[str], tax_year: int, now: DateLike = None
    ) -> dict[str, TaxSafetyScore]:
        return self._fan_out(lambda b: self.score(b, tax_year, now), business_ids)

    # -- review -------------------------------------------------------

    def scan(
        self, business_id: str, tax_year: int, now: DateLike = None
    ) -> list[ReviewIssue]:
        transactions = self._require(self.transactions, "transactions").list_transactions(
            business_id, tax_year
        )
        tasks = self.tasks.list_tasks(business_id, tax_year) if self.tasks else []
        previous = self.issues.list_issues(business_id, tax_year) if self.issues else []
        return review.scan(
            business_id,
            tax_year,
            transactions,
            tasks,
            previous,
            now,
            self.settings,
        )

    def scan_many(
        self, business_ids: Iterable[str], tax_year: int, now: DateLike = None
    ) -> dict[str, list[ReviewIssue]]:
        return self._fan_out(lambda b: self.scan(b, tax_year, now), business_ids)

    # -- internals ----------------------------------------------------

    def _fan_out(self, work, business_ids: Iterable[str]) -> dict[str, Any]:
        ids = list(dict.fromkeys(business_ids))
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            results = list(pool.map(work, ids))
        return dict(zip(ids, results))

    @staticmethod
    def _require(reader: Any, name: str) -> Any:
        if reader is None:
            raise ValueError(f"ComplianceEngine was built without a {name} reader")
        return reader
