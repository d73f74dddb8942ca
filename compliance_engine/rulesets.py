"""
Versioned tax rule sets.

A rule set bundles ordered rules and deadline templates under a unique
version string. Rule sets are immutable: edits on anything but a draft
require a new version. At most one rule set is active at a time.

The in-memory repository here is the reference collaborator for the
administrative surface (create, add rule, add template, activate,
archive) and for tests; production deployments back the same interface
with a database.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Mapping, Optional

from compliance_engine.conditions import ALWAYS, Condition, parse_condition, to_json
from compliance_engine.exceptions import (
    DuplicateKeyError,
    RuleSetNotFoundError,
    RuleSetStateError,
    RuleSetValidationError,
)

logger = logging.getLogger(__name__)

STATUS_FIELDS = ("citStatus", "vatStatus", "whtStatus")


class RuleSetStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class RuleType(Enum):
    ELIGIBILITY = "eligibility"
    OBLIGATION = "obligation"
    DEADLINE = "deadline"
    THRESHOLD = "threshold"


class Frequency(Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    ONE_TIME = "one_time"


@dataclass(frozen=True)
class Rule:
    """
    One rule of a rule set.

    Rules are folded in ascending ``priority``; a higher number is applied
    later and wins on scalar outcome fields.
    """

    key: str
    type: RuleType
    priority: int
    conditions: Condition
    outcome: Mapping[str, Any]
    explanation: str = ""
    id: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], strict: bool = False) -> "Rule":
        key = _required_str(data, "key")
        outcome = data.get("outcomeJson", data.get("outcome", {}))
        if not isinstance(outcome, Mapping):
            if strict:
                raise RuleSetValidationError("outcomeJson must be an object")
            logger.warning("Rule %s has a non-object outcome; ignoring it", key)
            outcome = {}
        if strict:
            _validate_outcome(key, outcome)
        return cls(
            key=key,
            type=_enum(RuleType, data.get("type", "eligibility"), "type"),
            priority=_int(data.get("priority", 0), "priority"),
            conditions=parse_condition(
                data.get("conditionsJson", data.get("conditions")), strict
            ),
            outcome=dict(outcome),
            explanation=str(data.get("explanation", "")),
            id=str(data.get("id") or key),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "type": self.type.value,
            "priority": self.priority,
            "conditionsJson": to_json(self.conditions),
            "outcomeJson": dict(self.outcome),
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class DeadlineTemplate:
    """
    A recurrence that expands into concrete due dates for a tax year.

    monthly uses ``due_day_of_month``; annual and one_time use
    ``due_month`` + ``due_day`` (``due_year`` pins a one_time date);
    ``offset_days`` is added to whatever base date was computed.
    """

    key: str
    frequency: Frequency
    title: str
    description: str = ""
    due_day_of_month: Optional[int] = None
    due_month: Optional[int] = None
    due_day: Optional[int] = None
    due_year: Optional[int] = None
    offset_days: Optional[int] = None
    applies_when: Condition = ALWAYS
    tax_type: Optional[str] = None
    id: str = ""

    @property
    def effective_tax_type(self) -> str:
        if self.tax_type:
            return self.tax_type
        return self.key.split("_", 1)[0].upper()

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], strict: bool = False
    ) -> "DeadlineTemplate":
        key = _required_str(data, "key")
        template = cls(
            key=key,
            frequency=_enum(Frequency, data.get("frequency"), "frequency"),
            title=str(data.get("title") or key),
            description=str(data.get("description", "")),
            due_day_of_month=_optional_int(data.get("dueDayOfMonth")),
            due_month=_optional_int(data.get("dueMonth")),
            due_day=_optional_int(data.get("dueDay")),
            due_year=_optional_int(data.get("dueYear")),
            offset_days=_optional_int(data.get("offsetDays")),
            applies_when=parse_condition(data.get("appliesWhenJson"), strict),
            tax_type=data.get("taxType") or None,
            id=str(data.get("id") or key),
        )
        if strict:
            _validate_template_shape(template)
        return template

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "frequency": self.frequency.value,
            "dueDayOfMonth": self.due_day_of_month,
            "dueMonth": self.due_month,
            "dueDay": self.due_day,
            "dueYear": self.due_year,
            "offsetDays": self.offset_days,
            "appliesWhenJson": to_json(self.applies_when),
            "taxType": self.effective_tax_type,
            "title": self.title,
            "description": self.description,
        }


@dataclass(frozen=True)
class RuleSet:
    """An immutable, versioned bundle of rules and deadline templates."""

    version: str
    name: str
    status: RuleSetStatus = RuleSetStatus.DRAFT
    effective_from: date = date.min
    effective_to: Optional[date] = None
    description: str = ""
    rules: tuple[Rule, ...] = ()
    deadline_templates: tuple[DeadlineTemplate, ...] = ()
    id: str = ""

    def is_effective_on(self, day: date) -> bool:
        if self.effective_from > day:
            return False
        return self.effective_to is None or self.effective_to > day

    def rule(self, key: str) -> Optional[Rule]:
        return next((r for r in self.rules if r.key == key), None)

    def template(self, key: str) -> Optional[DeadlineTemplate]:
        return next((t for t in self.deadline_templates if t.key == key), None)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], strict: bool = False) -> "RuleSet":
        """Build a rule set from its JSON form (camelCase keys)."""
        version = _required_str(data, "version")
        rules = tuple(
            Rule.from_dict(r, strict) for r in data.get("rules", [])
        )
        templates = tuple(
            DeadlineTemplate.from_dict(t, strict)
            for t in data.get("deadlineTemplates", [])
        )
        if strict:
            _check_unique([r.key for r in rules], "rule")
            _check_unique([t.key for t in templates], "deadline template")
        return cls(
            version=version,
            name=str(data.get("name") or version),
            status=_enum(RuleSetStatus, data.get("status", "draft"), "status"),
            effective_from=_date(data.get("effectiveFrom")) or date.min,
            effective_to=_date(data.get("effectiveTo")),
            description=str(data.get("description", "")),
            rules=rules,
            deadline_templates=templates,
            id=str(data.get("id") or version),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "status": self.status.value,
            "effectiveFrom": self.effective_from.isoformat(),
            "effectiveTo": (
                self.effective_to.isoformat() if self.effective_to else None
            ),
            "description": self.description,
            "rules": [r.to_dict() for r in self.rules],
            "deadlineTemplates": [t.to_dict() for t in self.deadline_templates],
        }


# -----------------------------------------------------------------------
# Field helpers
# -----------------------------------------------------------------------


def _required_str(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise RuleSetValidationError(f"'{name}' is required")
    return value.strip()


def _enum(kind: type[Enum], value: Any, name: str) -> Any:
    if isinstance(value, kind):
        return value
    try:
        return kind(value)
    except ValueError:
        allowed = ", ".join(m.value for m in kind)
        raise RuleSetValidationError(
            f"Invalid {name}: {value!r}. Must be one of: {allowed}"
        ) from None


def _int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RuleSetValidationError(f"'{name}' must be an integer") from None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return _int(value, "date field")


def _date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise RuleSetValidationError(f"Invalid date: {value!r}") from None


def _check_unique(keys: list[str], label: str) -> None:
    seen: set[str] = set()
    for key in keys:
        if key in seen:
            raise DuplicateKeyError(f"Duplicate {label} key: {key}")
        seen.add(key)


def _validate_outcome(key: str, outcome: Mapping[str, Any]) -> None:
    for name in STATUS_FIELDS:
        value = outcome.get(name)
        if value is not None and not isinstance(value, str):
            raise RuleSetValidationError(f"Rule {key}: {name} must be a string")
    thresholds = outcome.get("thresholds")
    if thresholds is not None and not isinstance(thresholds, Mapping):
        raise RuleSetValidationError(f"Rule {key}: thresholds must be an object")


def _validate_template_shape(template: DeadlineTemplate) -> None:
    if template.due_day_of_month is not None and not 1 <= template.due_day_of_month <= 31:
        raise RuleSetValidationError("dueDayOfMonth must be between 1 and 31")
    if template.due_month is not None and not 0 <= template.due_month <= 12:
        raise RuleSetValidationError("dueMonth must be between 1 and 12")
    if template.due_day is not None and not 1 <= template.due_day <= 31:
        raise RuleSetValidationError("dueDay must be between 1 and 31")
    if template.frequency in (Frequency.ANNUAL, Frequency.ONE_TIME):
        has_date = template.due_month is not None and template.due_day is not None
        if not has_date and template.offset_days is None:
            raise RuleSetValidationError(
                f"{template.frequency.value} templates need dueMonth and dueDay "
                f"or offsetDays"
            )


# -----------------------------------------------------------------------
# Repository
# -----------------------------------------------------------------------


class InMemoryRuleSetRepository:
    """
    Thread-safe store of rule sets with an atomic active swap.

    Activation archives the previous active set and promotes the new one
    under a single lock, and ``get_active`` reads under the same lock, so
    no reader ever observes zero or two active sets mid-swap.
    """

    def __init__(self, rule_sets: Optional[list[RuleSet]] = None) -> None:
        self._lock = threading.Lock()
        self._rule_sets: dict[str, RuleSet] = {}
        self._active_id: Optional[str] = None
        for rs in rule_sets or []:
            self.add(rs)

    def add(self, rule_set: RuleSet) -> RuleSet:
        """Register an already-built rule set (e.g. loaded from JSON)."""
        rule_set = replace(rule_set, id=rule_set.id or rule_set.version)
        with self._lock:
            self._ensure_version_free(rule_set.version)
            if rule_set.status is RuleSetStatus.ACTIVE:
                if self._active_id is not None:
                    raise RuleSetStateError(
                        "Another rule set is already active; use activate()"
                    )
                self._active_id = rule_set.id
            self._rule_sets[rule_set.id] = rule_set
        return rule_set

    def create_rule_set(
        self,
        version: str,
        name: str,
        effective_from: date,
        effective_to: Optional[date] = None,
        description: str = "",
    ) -> RuleSet:
        return self.add(
            RuleSet(
                version=version,
                name=name,
                effective_from=effective_from,
                effective_to=effective_to,
                description=description,
                id=version,
            )
        )

    def get(self, rule_set_id: str) -> RuleSet:
        with self._lock:
            return self._get(rule_set_id)

    def list_rule_sets(self) -> list[RuleSet]:
        with self._lock:
            return sorted(self._rule_sets.values(), key=lambda rs: rs.version)

    def get_active(self, on: Optional[date] = None) -> Optional[RuleSet]:
        """Return the active rule set if it is effective on ``on``."""
        day = on or date.today()
        with self._lock:
            if self._active_id is None:
                return None
            active = self._rule_sets[self._active_id]
        return active if active.is_effective_on(day) else None

    def add_rule(self, rule_set_id: str, data: Mapping[str, Any]) -> Rule:
        rule = Rule.from_dict(data, strict=True)
        with self._lock:
            rs = self._editable(rule_set_id)
            if rs.rule(rule.key) is not None:
                raise DuplicateKeyError(
                    f"Rule key {rule.key} already exists in {rs.version}"
                )
            self._rule_sets[rs.id] = replace(rs, rules=rs.rules + (rule,))
        return rule

    def add_deadline_template(
        self, rule_set_id: str, data: Mapping[str, Any]
    ) -> DeadlineTemplate:
        template = DeadlineTemplate.from_dict(data, strict=True)
        with self._lock:
            rs = self._editable(rule_set_id)
            if rs.template(template.key) is not None:
                raise DuplicateKeyError(
                    f"Deadline template key {template.key} already exists "
                    f"in {rs.version}"
                )
            self._rule_sets[rs.id] = replace(
                rs, deadline_templates=rs.deadline_templates + (template,)
            )
        return template

    def activate(self, rule_set_id: str, on: Optional[date] = None) -> RuleSet:
        """Make ``rule_set_id`` the single active set, archiving the old one."""
        day = on or date.today()
        with self._lock:
            target = self._get(rule_set_id)
            if target.status is RuleSetStatus.ACTIVE:
                return target
            if target.status is RuleSetStatus.ARCHIVED:
                raise RuleSetStateError(
                    f"Rule set {target.version} is archived; create a new version"
                )
            previous = (
                self._rule_sets[self._active_id] if self._active_id else None
            )
            promoted = replace(target, status=RuleSetStatus.ACTIVE)
            self._rule_sets[promoted.id] = promoted
            if previous is not None:
                self._rule_sets[previous.id] = replace(
                    previous, status=RuleSetStatus.ARCHIVED, effective_to=day
                )
            self._active_id = promoted.id

        logger.info(
            "Activated rule set %s%s",
            promoted.version,
            f" (archived {previous.version})" if previous else "",
        )
        return promoted

    def archive(self, rule_set_id: str, on: Optional[date] = None) -> RuleSet:
        day = on or date.today()
        with self._lock:
            target = self._get(rule_set_id)
            archived = replace(
                target,
                status=RuleSetStatus.ARCHIVED,
                effective_to=target.effective_to or day,
            )
            self._rule_sets[archived.id] = archived
            if self._active_id == archived.id:
                self._active_id = None
        logger.info("Archived rule set %s", archived.version)
        return archived

    def new_version(
        self, rule_set_id: str, version: str, name: Optional[str] = None
    ) -> RuleSet:
        """Copy an existing rule set into a new editable draft."""
        with self._lock:
            source = self._get(rule_set_id)
            self._ensure_version_free(version)
            draft = replace(
                source,
                version=version,
                name=name or source.name,
                status=RuleSetStatus.DRAFT,
                effective_to=None,
                id=version,
            )
            self._rule_sets[draft.id] = draft
        return draft

    # -- internals (caller holds the lock) ----------------------------

    def _get(self, rule_set_id: str) -> RuleSet:
        try:
            return self._rule_sets[rule_set_id]
        except KeyError:
            raise RuleSetNotFoundError(f"Rule set {rule_set_id} not found") from None

    def _editable(self, rule_set_id: str) -> RuleSet:
        rs = self._get(rule_set_id)
        if rs.status is not RuleSetStatus.DRAFT:
            raise RuleSetStateError(
                f"Rule set {rs.version} is {rs.status.value}; "
                f"only drafts can be edited"
            )
        return rs

    def _ensure_version_free(self, version: str) -> None:
        if any(rs.version == version for rs in self._rule_sets.values()):
            raise DuplicateKeyError(f"Rule set version {version} already exists")
