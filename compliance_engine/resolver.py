"""
Rule resolution: turn a business profile into a single outcome.

Matching rules are folded in ascending ``(priority, declaration order)``
into a typed ``Outcome``. Each outcome field has exactly one merge
function:

    citStatus / vatStatus / whtStatus   override (last applied wins)
    complianceNote / complianceNotes    concatenate into a list
    thresholds                          key-wise merge, last wins per key
    anything else                       concatenate if list-valued, else override

A status that is not a non-empty string, or thresholds that are not a
mapping, are ignored with a warning and leave the field as it was.

Because a higher priority number is applied later, it wins conflicts on
scalar fields. When nothing matches (or there is no rule set at all) the
result is the well-known "unknown" outcome, never ``None``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union

from compliance_engine.conditions import evaluate
from compliance_engine.rulesets import Rule, RuleSet, RuleType

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

NO_RULE_SET_NOTE = (
    "No active tax rule set is available; tax status could not be determined."
)
NO_MATCH_NOTE = (
    "No tax rules matched this business profile; tax status could not be "
    "determined. Complete the business profile and re-run the evaluation."
)


@dataclass(frozen=True)
class MatchedRule:
    key: str
    type: RuleType
    priority: int
    explanation: str


@dataclass
class FieldExplanation:
    """Which rule(s) produced an outcome field, in application order."""

    rule_keys: list[str] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)

    @property
    def rule_key(self) -> str:
        """The rule applied last (the winner for override fields)."""
        return self.rule_keys[-1]

    def to_dict(self) -> dict[str, Any]:
        return {"ruleKeys": list(self.rule_keys), "explanations": list(self.texts)}


@dataclass
class Outcome:
    """Merged result of all matching rules."""

    cit_status: str = UNKNOWN
    vat_status: str = UNKNOWN
    wht_status: str = UNKNOWN
    compliance_notes: list[str] = field(default_factory=list)
    thresholds: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    explanations: dict[str, FieldExplanation] = field(default_factory=dict)
    matched_rules: list[MatchedRule] = field(default_factory=list)

    @property
    def is_unknown(self) -> bool:
        return not self.matched_rules

    def get(self, name: str, default: Any = None) -> Any:
        """Look up an output field by its JSON name (e.g. ``citStatus``)."""
        return self.to_dict().get(name, default)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "citStatus": self.cit_status,
            "vatStatus": self.vat_status,
            "whtStatus": self.wht_status,
            "complianceNote": list(self.compliance_notes),
            "thresholds": dict(self.thresholds),
        }
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data


# -----------------------------------------------------------------------
# Merge functions
# -----------------------------------------------------------------------


def _override_status(current: Any, incoming: Any) -> Any:
    if not isinstance(incoming, str) or not incoming:
        return current
    return incoming


def _override(current: Any, incoming: Any) -> Any:
    return incoming


def _concat(current: Any, incoming: Any) -> list[Any]:
    merged = list(current or [])
    values = incoming if isinstance(incoming, (list, tuple)) else [incoming]
    merged.extend(v for v in values if v is not None and v != "")
    return merged


def _merge_mapping(current: Any, incoming: Any) -> Any:
    if not isinstance(incoming, Mapping):
        return current
    merged = dict(current or {})
    merged.update(incoming)
    return merged


Merger = Callable[[Any, Any], Any]

# JSON field name -> (Outcome attribute, merge function, accumulates)
_FIELDS: dict[str, tuple[str, Merger, bool]] = {
    "citStatus": ("cit_status", _override_status, False),
    "vatStatus": ("vat_status", _override_status, False),
    "whtStatus": ("wht_status", _override_status, False),
    "complianceNote": ("compliance_notes", _concat, True),
    "complianceNotes": ("compliance_notes", _concat, True),
    "thresholds": ("thresholds", _merge_mapping, True),
}

# Explanations for aliased fields are filed under one JSON name.
_EXPLANATION_KEY = {"complianceNotes": "complianceNote"}


def _apply(outcome: Outcome, rule: Rule) -> None:
    for name, incoming in rule.outcome.items():
        entry = _FIELDS.get(name)
        if entry is not None:
            attr, merge, accumulates = entry
            current = getattr(outcome, attr)
            merged = merge(current, incoming)
            if merged is current:
                # Empty or wrongly typed value: the field keeps its state
                if incoming is not None and incoming != "":
                    logger.warning(
                        "Rule %s has an invalid %s value %r; ignoring it",
                        rule.key,
                        name,
                        incoming,
                    )
                continue
            setattr(outcome, attr, merged)
        else:
            current = outcome.extra.get(name)
            accumulates = isinstance(incoming, (list, tuple)) or isinstance(
                current, list
            )
            merge = _concat if accumulates else _override
            outcome.extra[name] = merge(current, incoming)

        key = _EXPLANATION_KEY.get(name, name)
        explanation = outcome.explanations.get(key)
        if explanation is None or not accumulates:
            explanation = FieldExplanation()
            outcome.explanations[key] = explanation
        explanation.rule_keys.append(rule.key)
        explanation.texts.append(rule.explanation)


# -----------------------------------------------------------------------
# Resolution
# -----------------------------------------------------------------------


def unknown_outcome(note: str = NO_MATCH_NOTE) -> Outcome:
    """The baseline outcome returned when no rule applies."""
    return Outcome(compliance_notes=[note])


def resolve(
    rule_set: Optional[RuleSet],
    profile: Mapping[str, Any],
    rule_type: Union[RuleType, str, None] = None,
) -> Outcome:
    """
    Resolve ``profile`` against ``rule_set`` into a single outcome.

    ``rule_type`` restricts resolution to one rule type. ``rule_set=None``
    (no active set) yields the unknown outcome rather than an error.
    """
    if rule_set is None:
        return unknown_outcome(NO_RULE_SET_NOTE)

    wanted = RuleType(rule_type) if rule_type is not None else None
    candidates = [r for r in rule_set.rules if wanted is None or r.type is wanted]
    ordered = sorted(enumerate(candidates), key=lambda p: (p[1].priority, p[0]))

    outcome = Outcome()
    for _, rule in ordered:
        if not evaluate(rule.conditions, profile):
            continue
        logger.debug("Rule %s matched (priority %d)", rule.key, rule.priority)
        _apply(outcome, rule)
        outcome.matched_rules.append(
            MatchedRule(
                key=rule.key,
                type=rule.type,
                priority=rule.priority,
                explanation=rule.explanation,
            )
        )

    if not outcome.matched_rules:
        return unknown_outcome()
    return outcome
