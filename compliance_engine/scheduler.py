"""
Deadline scheduler.

Expands the deadline templates of a rule set into concrete due dates for
one tax year:

- monthly   -> 12 instances, one per calendar month
- quarterly -> 4 instances, one per calendar quarter
- annual    -> 1 instance covering the calendar year
- one_time  -> 1 instance at the template's literal date

Expansion is a pure function of (template, profile, tax year): the same
inputs always produce the same list in the same order.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Mapping, Optional

from compliance_engine.conditions import evaluate
from compliance_engine.rulesets import DeadlineTemplate, Frequency, RuleSet

logger = logging.getLogger(__name__)

_QUARTER_END_MONTHS = (3, 6, 9, 12)


@dataclass(frozen=True)
class DeadlineInstance:
    """One dated occurrence of a deadline template."""

    key: str
    template_key: str
    tax_type: str
    title: str
    description: str
    frequency: Frequency
    period_start: date
    period_end: date
    due_date: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "templateKey": self.template_key,
            "taxType": self.tax_type,
            "title": self.title,
            "description": self.description,
            "frequency": self.frequency.value,
            "periodStart": self.period_start.isoformat(),
            "periodEnd": self.period_end.isoformat(),
            "dueDate": self.due_date.isoformat(),
        }


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _clamped(year: int, month: int, day: int) -> date:
    """``date(year, month, day)`` with the day clamped to the month's end."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(day, last)))


def _shift(base: date, offset_days: Optional[int]) -> date:
    return base + timedelta(days=offset_days) if offset_days else base


def _due_month(template: DeadlineTemplate) -> Optional[int]:
    """Calendar month of an annual/one_time template (legacy 0 = January)."""
    if template.due_month is None:
        return None
    return 1 if template.due_month == 0 else template.due_month


def _instance(
    template: DeadlineTemplate,
    label: str,
    period_start: date,
    period_end: date,
    due_date: date,
) -> DeadlineInstance:
    return DeadlineInstance(
        key=f"{template.key}:{label}",
        template_key=template.key,
        tax_type=template.effective_tax_type,
        title=template.title,
        description=template.description,
        frequency=template.frequency,
        period_start=period_start,
        period_end=period_end,
        due_date=due_date,
    )


def _expand_monthly(template: DeadlineTemplate, year: int) -> list[DeadlineInstance]:
    instances = []
    for month in range(1, 13):
        start = date(year, month, 1)
        end = _month_end(year, month)
        if template.due_day_of_month is not None:
            base = _clamped(year, month, template.due_day_of_month)
        else:
            base = end
        instances.append(
            _instance(
                template,
                f"{year}-{month:02d}",
                start,
                end,
                _shift(base, template.offset_days),
            )
        )
    return instances


def _expand_quarterly(template: DeadlineTemplate, year: int) -> list[DeadlineInstance]:
    instances = []
    for quarter, end_month in enumerate(_QUARTER_END_MONTHS, start=1):
        start = date(year, end_month - 2, 1)
        end = _month_end(year, end_month)
        if template.due_day_of_month is not None:
            base = _clamped(year, end_month, template.due_day_of_month)
        else:
            base = end
        instances.append(
            _instance(
                template,
                f"{year}-Q{quarter}",
                start,
                end,
                _shift(base, template.offset_days),
            )
        )
    return instances


def _expand_dated(template: DeadlineTemplate, year: int) -> list[DeadlineInstance]:
    """annual and one_time: a single instance in ``year``."""
    month = _due_month(template)
    if month is not None and template.due_day is not None:
        base = _clamped(year, month, template.due_day)
    elif template.offset_days is not None:
        base = date(year, 12, 31)
    else:
        logger.warning(
            "Deadline template %s has no dueMonth/dueDay; skipping", template.key
        )
        return []
    return [
        _instance(
            template,
            str(year),
            date(year, 1, 1),
            date(year, 12, 31),
            _shift(base, template.offset_days),
        )
    ]


def _has_valid_shape(template: DeadlineTemplate) -> bool:
    day_of_month = template.due_day_of_month
    if day_of_month is not None and not 1 <= day_of_month <= 31:
        return False
    if template.due_month is not None and not 0 <= template.due_month <= 12:
        return False
    if template.due_day is not None and not 1 <= template.due_day <= 31:
        return False
    return True


def expand_template(
    template: DeadlineTemplate,
    profile: Mapping[str, Any],
    tax_year: int,
) -> list[DeadlineInstance]:
    """Expand a single template; empty if it does not apply to ``profile``."""
    if not evaluate(template.applies_when, profile):
        logger.debug("Deadline template %s does not apply", template.key)
        return []
    if not _has_valid_shape(template):
        logger.warning("Deadline template %s has an invalid date shape", template.key)
        return []

    if template.frequency is Frequency.MONTHLY:
        return _expand_monthly(template, tax_year)
    if template.frequency is Frequency.QUARTERLY:
        return _expand_quarterly(template, tax_year)
    if template.frequency is Frequency.ONE_TIME and template.due_year is not None:
        # Literal date: identical for every tax year it is requested for.
        return _expand_dated(template, template.due_year)
    return _expand_dated(template, tax_year)


def expand(
    rule_set: Optional[RuleSet],
    profile: Mapping[str, Any],
    tax_year: int,
) -> list[DeadlineInstance]:
    """
    Expand every applicable template of ``rule_set`` for ``tax_year``.

    Returns instances ordered by due date, then template key.
    """
    if rule_set is None:
        return []

    instances: list[DeadlineInstance] = []
    for template in rule_set.deadline_templates:
        instances.extend(expand_template(template, profile, tax_year))
    return sorted(instances, key=lambda i: (i.due_date, i.template_key, i.key))
