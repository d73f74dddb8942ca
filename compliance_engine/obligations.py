"""
Obligation status classification.

Turns scheduled deadline instances into status-tagged obligations.
Status is derived, never stored: it is a pure function of the due date,
the reference date and whether the period has been filed.

Precedence (first match wins):
    fulfilled  the period is recorded as filed, whatever the date
    overdue    due date is before today
    due        due within the due-soon window (30 days by default)
    upcoming   everything else
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Protocol, Union

from compliance_engine.config import EngineSettings, settings as default_settings
from compliance_engine.scheduler import DeadlineInstance

_OBLIGATION_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "compliance-engine/obligation")


class ObligationStatus(Enum):
    UPCOMING = "upcoming"
    DUE = "due"
    OVERDUE = "overdue"
    FULFILLED = "fulfilled"


@dataclass(frozen=True)
class Obligation:
    """A dated, status-tagged tax duty for one reporting period."""

    id: str
    business_id: str
    tax_type: str
    template_key: str
    title: str
    period_start: date
    period_end: date
    due_date: date
    status: ObligationStatus
    days_until_due: int

    @property
    def is_open(self) -> bool:
        return self.status is not ObligationStatus.FULFILLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "businessId": self.business_id,
            "taxType": self.tax_type,
            "templateKey": self.template_key,
            "title": self.title,
            "periodStart": self.period_start.isoformat(),
            "periodEnd": self.period_end.isoformat(),
            "dueDate": self.due_date.isoformat(),
            "status": self.status.value,
            "daysUntilDue": self.days_until_due,
        }


class FulfillmentLookup(Protocol):
    def is_fulfilled(self, instance: DeadlineInstance) -> bool: ...


class FilingLedger:
    """Record of filed periods, keyed by tax type and period."""

    def __init__(self) -> None:
        self._filed_periods: dict[str, set[str]] = {}  # tax type -> period keys

    @staticmethod
    def _period_key(period_start: date, period_end: date) -> str:
        return f"{period_start.isoformat()}_{period_end.isoformat()}"

    def mark_filed(self, tax_type: str, period_start: date, period_end: date) -> None:
        """Record that a return has been filed for a given period."""
        key = self._period_key(period_start, period_end)
        self._filed_periods.setdefault(tax_type.upper(), set()).add(key)

    def is_filed(self, tax_type: str, period_start: date, period_end: date) -> bool:
        key = self._period_key(period_start, period_end)
        return key in self._filed_periods.get(tax_type.upper(), set())

    def is_fulfilled(self, instance: DeadlineInstance) -> bool:
        return self.is_filed(
            instance.tax_type, instance.period_start, instance.period_end
        )

    def __len__(self) -> int:
        return sum(len(periods) for periods in self._filed_periods.values())


Fulfillment = Union[FulfillmentLookup, Callable[[DeadlineInstance], bool], None]


def _as_date(now: Union[date, datetime, None]) -> date:
    if now is None:
        return date.today()
    if isinstance(now, datetime):
        return now.date()
    return now


def _is_fulfilled(fulfillment: Fulfillment, instance: DeadlineInstance) -> bool:
    if fulfillment is None:
        return False
    if hasattr(fulfillment, "is_fulfilled"):
        return bool(fulfillment.is_fulfilled(instance))
    return bool(fulfillment(instance))


def classify_status(
    due_date: date,
    today: date,
    fulfilled: bool,
    due_soon_days: int = 30,
) -> ObligationStatus:
    if fulfilled:
        return ObligationStatus.FULFILLED
    if due_date < today:
        return ObligationStatus.OVERDUE
    if (due_date - today).days <= due_soon_days:
        return ObligationStatus.DUE
    return ObligationStatus.UPCOMING


def obligation_id(business_id: str, instance_key: str) -> str:
    """Stable id, so regenerating a tax year yields the same obligations."""
    return str(uuid.uuid5(_OBLIGATION_NAMESPACE, f"{business_id}:{instance_key}"))


def classify(
    instances: Iterable[DeadlineInstance],
    fulfillment: Fulfillment = None,
    now: Union[date, datetime, None] = None,
    business_id: str = "",
    settings: Optional[EngineSettings] = None,
) -> list[Obligation]:
    """Classify each deadline instance into an obligation, preserving order."""
    config = settings or default_settings
    today = _as_date(now)
    obligations = []
    for instance in instances:
        status = classify_status(
            instance.due_date,
            today,
            _is_fulfilled(fulfillment, instance),
            config.due_soon_days,
        )
        obligations.append(
            Obligation(
                id=obligation_id(business_id, instance.key),
                business_id=business_id,
                tax_type=instance.tax_type,
                template_key=instance.template_key,
                title=instance.title,
                period_start=instance.period_start,
                period_end=instance.period_end,
                due_date=instance.due_date,
                status=status,
                days_until_due=(instance.due_date - today).days,
            )
        )
    return obligations
