"""In-memory record store implementing the engine's reader interfaces."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from compliance_engine.obligations import FilingLedger
from compliance_engine.records import ComplianceTask, Transaction, in_tax_year
from compliance_engine.review import ReviewIssue


class InMemoryRecordStore:
    """
    Profiles, transactions, tasks, filings, evaluations and issues for a
    set of businesses. Used by the CLI and tests in place of a database.
    """

    def __init__(self) -> None:
        self._profiles: dict[str, dict[str, Any]] = {}
        self._transactions: dict[str, list[Transaction]] = {}
        self._tasks: dict[str, list[ComplianceTask]] = {}
        self._filings: dict[str, FilingLedger] = {}
        self._evaluated: set[tuple[str, int]] = set()
        self._issues: dict[tuple[str, int], list[ReviewIssue]] = {}

    # -- writes -------------------------------------------------------

    def put_profile(self, business_id: str, profile: Mapping[str, Any]) -> None:
        self._profiles[business_id] = dict(profile)

    def add_transactions(
        self, business_id: str, transactions: Iterable[Transaction]
    ) -> None:
        self._transactions.setdefault(business_id, []).extend(transactions)

    def add_tasks(self, business_id: str, tasks: Iterable[ComplianceTask]) -> None:
        self._tasks.setdefault(business_id, []).extend(tasks)

    def ledger(self, business_id: str) -> FilingLedger:
        return self._filings.setdefault(business_id, FilingLedger())

    def set_ledger(self, business_id: str, ledger: FilingLedger) -> None:
        self._filings[business_id] = ledger

    def record_evaluation(self, business_id: str, tax_year: int) -> None:
        self._evaluated.add((business_id, tax_year))

    def save_issues(
        self, business_id: str, tax_year: int, issues: Iterable[ReviewIssue]
    ) -> None:
        self._issues[(business_id, tax_year)] = list(issues)

    # -- reader interfaces --------------------------------------------

    def get_profile(self, business_id: str) -> Mapping[str, Any]:
        return dict(self._profiles.get(business_id, {}))

    def list_transactions(self, business_id: str, tax_year: int) -> list[Transaction]:
        return in_tax_year(self._transactions.get(business_id, []), tax_year)

    def list_tasks(self, business_id: str, tax_year: int) -> list[ComplianceTask]:
        return list(self._tasks.get(business_id, []))

    def fulfillment_for(self, business_id: str) -> FilingLedger:
        return self.ledger(business_id)

    def has_evaluation(self, business_id: str, tax_year: int) -> bool:
        return (business_id, tax_year) in self._evaluated

    def list_issues(self, business_id: str, tax_year: int) -> list[ReviewIssue]:
        return list(self._issues.get((business_id, tax_year), []))

    def business_ids(self) -> list[str]:
        ids = set(self._profiles) | set(self._transactions)
        return sorted(ids)
