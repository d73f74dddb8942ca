"""
Compliance Intelligence Engine
==============================

Rules-driven tax compliance for small businesses: versioned tax rule
sets, deadline scheduling, obligation tracking, tax-safety scoring and
data-quality review scans.

Modules:
    conditions      - Condition trees over business-profile fields
    rulesets        - Versioned rule sets and the rule set repository
    resolver        - Priority-ordered rule resolution into one outcome
    scheduler       - Deadline template expansion for a tax year
    obligations     - Obligation status classification and filing ledger
    records         - Transactions and compliance tasks
    scoring         - Tax-safety score with reason codes
    review          - Review issue detection and reconciliation
    engine          - ComplianceEngine facade over the collaborators
    store           - In-memory record store
    defaults        - Bundled Nigerian SME rule set
    report_generator- Compliance reporting with CSV/JSON export
    cli             - Command-line interface
"""

__version__ = "1.0.0"

from compliance_engine.engine import ComplianceEngine, Evaluation
from compliance_engine.report_generator import ReportGenerator
from compliance_engine.rulesets import InMemoryRuleSetRepository, RuleSet
from compliance_engine.store import InMemoryRecordStore

__all__ = [
    "ComplianceEngine",
    "Evaluation",
    "InMemoryRecordStore",
    "InMemoryRuleSetRepository",
    "ReportGenerator",
    "RuleSet",
]
