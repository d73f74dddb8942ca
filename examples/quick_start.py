#!/usr/bin/env python3
"""
Quick Start Example
===================

Demonstrates basic usage of the ComplianceEngine: activate the bundled
rule set, evaluate a small VAT-registered business and print its tax
statuses, the rules behind them and its next obligations.

Usage:
    python examples/quick_start.py
"""

from datetime import date

from compliance_engine.defaults import load_default_rule_set
from compliance_engine.engine import ComplianceEngine
from compliance_engine.rulesets import InMemoryRuleSetRepository


def main() -> None:
    # Register and activate the bundled rule set
    repo = InMemoryRuleSetRepository([load_default_rule_set()])
    repo.activate("ng-2025.1")
    engine = ComplianceEngine(rule_sets=repo)

    profile = {
        "annualTurnoverNGN": 18_000_000,
        "vatRegistered": True,
        "paysContractors": False,
    }

    evaluation = engine.evaluate(profile, tax_year=date.today().year)
    outcome = evaluation.outcome

    print(f"Rule set:  {evaluation.rule_set_version}")
    print(f"CIT:       {outcome.cit_status}")
    print(f"VAT:       {outcome.vat_status}")
    print(f"WHT:       {outcome.wht_status}")

    print("\n--- Why ---")
    for field_name, explanation in evaluation.explanations.items():
        print(f"{field_name:<16} {', '.join(explanation.rule_keys)}")

    print("\n--- Open obligations ---")
    for obligation in [o for o in evaluation.obligations if o.is_open][:5]:
        print(
            f"{obligation.tax_type:<4} {obligation.period_start} to "
            f"{obligation.period_end}  due {obligation.due_date}  "
            f"[{obligation.status.value}]"
        )


if __name__ == "__main__":
    main()
