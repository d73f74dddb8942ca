"""
Default Nigerian tax rule set.

Baseline CIT/VAT/WHT status rules and the recurring VAT, WHT and CIT
filing deadlines for small businesses. Shipped as data in the same JSON
shape the administrative surface accepts, so it can be exported, edited
as a new version and re-imported.

Thresholds follow the small-company CIT exemption (turnover up to
NGN 25m) and the VAT registration threshold (turnover up to NGN 25m).
"""

from __future__ import annotations

from typing import Any

from compliance_engine.rulesets import RuleSet

SMALL_COMPANY_TURNOVER_NGN = 25_000_000

DEFAULT_RULE_SET: dict[str, Any] = {
    "version": "ng-2025.1",
    "name": "Nigeria SME baseline",
    "status": "draft",
    "effectiveFrom": "2025-01-01",
    "description": "CIT, VAT and WHT baseline for Nigerian small businesses.",
    "rules": [
        # -- CIT ----------------------------------------------------------
        {
            "key": "cit_default_liable",
            "type": "eligibility",
            "priority": 0,
            "conditionsJson": {},
            "outcomeJson": {"citStatus": "liable"},
            "explanation": "CIT obligations may apply. Consult with a tax advisor.",
        },
        {
            "key": "cit_exempt",
            "type": "eligibility",
            "priority": 20,
            "conditionsJson": {
                "or": [
                    {
                        "field": "annualTurnoverNGN",
                        "op": "lte",
                        "value": SMALL_COMPANY_TURNOVER_NGN,
                    },
                    {
                        "field": "turnoverBand",
                        "op": "in",
                        "value": ["micro", "small"],
                    },
                ]
            },
            "outcomeJson": {
                "citStatus": "exempt",
                "complianceNote": (
                    "Small companies are exempt from CIT but must still "
                    "file an annual return."
                ),
            },
            "explanation": (
                "Your business falls under the small business exemption for CIT."
            ),
        },
        # -- VAT ----------------------------------------------------------
        {
            "key": "vat_default_may_require",
            "type": "eligibility",
            "priority": 0,
            "conditionsJson": {},
            "outcomeJson": {"vatStatus": "may_require"},
            "explanation": (
                "VAT registration may be required based on turnover. "
                "Monitor your revenue."
            ),
        },
        {
            "key": "vat_below_threshold",
            "type": "eligibility",
            "priority": 10,
            "conditionsJson": {
                "or": [
                    {
                        "field": "annualTurnoverNGN",
                        "op": "lte",
                        "value": SMALL_COMPANY_TURNOVER_NGN,
                    },
                    {"field": "turnoverBand", "op": "eq", "value": "micro"},
                ]
            },
            "outcomeJson": {"vatStatus": "not_required"},
            "explanation": "Your business is below the VAT registration threshold.",
        },
        {
            "key": "vat_registered",
            "type": "eligibility",
            "priority": 30,
            "conditionsJson": {"field": "vatRegistered", "op": "eq", "value": True},
            "outcomeJson": {
                "vatStatus": "registered",
                "complianceNote": (
                    "File monthly VAT returns within 21 days of month end."
                ),
            },
            "explanation": (
                "Your business is VAT registered and must file VAT returns."
            ),
        },
        # -- WHT ----------------------------------------------------------
        {
            "key": "wht_informational",
            "type": "eligibility",
            "priority": 0,
            "conditionsJson": {},
            "outcomeJson": {"whtStatus": "informational"},
            "explanation": (
                "Withholding Tax obligations depend on transaction types "
                "and counterparties."
            ),
        },
        {
            "key": "wht_agent",
            "type": "obligation",
            "priority": 10,
            "conditionsJson": {"field": "paysContractors", "op": "eq", "value": True},
            "outcomeJson": {"whtStatus": "agent"},
            "explanation": (
                "You pay contractors, so you must deduct and remit WHT."
            ),
        },
    ],
    "deadlineTemplates": [
        {
            "key": "vat_monthly",
            "frequency": "monthly",
            "offsetDays": 21,
            "taxType": "VAT",
            "title": "VAT return",
            "description": "Monthly VAT return, due 21 days after month end.",
            "appliesWhenJson": {"field": "vatRegistered", "op": "eq", "value": True},
        },
        {
            "key": "wht_monthly",
            "frequency": "monthly",
            "offsetDays": 21,
            "taxType": "WHT",
            "title": "WHT remittance",
            "description": "Remit withholding tax deducted in the month.",
            "appliesWhenJson": {"field": "paysContractors", "op": "eq", "value": True},
        },
        {
            "key": "cit_quarterly",
            "frequency": "quarterly",
            "offsetDays": 30,
            "taxType": "CIT",
            "title": "CIT quarterly filing",
            "description": "Quarterly CIT filing, due 30 days after quarter end.",
        },
    ],
}


def load_default_rule_set() -> RuleSet:
    """Build the bundled rule set (as a draft, ready to activate)."""
    return RuleSet.from_dict(DEFAULT_RULE_SET, strict=True)
