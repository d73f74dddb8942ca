"""
Compliance report generator.

Produces:
- Evaluation reports (tax statuses, explanations, obligations)
- Tax-safety score reports with deductions and fix hints
- Review issue reports
- CSV and JSON export
"""

from __future__ import annotations

import csv
import io
import json
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

from compliance_engine.engine import Evaluation
from compliance_engine.obligations import ObligationStatus
from compliance_engine.review import IssueStatus, ReviewIssue, Severity
from compliance_engine.scoring import TaxSafetyScore


class _ReportEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, date and Enum objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, date):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


def _csv_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, cls=_ReportEncoder)
    return value


class ReportGenerator:
    """
    Generates formatted compliance reports with export capabilities.

    All reports can be returned as structured dicts, rendered to
    console-friendly text, or exported to CSV/JSON files.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")
        self.output_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Evaluation report
    # ------------------------------------------------------------------

    def evaluation_report(self, evaluation: Evaluation) -> dict[str, Any]:
        """Tax statuses with their explanations, plus the obligation list."""
        outcome = evaluation.outcome
        by_status: dict[str, int] = {s.value: 0 for s in ObligationStatus}
        for o in evaluation.obligations:
            by_status[o.status.value] += 1

        return {
            "report_type": "tax_evaluation",
            "generated_date": date.today().isoformat(),
            "period": str(evaluation.tax_year),
            "business_id": evaluation.business_id,
            "rule_set_version": evaluation.rule_set_version,
            "summary": {
                "cit_status": outcome.cit_status,
                "vat_status": outcome.vat_status,
                "wht_status": outcome.wht_status,
                "rules_matched": len(outcome.matched_rules),
                "total_obligations": len(evaluation.obligations),
                **{f"{k}_obligations": v for k, v in by_status.items()},
            },
            "explanations": [
                {
                    "field": name,
                    "rule_keys": list(expl.rule_keys),
                    "explanation": " ".join(t for t in expl.texts if t),
                }
                for name, expl in evaluation.explanations.items()
            ],
            "compliance_notes": list(outcome.compliance_notes),
            "thresholds": dict(outcome.thresholds),
            "obligations": [
                {
                    "tax_type": o.tax_type,
                    "title": o.title,
                    "period": f"{o.period_start.isoformat()} to {o.period_end.isoformat()}",
                    "due_date": o.due_date.isoformat(),
                    "status": o.status.value,
                    "days_until_due": o.days_until_due,
                }
                for o in evaluation.obligations
            ],
        }

    # ------------------------------------------------------------------
    # Tax-safety score report
    # ------------------------------------------------------------------

    def score_report(self, score: TaxSafetyScore) -> dict[str, Any]:
        """Score, band and readiness with one row per deduction."""
        b = score.breakdown
        return {
            "report_type": "tax_safety_score",
            "generated_date": date.today().isoformat(),
            "period": str(score.tax_year),
            "business_id": score.business_id,
            "summary": {
                "score": score.score,
                "band": score.band.value,
                "readiness": score.readiness.label,
                "months_with_transactions": f"{b.months_with_transactions}/{b.months_elapsed}",
                "records_coverage_rate": b.records_coverage_ratio,
                "expenses_with_evidence": f"{b.expense_with_evidence_count}/{b.expense_count}",
                "receipt_coverage_rate": b.receipt_coverage_ratio,
                "overdue_obligation": b.has_overdue_obligation,
                "days_until_next_deadline": b.days_until_next_deadline,
            },
            "readiness_message": score.readiness.message,
            "deductions": [
                {
                    "code": d.code.value,
                    "points": d.points,
                    "how_to_fix": d.how_to_fix,
                }
                for d in score.deductions
            ],
        }

    # ------------------------------------------------------------------
    # Review issue report
    # ------------------------------------------------------------------

    def review_report(
        self,
        issues: Iterable[ReviewIssue],
        business_id: str = "",
        tax_year: Optional[int] = None,
    ) -> dict[str, Any]:
        """Generate a review issue report, open issues first."""
        issues = list(issues)
        open_issues = [i for i in issues if i.status is IssueStatus.OPEN]
        closed = [i for i in issues if i.status is not IssueStatus.OPEN]

        def _issue_dict(i: ReviewIssue) -> dict[str, Any]:
            return {
                "id": i.id,
                "type": i.type.value,
                "severity": i.severity.value,
                "status": i.status.value,
                "title": i.title,
                "description": i.description,
                "affected": len(i.entity_ids),
                "entity_ids": list(i.entity_ids),
            }

        return {
            "report_type": "review_issues",
            "generated_date": date.today().isoformat(),
            "period": str(tax_year) if tax_year is not None else "",
            "business_id": business_id,
            "summary": {
                "open_issues": len(open_issues),
                "high_severity": sum(1 for i in open_issues if i.severity is Severity.HIGH),
                "dismissed": sum(1 for i in issues if i.status is IssueStatus.DISMISSED),
                "resolved": sum(1 for i in issues if i.status is IssueStatus.RESOLVED),
            },
            "issues": [_issue_dict(i) for i in open_issues + closed],
        }

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_json(
        self,
        report: Any,
        filename: Optional[str] = None,
    ) -> str:
        """Export a report to JSON. Returns the JSON string."""
        json_str = json.dumps(report, indent=2, cls=_ReportEncoder)

        if filename:
            path = self.output_dir / filename
            path.write_text(json_str, encoding="utf-8")

        return json_str

    def to_csv(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
        section: str = "obligations",
    ) -> str:
        """
        Export a report section to CSV. Returns the CSV string.

        The section parameter specifies which list/dict in the report
        to export as rows.
        """
        data = report.get(section, [])
        if not data:
            return ""

        output = io.StringIO()

        if isinstance(data, list) and isinstance(data[0], dict):
            writer = csv.DictWriter(output, fieldnames=list(data[0].keys()))
            writer.writeheader()
            for row in data:
                writer.writerow({k: _csv_value(v) for k, v in row.items()})
        elif isinstance(data, dict):
            writer = csv.writer(output)
            writer.writerow(["key", "value"])
            for k, v in data.items():
                writer.writerow([k, _csv_value(v)])

        csv_str = output.getvalue()

        if filename:
            path = self.output_dir / filename
            path.write_text(csv_str, encoding="utf-8")

        return csv_str

    # ------------------------------------------------------------------
    # Console-formatted text output
    # ------------------------------------------------------------------

    def format_text(self, report: dict[str, Any]) -> str:
        """Format a report as human-readable text for console output."""
        lines: list[str] = []
        report_type = report.get("report_type", "report").replace("_", " ").title()
        lines.append(f"{'=' * 60}")
        lines.append(f"  {report_type}")
        lines.append(f"  Generated: {report.get('generated_date', '')}")
        if report.get("business_id"):
            lines.append(f"  Business: {report['business_id']}")
        if report.get("period"):
            lines.append(f"  Tax year: {report['period']}")
        lines.append(f"{'=' * 60}")
        lines.append("")

        summary = report.get("summary", {})
        if summary:
            lines.append("SUMMARY")
            lines.append("-" * 40)
            for key, value in summary.items():
                label = key.replace("_", " ").title()
                if isinstance(value, float) and "rate" in key:
                    lines.append(f"  {label}: {value:.0%}")
                elif value is None:
                    lines.append(f"  {label}: -")
                else:
                    lines.append(f"  {label}: {value}")
            lines.append("")

        explanations = report.get("explanations", [])
        if explanations:
            lines.append("WHY")
            lines.append("-" * 40)
            for e in explanations:
                lines.append(f"  {e['field']}: {', '.join(e['rule_keys'])}")
                if e.get("explanation"):
                    lines.append(f"          {e['explanation']}")
            lines.append("")

        obligations = [
            o for o in report.get("obligations", []) if o["status"] in ("overdue", "due")
        ]
        if obligations:
            lines.append("ACTION NEEDED")
            lines.append("-" * 40)
            for o in obligations:
                lines.append(
                    f"  [{o['status'].upper()}] {o['tax_type']}: {o['period']} | "
                    f"Due: {o['due_date']}"
                )
            lines.append("")

        deductions = report.get("deductions", [])
        if deductions:
            lines.append("DEDUCTIONS")
            lines.append("-" * 40)
            for d in deductions:
                lines.append(f"  -{d['points']:>3} {d['code']}")
                lines.append(f"          Fix: {d['how_to_fix']}")
            lines.append("")

        issues = [i for i in report.get("issues", []) if i["status"] == "open"]
        if issues:
            lines.append("OPEN ISSUES")
            lines.append("-" * 40)
            for i in issues:
                lines.append(
                    f"  [{i['severity'].upper()}] {i['title']} ({i['affected']} affected)"
                )
            lines.append("")

        notes = report.get("compliance_notes", [])
        if notes:
            lines.append("NOTES")
            lines.append("-" * 40)
            for n in notes:
                lines.append(f"  * {n}")
            lines.append("")

        return "\n".join(lines)
