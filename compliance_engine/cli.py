"""
Command-line interface for the Compliance Intelligence Engine.

Provides subcommands for tax evaluation, tax-safety scoring, review
issue scans and rule set inspection.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Callable, NoReturn, Optional, TypeVar

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from compliance_engine.config import settings
from compliance_engine.defaults import load_default_rule_set
from compliance_engine.engine import ComplianceEngine
from compliance_engine.exceptions import ComplianceEngineError
from compliance_engine.logging_config import setup_logging
from compliance_engine.obligations import FilingLedger
from compliance_engine.records import ComplianceTask, Transaction
from compliance_engine.report_generator import ReportGenerator
from compliance_engine.review import IssueStatus, ReviewIssue
from compliance_engine.rulesets import InMemoryRuleSetRepository, RuleSet, RuleSetStatus
from compliance_engine.store import InMemoryRecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

console = Console()

CLI_BUSINESS_ID = "cli"

_STATUS_COLORS = {
    "overdue": "red",
    "due": "yellow",
    "upcoming": "blue",
    "fulfilled": "green",
}

_SEVERITY_COLORS = {"high": "red", "medium": "yellow", "low": "blue"}


def _require_file(path: str) -> Path:
    file_path = Path(path)
    if not file_path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        sys.exit(1)
    return file_path


def _invalid_input(path: str, error: Any) -> NoReturn:
    console.print(f"[red]Invalid input file {path}: {error}[/red]")
    sys.exit(1)


def _load_json(path: str) -> Any:
    with open(_require_file(path), encoding="utf-8") as f:
        try:
            return json.load(f)
        except ValueError as e:
            _invalid_input(path, e)


def _load_profile(path: str) -> dict[str, Any]:
    profile = _load_json(path)
    if not isinstance(profile, dict):
        _invalid_input(path, "expected a JSON object")
    return profile


def _load_objects(path: str, parse: Callable[[Any], T]) -> list[T]:
    """Parse a JSON array file, one ``parse`` call per entry."""
    data = _load_json(path)
    if not isinstance(data, list):
        _invalid_input(path, "expected a JSON array")
    try:
        return [parse(item) for item in data]
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        _invalid_input(path, e)


def _load_rule_set(path: Optional[str], strict: bool = False) -> RuleSet:
    if not path:
        return load_default_rule_set()
    data = _load_json(path)
    try:
        return RuleSet.from_dict(data, strict=strict)
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        _invalid_input(path, e)


def _rule_set_repository(path: Optional[str]) -> InMemoryRuleSetRepository:
    """A repository holding the given (or bundled) rule set as the active one."""
    rule_set = replace(_load_rule_set(path), status=RuleSetStatus.DRAFT)
    repo = InMemoryRuleSetRepository([rule_set])
    repo.activate(rule_set.id)
    return repo


def _load_transactions_csv(path: str) -> list[Transaction]:
    """
    Load transactions from a CSV file.

    Expected columns: transaction_id, transaction_date, amount, kind,
                      description, category_id, classification,
                      document_ids (";"-separated), provider_txn_id
    """
    transactions: list[Transaction] = []
    with open(_require_file(path), newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for i, row in enumerate(reader):
            row.setdefault("transaction_id", str(i + 1))
            try:
                transactions.append(Transaction.from_dict(row))
            except (KeyError, ValueError, ArithmeticError) as e:
                console.print(f"[yellow]Skipping row {i + 1}: {e}[/yellow]")
    return transactions


def _load_filings_csv(path: Optional[str]) -> FilingLedger:
    """Filed periods; columns: tax_type, period_start, period_end."""
    ledger = FilingLedger()
    if not path:
        return ledger
    with open(_require_file(path), newline="", encoding="utf-8") as f:
        for i, row in enumerate(csv.DictReader(f)):
            try:
                ledger.mark_filed(
                    row["tax_type"].strip(),
                    date.fromisoformat(row["period_start"].strip()),
                    date.fromisoformat(row["period_end"].strip()),
                )
            except (KeyError, ValueError) as e:
                console.print(f"[yellow]Skipping filing row {i + 1}: {e}[/yellow]")
    return ledger


def _build_engine(args: argparse.Namespace, store: InMemoryRecordStore) -> ComplianceEngine:
    return ComplianceEngine(
        rule_sets=_rule_set_repository(getattr(args, "rules", None)),
        profiles=store,
        transactions=store,
        tasks=store,
        fulfillment=store,
        evaluations=store,
        issues=store,
        settings=settings,
    )


def _export(args: argparse.Namespace, build) -> None:
    """Write the report produced by ``build(generator)`` if --export-json is set."""
    if args.export_json:
        rg = ReportGenerator(args.output_dir or "reports")
        rg.to_json(build(rg), args.export_json)
        console.print(f"[green]Report exported to {args.export_json}[/green]")


# -----------------------------------------------------------------------
# Subcommand: evaluate
# -----------------------------------------------------------------------


def cmd_evaluate(args: argparse.Namespace) -> None:
    """Evaluate a business profile: tax statuses and obligations."""
    store = InMemoryRecordStore()
    store.put_profile(CLI_BUSINESS_ID, _load_profile(args.profile))
    store.set_ledger(CLI_BUSINESS_ID, _load_filings_csv(args.filed))
    engine = _build_engine(args, store)

    evaluation = engine.evaluate_business(CLI_BUSINESS_ID, args.year)
    outcome = evaluation.outcome

    lines = [
        f"[bold]CIT:[/bold] {outcome.cit_status}",
        f"[bold]VAT:[/bold] {outcome.vat_status}",
        f"[bold]WHT:[/bold] {outcome.wht_status}",
        f"[bold]Rule set:[/bold] {evaluation.rule_set_version}",
    ]
    for name, expl in evaluation.explanations.items():
        lines.append(f"[dim]{name} <- {', '.join(expl.rule_keys)}[/dim]")
    console.print(
        Panel(
            "\n".join(lines),
            title=f"Tax Evaluation {args.year}",
            border_style="blue",
        )
    )
    for note in outcome.compliance_notes:
        console.print(f"[cyan]Note: {note}[/cyan]")

    if evaluation.obligations:
        table = Table(title="Obligations", box=box.ROUNDED)
        table.add_column("Tax", style="bold")
        table.add_column("Period")
        table.add_column("Due", justify="right")
        table.add_column("Days", justify="right")
        table.add_column("Status")
        for o in evaluation.obligations:
            color = _STATUS_COLORS.get(o.status.value, "white")
            table.add_row(
                o.tax_type,
                f"{o.period_start} to {o.period_end}",
                o.due_date.isoformat(),
                str(o.days_until_due),
                f"[{color}]{o.status.value}[/{color}]",
            )
        console.print(table)

    _export(args, lambda rg: rg.evaluation_report(evaluation))


# -----------------------------------------------------------------------
# Subcommand: score
# -----------------------------------------------------------------------


def cmd_score(args: argparse.Namespace) -> None:
    """Compute the tax-safety score for a business and tax year."""
    store = InMemoryRecordStore()
    store.put_profile(CLI_BUSINESS_ID, _load_profile(args.profile))
    store.add_transactions(CLI_BUSINESS_ID, _load_transactions_csv(args.file))
    store.set_ledger(CLI_BUSINESS_ID, _load_filings_csv(args.filed))
    if args.eligibility_on_file:
        store.record_evaluation(CLI_BUSINESS_ID, args.year)
    engine = _build_engine(args, store)

    score = engine.score(CLI_BUSINESS_ID, args.year)
    readiness = score.readiness
    color = {"Green": "green", "Amber": "yellow"}.get(readiness.label, "red")

    console.print(
        Panel(
            f"[bold]Score:[/bold] {score.score}/100 ({score.band.value})\n"
            f"[bold]Readiness:[/bold] [{color}]{readiness.label}[/{color}] - "
            f"{readiness.message}",
            title=f"Tax Safety {args.year}",
            border_style=color,
        )
    )

    if score.deductions:
        table = Table(title="Deductions", box=box.ROUNDED)
        table.add_column("Reason", style="bold")
        table.add_column("Points", justify="right", style="red")
        table.add_column("How to fix")
        for d in score.deductions:
            table.add_row(d.code.value, f"-{d.points}", d.how_to_fix)
        console.print(table)

    _export(args, lambda rg: rg.score_report(score))


# -----------------------------------------------------------------------
# Subcommand: scan
# -----------------------------------------------------------------------


def cmd_scan(args: argparse.Namespace) -> None:
    """Scan transactions and tasks for review issues."""
    store = InMemoryRecordStore()
    store.add_transactions(CLI_BUSINESS_ID, _load_transactions_csv(args.file))
    if args.tasks:
        store.add_tasks(
            CLI_BUSINESS_ID,
            _load_objects(args.tasks, ComplianceTask.from_dict),
        )
    if args.previous:
        store.save_issues(
            CLI_BUSINESS_ID,
            args.year,
            _load_objects(args.previous, ReviewIssue.from_dict),
        )
    engine = _build_engine(args, store)

    issues = engine.scan(CLI_BUSINESS_ID, args.year)
    open_issues = [i for i in issues if i.status is IssueStatus.OPEN]

    if not open_issues:
        console.print("[green]No open review issues.[/green]")
    else:
        table = Table(title="Review Issues", box=box.ROUNDED, show_lines=True)
        table.add_column("Severity")
        table.add_column("Type", style="bold")
        table.add_column("Affected", justify="right")
        table.add_column("Details")
        for i in open_issues:
            color = _SEVERITY_COLORS.get(i.severity.value, "white")
            table.add_row(
                f"[{color}]{i.severity.value.upper()}[/{color}]",
                i.type.value,
                str(len(i.entity_ids)),
                i.meta.get("reason") or i.description,
            )
        console.print(table)

    if args.export_json:
        # Full issue set, re-readable via --previous on the next scan
        rg = ReportGenerator(args.output_dir or "reports")
        rg.to_json([i.to_dict() for i in issues], args.export_json)
        console.print(f"[green]Issues exported to {args.export_json}[/green]")


# -----------------------------------------------------------------------
# Subcommand: rules
# -----------------------------------------------------------------------


def cmd_rules(args: argparse.Namespace) -> None:
    """List (and optionally strictly validate) a rule set."""
    rule_set = _load_rule_set(args.rules, strict=args.validate)
    if args.validate:
        console.print(f"[green]Rule set {rule_set.version} is valid.[/green]")

    table = Table(
        title=f"{rule_set.name} ({rule_set.version})",
        box=box.ROUNDED,
    )
    table.add_column("Priority", justify="right")
    table.add_column("Key", style="bold")
    table.add_column("Type")
    table.add_column("Outcome")
    for rule in sorted(rule_set.rules, key=lambda r: r.priority):
        table.add_row(
            str(rule.priority),
            rule.key,
            rule.type.value,
            json.dumps(dict(rule.outcome)),
        )
    console.print(table)

    if rule_set.deadline_templates:
        table = Table(title="Deadline Templates", box=box.SIMPLE)
        table.add_column("Key", style="bold")
        table.add_column("Tax")
        table.add_column("Frequency")
        table.add_column("Title")
        for t in rule_set.deadline_templates:
            table.add_row(t.key, t.effective_tax_type, t.frequency.value, t.title)
        console.print(table)


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="compliance-engine",
        description="Compliance Intelligence Engine - Tax rule evaluation, deadlines, tax-safety scoring and review scans",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (default: %(default)s)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    this_year = date.today().year

    # evaluate
    eval_p = subparsers.add_parser("evaluate", help="Evaluate a business profile")
    eval_p.add_argument("--profile", "-p", required=True, help="JSON file with the business profile")
    eval_p.add_argument("--rules", "-r", help="Rule set JSON (default: bundled rule set)")
    eval_p.add_argument("--year", "-y", type=int, default=this_year, help="Tax year")
    eval_p.add_argument("--filed", help="CSV of filed periods (tax_type, period_start, period_end)")
    eval_p.add_argument("--export-json", help="Export report to JSON file")
    eval_p.add_argument("--output-dir", help="Output directory for exports")
    eval_p.set_defaults(func=cmd_evaluate)

    # score
    score_p = subparsers.add_parser("score", help="Compute the tax-safety score")
    score_p.add_argument("--profile", "-p", required=True, help="JSON file with the business profile")
    score_p.add_argument("--file", "-f", required=True, help="CSV file with transactions")
    score_p.add_argument("--rules", "-r", help="Rule set JSON (default: bundled rule set)")
    score_p.add_argument("--year", "-y", type=int, default=this_year, help="Tax year")
    score_p.add_argument("--filed", help="CSV of filed periods")
    score_p.add_argument(
        "--eligibility-on-file",
        action="store_true",
        help="An eligibility evaluation is already on file for the year",
    )
    score_p.add_argument("--export-json", help="Export report to JSON file")
    score_p.add_argument("--output-dir", help="Output directory for exports")
    score_p.set_defaults(func=cmd_score)

    # scan
    scan_p = subparsers.add_parser("scan", help="Scan records for review issues")
    scan_p.add_argument("--file", "-f", required=True, help="CSV file with transactions")
    scan_p.add_argument("--tasks", help="JSON list of compliance tasks")
    scan_p.add_argument("--previous", help="JSON list of previously stored issues")
    scan_p.add_argument("--year", "-y", type=int, default=this_year, help="Tax year")
    scan_p.add_argument("--export-json", help="Export the issue set to JSON file")
    scan_p.add_argument("--output-dir", help="Output directory for exports")
    scan_p.set_defaults(func=cmd_scan)

    # rules
    rules_p = subparsers.add_parser("rules", help="View a rule set")
    rules_p.add_argument("--rules", "-r", help="Rule set JSON (default: bundled rule set)")
    rules_p.add_argument(
        "--validate", action="store_true", help="Validate strictly, as on admin writes"
    )
    rules_p.set_defaults(func=cmd_rules)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    try:
        args.func(args)
    except ComplianceEngineError as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
