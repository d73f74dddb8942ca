#!/usr/bin/env python3
"""
Compliance Intelligence Engine - Entry Point

Evaluates business profiles against versioned tax rule sets, schedules
filing deadlines, scores tax safety and scans records for review issues.

Usage:
    python main.py evaluate --profile data/profile.json --year 2025
    python main.py score --profile data/profile.json --file data/transactions.csv
    python main.py scan --file data/transactions.csv --export-json issues.json
    python main.py rules --rules data/rules.json --validate
"""

from compliance_engine.cli import main

if __name__ == "__main__":
    main()
