"""
Reporting module for Warden.

This module renders human-readable and machine-readable reports for chain
verification, policy validation, evaluation and resolution.

Output formats:
    - Console: Rich terminal output with status icons and severity colors
    - JSON: Structured output for programmatic consumption

Verification report includes:
    - Tenant and overall validity
    - Every integrity issue with severity and sequence
    - Summary statistics (entries, gaps, continuity, high-risk count)

Example:
    from warden.report import generate_json_report, print_verification_report

    report = engine.verify("acme")
    print_verification_report(report)
    print(generate_json_report(report))
"""

from warden.report.console import (
    print_evaluation_result,
    print_events,
    print_resolution,
    print_validation_result,
    print_verification_report,
)
from warden.report.json import build_report_dict, generate_json_report

__all__ = [
    "print_evaluation_result",
    "print_events",
    "print_resolution",
    "print_validation_result",
    "print_verification_report",
    "build_report_dict",
    "generate_json_report",
]
