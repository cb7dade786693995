"""
Console report generator for Warden.

Renders verification reports, validation results, evaluations and audit
event listings for the terminal using Rich.

Design Principles:
    - Human-readable first: Optimize for quick scanning
    - Status at a glance: Use icons and colors for status
    - Progressive detail: Summary first, details on request
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from warden.audit.events import AuditEvent, Outcome
from warden.audit.verify import IssueSeverity, VerificationReport
from warden.policy.engine import RuleTrace
from warden.policy.inheritance import ResolvedPolicy
from warden.policy.validation import ValidationIssue, ValidationResult
from warden.schema import Effect, EvaluationResult


# Status icons
ICON_SUCCESS = "[green]✓[/green]"
ICON_ERROR = "[red]✗[/red]"
ICON_DENIED = "[yellow]⊘[/yellow]"
ICON_PENDING = "[dim]○[/dim]"
ICON_INFO = "[blue]i[/blue]"

SEVERITY_STYLES = {
    IssueSeverity.CRITICAL: "bold red",
    IssueSeverity.HIGH: "red",
    IssueSeverity.MEDIUM: "yellow",
    IssueSeverity.INFO: "blue",
}


def print_verification_report(
    report: VerificationReport,
    console: Console | None = None,
    verbose: bool = False,
) -> None:
    """
    Print a chain verification report.

    Args:
        report: The verification report
        console: Rich Console instance (creates one if not provided)
        verbose: Show expected/actual hashes for each issue
    """
    if console is None:
        console = Console()

    header = Text()
    header.append(" Audit chain ", style="bold")
    header.append(report.tenant_id, style="bold cyan")
    header.append(" │ ", style="dim")
    if report.valid:
        header.append("VALID", style="bold green")
    else:
        header.append("INVALID", style="bold red")
    console.print(Panel(header, expand=False))
    console.print(f"  [dim]{report.summary}[/dim]")
    console.print()

    if report.issues:
        table = Table(show_header=True, header_style="bold", show_lines=verbose, expand=True)
        table.add_column("Seq", style="dim", justify="right", width=6)
        table.add_column("Severity", width=9)
        table.add_column("Type", style="cyan", width=22)
        table.add_column("Details", overflow="fold")
        for issue in report.issues:
            style = SEVERITY_STYLES[issue.severity]
            details = issue.message
            if verbose and (issue.expected or issue.actual):
                details += f"\n[dim]expected: {issue.expected}\nactual:   {issue.actual}[/dim]"
            table.add_row(
                str(issue.sequence),
                f"[{style}]{issue.severity.value}[/{style}]",
                issue.type.value,
                details,
            )
        console.print(table)
        console.print()

    stats = report.stats
    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column("Metric", style="dim")
    stats_table.add_column("Value")
    stats_table.add_row("Entries", f"{stats.entries_verified} of {stats.total_entries}")
    if stats.sequence_range:
        stats_table.add_row("Sequences", f"{stats.sequence_range[0]}-{stats.sequence_range[1]}")
    if stats.time_range:
        start, end = stats.time_range
        stats_table.add_row(
            "Time range",
            f"{start.strftime('%Y-%m-%d %H:%M:%S')} to {end.strftime('%Y-%m-%d %H:%M:%S')}",
        )
    stats_table.add_row(
        "Gaps",
        f"[red]{stats.gaps_detected}[/red]" if stats.gaps_detected else "0",
    )
    stats_table.add_row("Continuity", f"{stats.continuity_percent:.2f}%")
    stats_table.add_row(
        "High risk",
        f"[yellow]{stats.high_risk_count}[/yellow]" if stats.high_risk_count else "0",
    )
    stats_table.add_row("Duration", f"{report.duration_ms:.1f}ms")
    console.print(stats_table)


def print_validation_result(
    result: ValidationResult,
    console: Console | None = None,
    source: str | None = None,
) -> None:
    """Print a validation result with issues grouped by severity."""
    if console is None:
        console = Console()

    label = f" {source}" if source else ""
    if result.valid:
        console.print(f"{ICON_SUCCESS} Policy{label} is valid")
    else:
        console.print(f"{ICON_ERROR} Policy{label} is invalid ({len(result.errors)} error(s))")
    if result.migrated:
        console.print(
            f"  [dim]Migrated from {result.original_version}: "
            f"{', '.join(result.applied_migrations)}[/dim]"
        )

    for title, style, issues in (
        ("Errors", "red", result.errors),
        ("Warnings", "yellow", result.warnings),
        ("Info", "blue", result.info),
    ):
        if issues:
            console.print()
            console.print(f"[bold {style}]{title}[/bold {style}]")
            _print_issues(console, issues, style)


def _print_issues(console: Console, issues: list[ValidationIssue], style: str) -> None:
    for issue in issues:
        location = f"[dim]{issue.path}:[/dim] " if issue.path else ""
        console.print(f"  [{style}]{issue.code.value}[/{style}] {location}{issue.message}")
        if issue.suggestion:
            console.print(f"    [dim]→ {issue.suggestion}[/dim]")


def print_evaluation_result(
    result: EvaluationResult,
    console: Console | None = None,
    traces: list[RuleTrace] | None = None,
) -> None:
    """Print an evaluation result and, if given, its per-rule traces."""
    if console is None:
        console = Console()

    if result.action.effect == Effect.REQUIRE_APPROVAL:
        icon, verdict, style = ICON_PENDING, "APPROVAL REQUIRED", "yellow"
    elif result.allowed:
        icon, verdict, style = ICON_SUCCESS, "ALLOWED", "green"
    else:
        icon, verdict, style = ICON_DENIED, "DENIED", "red"

    console.print(f"{icon} [bold {style}]{verdict}[/bold {style}] ({result.action.effect.value})")
    console.print(f"  [dim]Reason:[/dim] {result.reason}")
    if result.matched_rule_id:
        console.print(f"  [dim]Rule:[/dim]   {result.matched_rule_id} ({result.matched_rule_name})")
    console.print(
        f"  [dim]Policy:[/dim] {result.audit.policy_name} v{result.audit.policy_version}, "
        f"{result.audit.rules_evaluated} rule(s) evaluated"
    )

    if traces is None:
        return

    console.print()
    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("Priority", justify="right", width=8)
    table.add_column("Rule", style="cyan")
    table.add_column("Match", justify="center", width=6)
    table.add_column("Conditions", overflow="fold")
    for trace in traces:
        if not trace.enabled:
            match_icon = "[dim]off[/dim]"
        else:
            match_icon = ICON_SUCCESS if trace.matched else ICON_ERROR
        conditions = "\n".join(
            f"{ICON_SUCCESS if ok else ICON_ERROR} {text}" for text, ok in trace.conditions
        )
        table.add_row(str(trace.priority), trace.rule_id, match_icon, conditions or "[dim]none[/dim]")
    console.print(table)


def print_resolution(resolved: ResolvedPolicy, console: Console | None = None) -> None:
    """Print a resolved policy: chain, rule provenance and issues."""
    if console is None:
        console = Console()

    if resolved.valid:
        console.print(f"{ICON_SUCCESS} Effective policy resolved")
    else:
        console.print(f"{ICON_ERROR} Effective policy could not be resolved")

    if resolved.chain:
        chain = " → ".join(f"{d.name} [dim]({d.scope.value})[/dim]" for d in resolved.chain)
        console.print(f"  [dim]Chain:[/dim] {chain}")
    stats = resolved.stats
    console.print(
        f"  [dim]Rules:[/dim] {stats.rules_before_merge} before merge, "
        f"{stats.rules_after_merge} after"
    )

    if resolved.policy is not None and resolved.policy.rules:
        console.print()
        table = Table(show_header=True, header_style="bold")
        table.add_column("Priority", justify="right", width=8)
        table.add_column("Rule", style="cyan")
        table.add_column("Effect")
        table.add_column("From", style="dim")
        for rule in resolved.policy.rules:
            effect = rule.action.effect.value if rule.action else "-"
            table.add_row(str(rule.priority), rule.id, effect, resolved.rule_origins.get(rule.id, ""))
        console.print(table)

    errors = resolved.errors
    if errors:
        console.print()
        console.print("[bold red]Errors[/bold red]")
        _print_issues(console, errors, "red")


def print_events(events: list[AuditEvent], console: Console | None = None) -> None:
    """Print a table of audit events."""
    if console is None:
        console = Console()

    if not events:
        console.print("[dim]No audit events[/dim]")
        return

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("Seq", style="dim", justify="right", width=6)
    table.add_column("Time", width=19)
    table.add_column("Type", style="cyan")
    table.add_column("Actor")
    table.add_column("Outcome", width=9)
    table.add_column("Hash", style="dim", width=12)
    for event in events:
        outcome = event.outcome.value
        if event.outcome == Outcome.SUCCESS:
            outcome = f"[green]{outcome}[/green]"
        elif event.outcome in (Outcome.DENIED, Outcome.BLOCKED, Outcome.FAILURE):
            outcome = f"[red]{outcome}[/red]"
        event_type = f"[bold]{event.event_type}[/bold] ⚠" if event.high_risk else event.event_type
        table.add_row(
            str(event.sequence),
            event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            event_type,
            f"{event.actor.type.value}:{event.actor.id}",
            outcome,
            event.hash[:12],
        )
    console.print(table)
