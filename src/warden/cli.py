"""
CLI entry point for Warden.

This module provides the Typer-based command-line interface for Warden.
All user interactions flow through these commands.

Commands:
    validate    Validate a policy document (migrating older versions)
    migrate     Upgrade a policy document to the current schema version
    parse       Parse a textual condition expression
    evaluate    Evaluate one policy document against a request context
    resolve     Build the effective policy for a target from a policy set
    decide      Resolve, evaluate and record a decision
    audit       Verify, export and list tenant audit chains
    version     Show version

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to the
    policy, audit and engine modules for actual work. Everything here can be
    done programmatically without the CLI.
"""

import json
import sys
import traceback
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
import yaml
from rich.console import Console

from warden import __version__
from warden.audit.events import AuditQuery, Outcome
from warden.audit.export import AuditExporter, parse_export_format
from warden.audit.verify import ChainVerifier
from warden.config import get_settings
from warden.engine import Engine
from warden.errors import WardenError
from warden.logging import configure_logging
from warden.policy.engine import PolicyEngine
from warden.policy.inheritance import InheritanceResolver
from warden.policy.migration import migrate_document
from warden.policy.parser import parse_expression
from warden.policy.validation import PolicyValidator
from warden.report import (
    print_evaluation_result,
    print_events,
    print_resolution,
    print_validation_result,
    print_verification_report,
)
from warden.report.console import ICON_SUCCESS
from warden.report.json import (
    build_decision_dict,
    build_evaluation_dict,
    build_resolution_dict,
    build_validation_dict,
    generate_json_report,
    to_json,
)
from warden.schema import load_context, load_policy_document
from warden.store import InMemoryAuditStore, InMemoryPolicyStore, WardenDB

POLICY_SUFFIXES = (".yaml", ".yml", ".json")

# Initialize Typer app with metadata
app = typer.Typer(
    name="warden",
    help="Decide agent and human actions under inherited policies, with a tamper-evident audit trail.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]warden[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Warden - Policy decisions with scope inheritance and audit.

    Validate and evaluate policy documents, resolve effective policies
    across global/org/repo/branch scopes, and verify or export the
    hash-chained audit trail of every decision.
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)


# =============================================================================
# Shared Helpers
# =============================================================================


def _output_json_error(error_type: str, error: Exception | str, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    output = {
        "error": True,
        "error_type": error_type,
        "message": str(error),
    }
    if isinstance(error, WardenError):
        output.update(error.to_dict())
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2, default=str))


def _fail(error_type: str, label: str, error: Exception, json_output: bool, debug: bool) -> NoReturn:
    """Report an error and exit with code 1."""
    if json_output:
        _output_json_error(error_type, error, debug)
    else:
        console.print(f"[red]{label}: {error}[/red]")
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _policy_files(path: Path) -> list[Path]:
    """Policy files under a directory (sorted), or the path itself."""
    if path.is_file():
        return [path]
    return sorted(p for p in path.iterdir() if p.suffix.lower() in POLICY_SUFFIXES)


def _load_policy_store(path: Path) -> InMemoryPolicyStore:
    """Load every policy file under path into an in-memory store."""
    return InMemoryPolicyStore([load_policy_document(p) for p in _policy_files(path)])


def _open_db(db: Optional[Path]) -> WardenDB:
    """Open an existing audit database, exiting if it is missing."""
    db_path = db or Path(get_settings().db_path)
    if not db_path.exists():
        console.print(f"[yellow]No database found at {db_path}[/yellow]")
        raise typer.Exit(code=1)
    return WardenDB(db_path)


# =============================================================================
# Policy Commands
# =============================================================================


PolicyFileArgument = Annotated[
    Path,
    typer.Argument(
        help="Path to the policy YAML file.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]

ContextOption = Annotated[
    Path,
    typer.Option(
        "--context",
        "-c",
        help="Path to the request context YAML file.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]

PoliciesOption = Annotated[
    Path,
    typer.Option(
        "--policies",
        "-p",
        help="Directory of policy files (or a single policy file).",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]

JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output results in JSON format.",
    ),
]

DebugOption = Annotated[
    bool,
    typer.Option(
        "--debug",
        help="Enable debug mode with full error tracebacks.",
    ),
]


@app.command()
def validate(
    policy_path: PolicyFileArgument,
    json_output: JsonOption = False,
    no_migrate: Annotated[
        bool,
        typer.Option(
            "--no-migrate",
            help="Reject older schema versions instead of migrating them.",
        ),
    ] = False,
    warnings: Annotated[
        bool,
        typer.Option(
            "--warnings/--no-warnings",
            help="Report non-fatal warnings.",
        ),
    ] = True,
    debug: DebugOption = False,
) -> None:
    """
    Validate a policy document.

    Reports every structural and semantic problem in one pass. Older schema
    versions are migrated first unless --no-migrate is given.

    Example:
        $ warden validate policies/org.yaml
    """
    try:
        document = load_policy_document(policy_path)
        options = get_settings().validator_options(
            auto_migrate=not no_migrate,
            include_warnings=warnings,
        )
        result = PolicyValidator(options).validate(document)
    except Exception as e:
        _fail("policy_load_error", "Error loading policy", e, json_output, debug)

    if json_output:
        print(to_json(build_validation_dict(result, source=str(policy_path))))
    else:
        print_validation_result(result, console, source=policy_path.name)

    raise typer.Exit(code=0 if result.valid else 1)


@app.command()
def migrate(
    policy_path: PolicyFileArgument,
    output: Annotated[
        Optional[Path],
        typer.Option(
            "--out",
            "-o",
            help="Write the migrated document here instead of stdout.",
            resolve_path=True,
        ),
    ] = None,
    debug: DebugOption = False,
) -> None:
    """
    Upgrade a policy document to the current schema version.

    Example:
        $ warden migrate legacy.yaml --out upgraded.yaml
    """
    try:
        outcome = migrate_document(load_policy_document(policy_path))
    except Exception as e:
        _fail("migration_error", "Migration failed", e, False, debug)

    content = yaml.safe_dump(outcome.document, sort_keys=False, allow_unicode=True)
    if output is None:
        sys.stdout.write(content)
        return

    output.write_text(content)
    if outcome.migrated:
        console.print(
            f"[green]Migrated {outcome.original_version} → {outcome.document['version']}[/green] "
            f"({', '.join(outcome.applied)}) → {output}"
        )
    else:
        console.print(f"[dim]Already at version {outcome.original_version}[/dim] → {output}")


@app.command()
def parse(
    expression: Annotated[
        str,
        typer.Argument(help='Condition expression, e.g. "actor.type == \'user\' && resource.attributes.size > 3".'),
    ],
    json_output: JsonOption = False,
) -> None:
    """
    Parse a textual condition expression.

    Prints the structured conditions the expression compiles to.

    Example:
        $ warden parse "actor.roles contains 'admin'"
    """
    try:
        conditions = parse_expression(expression)
    except WardenError as e:
        _fail("condition_parse_error", "Parse error", e, json_output, False)

    data = [c.model_dump(mode="json", by_alias=True, exclude_none=True) for c in conditions]
    if json_output:
        print(json.dumps(data, indent=2))
        return
    for condition in conditions:
        console.print(
            f"[cyan]{condition.field}[/cyan] [bold]{condition.operator.value}[/bold] "
            f"{json.dumps(condition.value)}"
        )


@app.command()
def evaluate(
    policy_path: PolicyFileArgument,
    context_path: ContextOption,
    json_output: JsonOption = False,
    explain: Annotated[
        bool,
        typer.Option(
            "--explain",
            help="Show how every rule fared, not just the match.",
        ),
    ] = False,
    debug: DebugOption = False,
) -> None:
    """
    Evaluate a single policy document against a request context.

    Exits 0 when the action is allowed and 1 otherwise.

    Example:
        $ warden evaluate repo.yaml --context merge-request.yaml --explain
    """
    try:
        document = load_policy_document(policy_path)
        context = load_context(context_path)
        validation = PolicyValidator(get_settings().validator_options()).validate(document)
    except Exception as e:
        _fail("input_error", "Error loading inputs", e, json_output, debug)

    if not validation.valid:
        if json_output:
            print(to_json(build_validation_dict(validation, source=str(policy_path))))
        else:
            print_validation_result(validation, console, source=policy_path.name)
        raise typer.Exit(code=1)

    engine = PolicyEngine(validation.policy)
    result = engine.evaluate(context)
    traces = engine.explain(context) if explain else None

    if json_output:
        print(to_json(build_evaluation_dict(result, traces)))
    else:
        print_evaluation_result(result, console, traces=traces)

    raise typer.Exit(code=0 if result.allowed else 1)


@app.command()
def resolve(
    policies: PoliciesOption,
    org: Annotated[Optional[str], typer.Option("--org", help="Organization target.")] = None,
    repo: Annotated[Optional[str], typer.Option("--repo", help="Repository target.")] = None,
    branch: Annotated[Optional[str], typer.Option("--branch", help="Branch target.")] = None,
    policy_id: Annotated[
        Optional[str],
        typer.Option("--policy-id", help="Resolve one document through its parentPolicyId links."),
    ] = None,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Build the effective policy for a target.

    Loads every policy file in the directory, walks the inheritance chain
    and merges it.

    Example:
        $ warden resolve --policies policies/ --org acme --repo acme/api
    """
    try:
        store = _load_policy_store(policies)
        resolver = InheritanceResolver(store, PolicyValidator(get_settings().validator_options()))
        if policy_id:
            resolved = resolver.resolve_policy(policy_id)
        else:
            resolved = resolver.resolve_scope(org, repo, branch)
    except Exception as e:
        _fail("resolution_error", "Resolution failed", e, json_output, debug)

    if json_output:
        print(to_json(build_resolution_dict(resolved)))
    else:
        print_resolution(resolved, console)

    raise typer.Exit(code=0 if resolved.valid else 1)


@app.command()
def decide(
    policies: PoliciesOption,
    context_path: ContextOption,
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant whose audit chain records the decision.")],
    org: Annotated[Optional[str], typer.Option("--org", help="Organization target.")] = None,
    repo: Annotated[Optional[str], typer.Option("--repo", help="Repository target.")] = None,
    branch: Annotated[Optional[str], typer.Option("--branch", help="Branch target.")] = None,
    db: Annotated[
        Optional[Path],
        typer.Option(
            "--db",
            help="SQLite database the decision is recorded in. Without it the event is not persisted.",
            resolve_path=True,
        ),
    ] = None,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Resolve the effective policy, evaluate a request and record the decision.

    An invalid effective policy denies the request (fail-closed).

    Example:
        $ warden decide --policies policies/ --context req.yaml --tenant acme --org acme --db audit.db
    """
    audit_store = WardenDB(db) if db else InMemoryAuditStore()
    try:
        policy_store = _load_policy_store(policies)
        context = load_context(context_path)
        engine = Engine(policy_store, audit_store, settings=get_settings())
        decision = engine.decide(tenant, context, org=org, repo=repo, branch=branch)
    except Exception as e:
        _fail("decision_error", "Decision failed", e, json_output, debug)
    finally:
        if isinstance(audit_store, WardenDB):
            audit_store.close()

    if json_output:
        print(to_json(build_decision_dict(decision)))
    else:
        print_evaluation_result(decision.result, console)
        if decision.event is not None:
            console.print(
                f"  [dim]Audit:[/dim]  {tenant} #{decision.event.sequence} "
                f"[dim]{decision.event.hash[:16]}[/dim]"
            )

    raise typer.Exit(code=0 if decision.allowed else 1)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"[bold]warden[/bold] version {__version__}")


# =============================================================================
# Audit Subcommand Group
# =============================================================================

audit_app = typer.Typer(
    name="audit",
    help="Verify, export and list tenant audit chains.",
    no_args_is_help=True,
)
app.add_typer(audit_app, name="audit")

DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        help="Path to the SQLite database. Defaults to WARDEN_DB_PATH.",
        resolve_path=True,
    ),
]


@audit_app.command("verify")
def audit_verify(
    tenant: Annotated[str, typer.Argument(help="Tenant whose chain to verify.")],
    db: DbOption = None,
    start: Annotated[Optional[int], typer.Option("--start", help="First sequence to verify.", min=0)] = None,
    end: Annotated[Optional[int], typer.Option("--end", help="Last sequence to verify.", min=0)] = None,
    skew: Annotated[
        Optional[float],
        typer.Option("--skew", help="Tolerated timestamp regression in seconds.", min=0),
    ] = None,
    json_output: JsonOption = False,
    verbose: Annotated[bool, typer.Option("--verbose", help="Show expected/actual hashes.")] = False,
    debug: DebugOption = False,
) -> None:
    """
    Verify a tenant's audit chain.

    Every problem is listed; the command exits 1 if any is above info
    severity.

    Example:
        $ warden audit verify acme --db audit.db
    """
    overrides = {"start_sequence": start, "end_sequence": end}
    if skew is not None:
        overrides["clock_skew_tolerance_seconds"] = skew

    with _open_db(db) as store:
        try:
            report = ChainVerifier(store).verify(tenant, get_settings().verify_options(**overrides))
        except Exception as e:
            _fail("verification_error", "Verification failed", e, json_output, debug)

    if json_output:
        print(generate_json_report(report))
    else:
        print_verification_report(report, console, verbose=verbose)

    raise typer.Exit(code=0 if report.valid else 1)


@audit_app.command("export")
def audit_export(
    tenant: Annotated[str, typer.Argument(help="Tenant whose events to export.")],
    export_format: Annotated[
        str,
        typer.Option("--format", "-f", help="json, jsonl, csv, cef or syslog."),
    ] = "json",
    db: DbOption = None,
    redact: Annotated[bool, typer.Option("--redact", help="Redact sensitive fields before export.")] = False,
    output: Annotated[
        Optional[Path],
        typer.Option(
            "--out",
            "-o",
            help="Output file, or a directory to write the default file name into.",
            resolve_path=True,
        ),
    ] = None,
    debug: DebugOption = False,
) -> None:
    """
    Export a tenant's audit events for SIEM ingestion or archival.

    Example:
        $ warden audit export acme --format cef --redact --out exports/
    """
    try:
        options = get_settings().export_options(format=parse_export_format(export_format), redact=redact)
    except WardenError as e:
        _fail("export_error", "Export failed", e, False, debug)

    with _open_db(db) as store:
        result = AuditExporter(options).export(store.get_audit_events(tenant))

    if output is None:
        sys.stdout.write(result.content)
        return

    target = output / result.filename if output.is_dir() else output
    target.write_text(result.content)
    console.print(
        f"{ICON_SUCCESS} Exported {result.entry_count} entries to {target} "
        f"[dim](sha256 {result.content_hash[:16]})[/dim]"
    )
    if result.signature is not None:
        signature_path = target.with_name(target.name + ".sig")
        signature_path.write_text(json.dumps(result.signature.to_dict(), indent=2) + "\n")
        console.print(f"{ICON_SUCCESS} Signature ({result.signature.key_id}) written to {signature_path}")


@audit_app.command("list")
def audit_list(
    tenant: Annotated[str, typer.Argument(help="Tenant whose events to list.")],
    db: DbOption = None,
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum number of (most recent) events to show.",
        ),
    ] = 20,
    actor: Annotated[Optional[str], typer.Option("--actor", help="Only events by this actor ID.")] = None,
    event_type: Annotated[Optional[str], typer.Option("--type", help="Only events of this type.")] = None,
    outcome: Annotated[Optional[Outcome], typer.Option("--outcome", help="Only events with this outcome.")] = None,
    high_risk: Annotated[bool, typer.Option("--high-risk", help="Only high-risk events.")] = False,
) -> None:
    """
    List the most recent audit events of a tenant.

    Example:
        $ warden audit list acme --db audit.db -n 50 --actor alice --high-risk
    """
    query = AuditQuery(
        actor_id=actor,
        event_type=event_type,
        outcome=outcome,
        high_risk_only=high_risk,
        limit=limit if limit > 0 else None,
    )
    with _open_db(db) as store:
        page = store.query_audit_events(tenant, query)

    print_events(list(reversed(page.events)), console)
    if page.has_more:
        console.print(f"[dim]Showing {len(page.events)} of {page.total_count} matching events[/dim]")


if __name__ == "__main__":
    app()
