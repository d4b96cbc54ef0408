"""
SpecGate CLI

Click-based command-line interface for SpecGate.
Provides commands for ambiguity detection, rule checks and scripted sessions.
"""

import json
import sys
from pathlib import Path
from typing import Any, List, Optional

import click
import yaml
from rich.console import Console
from rich.table import Table

from specgate import __version__
from specgate.errors import ConfigError, ConstitutionalViolationError, SpecGateError, ValidationError
from specgate.logging import (
    EXIT_BLOCKED,
    EXIT_CONFIG_ERROR,
    EXIT_RUNTIME_ERROR,
    get_logger,
    init_cli_logging,
    json_logging_from_env,
)
from specgate.services.event_persistence import json_safe

logger = get_logger(__name__)
console = Console()


def get_service_context(**overrides: Any):
    """Create a ServiceContext for CLI operations."""
    from specgate.config import load_config
    from specgate.services.base import ServiceContext

    config = load_config()
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        config = config.model_copy(update=overrides)
    return ServiceContext(config=config)


def load_yaml_file(path: Path) -> Any:
    """Read a YAML (or JSON) payload, mapping parse failures to ValidationError."""
    try:
        return yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError(f"Cannot read {path}: {exc}", metadata={"path": str(path)}) from exc


def exit_code_for(exc: SpecGateError) -> int:
    if isinstance(exc, ConfigError):
        return EXIT_CONFIG_ERROR
    if isinstance(exc, ConstitutionalViolationError):
        return EXIT_BLOCKED
    return EXIT_RUNTIME_ERROR


def fail(exc: SpecGateError) -> None:
    """Report a SpecGate error and exit with its code."""
    logger.debug("cli_command_failed", extra={"error": str(exc), "category": exc.category})
    click.echo(f"✗ Error: {exc}", err=True)
    sys.exit(exit_code_for(exc))


def echo_json(payload: Any) -> None:
    click.echo(json.dumps(json_safe(payload), indent=2))


def wants_json(ctx: click.Context) -> bool:
    return bool(ctx.find_root().obj and ctx.find_root().obj.get("JSON"))


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cli(ctx, verbose, json_output):
    """SpecGate - requirement readiness gate."""
    ctx.ensure_object(dict)
    ctx.obj["VERBOSE"] = verbose
    ctx.obj["JSON"] = json_output

    init_cli_logging(level="DEBUG" if verbose else "WARNING", json_output=json_logging_from_env())


@cli.command()
def version():
    """Show version information."""
    click.echo(f"SpecGate v{__version__}")


# =============================================================================
# Detection
# =============================================================================

def read_statements(path: Path) -> List[str]:
    """
    Statements from a file: a YAML list or ``statements:`` mapping for
    .yaml/.yml/.json files, otherwise one statement per non-empty line.
    """
    if path.suffix.lower() in (".yaml", ".yml", ".json"):
        data = load_yaml_file(path)
        if isinstance(data, dict):
            data = data.get("statements")
        if not isinstance(data, list) or not all(isinstance(s, str) for s in data):
            raise ValidationError(f"{path} must contain a list of statements", metadata={"path": str(path)})
        return [s for s in data if s.strip()]
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValidationError(f"Cannot read {path}: {exc}", metadata={"path": str(path)}) from exc
    return [line.strip() for line in text.splitlines() if line.strip()]


@cli.command("detect")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--glossary", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Glossary YAML")
@click.pass_context
def detect(ctx, file, glossary):
    """Scan requirement statements for ambiguity."""
    try:
        from specgate.services.ambiguity import AmbiguityDetector

        context = get_service_context(glossary_path=glossary)
        detector = AmbiguityDetector(context)
        statements = read_statements(file)
        result = detector.detect(statements)
    except SpecGateError as exc:
        fail(exc)
        return

    if wants_json(ctx):
        echo_json(
            {
                "clarity_score": result.clarity_score,
                "ambiguities": result.ambiguities,
                "contradictions": result.contradictions,
                "clarification_questions": result.clarification_questions,
            }
        )
        return

    if not result.ambiguities:
        console.print(f"[green]No ambiguities found in {len(statements)} statements[/green]")
        return

    table = Table(title=f"Ambiguities (clarity {result.clarity_score:.1f})")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Severity")
    table.add_column("Score", justify="right")
    table.add_column("Statement", justify="right")
    table.add_column("Excerpt", style="white")
    for ambiguity in result.ambiguities:
        table.add_row(
            ambiguity.id,
            ambiguity.type.value,
            ambiguity.severity.value,
            f"{ambiguity.ambiguity_score:.0f}",
            str(ambiguity.location.statement_index + 1),
            ambiguity.location.excerpt,
        )
    console.print(table)

    questions = Table(title="Clarification questions")
    questions.add_column("Urgency", style="red")
    questions.add_column("Ask", style="blue")
    questions.add_column("Question", style="white")
    for q in result.clarification_questions:
        questions.add_row(q.urgency, q.stakeholder_role, q.question)
    console.print(questions)


from specgate.cli.rules import rules_cli  # noqa: E402
from specgate.cli.session import session_cli  # noqa: E402

cli.add_command(rules_cli)
cli.add_command(session_cli)


def main(argv: Optional[List[str]] = None) -> None:
    cli.main(args=argv, prog_name="specgate")


if __name__ == "__main__":
    main()
