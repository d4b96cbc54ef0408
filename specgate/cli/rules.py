import sys
from pathlib import Path
from typing import Any, Dict, Tuple

import click
import yaml
from rich.table import Table

from specgate.cli.main import console, echo_json, fail, get_service_context, load_yaml_file, wants_json
from specgate.errors import SpecGateError, ValidationError
from specgate.logging import EXIT_BLOCKED, EXIT_RUNTIME_ERROR
from specgate.models.rules import RuleInputs

_RULEBOOK = click.option(
    "--rulebook",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Rulebook YAML (default: built-in rules)",
)


def parse_assignments(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    """
    Turn ``a.b=1`` style assignments into a nested mapping.

    Values are parsed as YAML scalars, so ``90`` is a number and ``false`` a
    boolean.
    """
    change: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ValidationError(f"Expected KEY=VALUE, got {pair!r}")
        try:
            value = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError as exc:
            raise ValidationError(f"Cannot parse value for {key}: {exc}") from exc
        node = change
        parts = key.strip().split(".")
        for part in parts[:-1]:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                raise ValidationError(f"Conflicting assignments for {key}")
        node[parts[-1]] = value
    return change


@click.group(name="rules")
def rules_cli():
    """Rule evaluation and amendment commands."""
    pass


@rules_cli.command(name="check")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_RULEBOOK
@click.pass_context
def check_rules(ctx, file, rulebook):
    """Evaluate rule inputs from a YAML file. Exits 3 when a violation blocks."""
    try:
        from specgate.rules.engine import RuleEngine

        data = load_yaml_file(file)
        if not isinstance(data, dict):
            raise ValidationError(f"{file} must contain a mapping of rule inputs")
        try:
            inputs = RuleInputs.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid rule inputs in {file}: {exc}") from exc
        engine = RuleEngine(get_service_context(rulebook_path=rulebook))
        result = engine.evaluate(inputs)
    except SpecGateError as exc:
        fail(exc)
        return

    if wants_json(ctx):
        echo_json(
            {
                "compliant": result.compliant,
                "families": [f.value for f in result.families_evaluated],
                "violations": [v.asdict() for v in result.violations],
                "blocking": [v.id for v in result.blocking_violations],
            }
        )
    elif result.compliant:
        console.print(f"[green]Compliant ({len(result.families_evaluated)} rule families checked)[/green]")
    else:
        table = Table(title="Rule violations")
        table.add_column("ID", style="cyan")
        table.add_column("Rule", style="magenta")
        table.add_column("Severity")
        table.add_column("Blocking")
        table.add_column("Description", style="white")
        table.add_column("Resolution", style="blue")
        for v in result.violations:
            table.add_row(v.id, v.rule_id, v.severity.value, "yes" if v.is_blocking else "no", v.description, v.resolution or "")
        console.print(table)

    if result.blocking_violations:
        sys.exit(EXIT_BLOCKED)


@rules_cli.command(name="amend")
@click.argument("rule_id")
@click.option("--set", "assignments", multiple=True, required=True, help="Parameter change as KEY=VALUE")
@click.option("--rationale", "-r", required=True, help="Why the change is needed")
@click.option("--by", "proposed_by", default="cli", show_default=True, help="Who proposes the change")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Write the amended rulebook here")
@_RULEBOOK
@click.pass_context
def amend_rule(ctx, rule_id, assignments, rationale, proposed_by, output, rulebook):
    """Propose an amendment to an amendable rule."""
    try:
        from specgate.rules.engine import RuleEngine

        change = parse_assignments(assignments)
        engine = RuleEngine(get_service_context(rulebook_path=rulebook))
        outcome = engine.propose_amendment(rule_id, change, rationale, proposed_by=proposed_by)
    except SpecGateError as exc:
        fail(exc)
        return

    if outcome.accepted and output:
        output.write_text(yaml.safe_dump(engine.rulebook.model_dump(mode="json"), sort_keys=False), encoding="utf-8")

    if wants_json(ctx):
        echo_json({"accepted": outcome.accepted, "reason": outcome.reason, "amendment": outcome.amendment})
    elif outcome.accepted:
        console.print(f"[green]Amendment {outcome.amendment.id} applied to {rule_id}[/green]")
        if output:
            console.print(f"  Rulebook written to {output}")
    else:
        console.print(f"[red]Amendment rejected: {outcome.reason}[/red]")

    if not outcome.accepted:
        sys.exit(EXIT_RUNTIME_ERROR)
