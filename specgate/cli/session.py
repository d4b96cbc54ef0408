import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.table import Table

from specgate.cli.main import console, echo_json, fail, get_service_context, load_yaml_file, wants_json
from specgate.errors import ConstitutionalViolationError, SpecGateError, ValidationError
from specgate.logging import EXIT_BLOCKED
from specgate.models.rules import RuleInputs
from specgate.models.session import SessionStatus, TaskContext


def _scripted_answers(raw: Any) -> List[Dict[str, Any]]:
    """
    Normalize the ``answers`` list. Plain strings answer the oldest open
    question; mappings may name the question and carry structured data.
    """
    if not isinstance(raw, list):
        raise ValidationError("Script 'answers' must be a list")
    out: List[Dict[str, Any]] = []
    for item in raw:
        if isinstance(item, str):
            out.append({"answer": item})
        elif isinstance(item, dict) and isinstance(item.get("answer"), str):
            out.append(item)
        else:
            raise ValidationError(f"Invalid scripted answer: {item!r}")
    return out


@click.group(name="session")
def session_cli():
    """Questioning session commands."""
    pass


@session_cli.command(name="run")
@click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--target", type=float, help="Target confidence (default: configured)")
@click.option("--auto-resume", is_flag=True, help="Resume automatically when the session pauses")
@click.pass_context
def run_session(ctx, script, target, auto_resume):
    """
    Run a scripted session.

    The script is YAML with ``task`` (task context), ``answers`` and an
    optional ``rules`` mapping checked once the session completes.
    """
    try:
        from specgate.services.readiness import ReadinessService

        data = load_yaml_file(script)
        if not isinstance(data, dict) or not isinstance(data.get("task"), dict):
            raise ValidationError(f"{script} must contain a 'task' mapping")
        try:
            task = TaskContext.from_dict(data["task"])
            rule_inputs: Optional[RuleInputs] = RuleInputs.from_dict(data["rules"]) if data.get("rules") else None
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid script {script}: {exc}") from exc
        answers = _scripted_answers(data.get("answers") or [])

        service = ReadinessService(get_service_context())
        session = service.start_session(task, target)
        steps: List[Dict[str, Any]] = []
        for item in answers:
            if session.status == SessionStatus.PAUSED and auto_resume:
                service.resume(session.session_id)
            if session.status != SessionStatus.ACTIVE:
                break
            open_questions = session.open_questions()
            question_id = item.get("question") or (open_questions[0].id if open_questions else None)
            if question_id is None:
                break
            result = service.submit_answer(session.session_id, question_id, item["answer"], item.get("data"))
            steps.append(
                {
                    "question_id": question_id,
                    "phase": session.current_phase.value,
                    "confidence": session.confidence_score,
                    "new_questions": len(result.new_questions),
                    "new_gaps": len(result.new_gaps),
                    "status": session.status.value,
                }
            )

        analysis = service.analyze_session(session.session_id)
        readiness_error: Optional[ConstitutionalViolationError] = None
        if rule_inputs is not None:
            try:
                service.check_readiness(session.session_id, rule_inputs)
            except ConstitutionalViolationError as exc:
                readiness_error = exc
    except SpecGateError as exc:
        fail(exc)
        return

    summary = {
        "session_id": session.session_id,
        "status": session.status.value,
        "phase": session.current_phase.value,
        "initial_confidence": session.initial_confidence,
        "confidence": session.confidence_score,
        "target": session.target_confidence,
        "answers": len(session.answers_received),
        "open_questions": [q.text for q in session.open_questions()],
        "gaps": analysis.gap_analysis,
        "ready": analysis.readiness.ready and readiness_error is None,
        "blocking_issues": analysis.readiness.blocking_issues
        + ([v.description for v in readiness_error.blocking] if readiness_error else []),
        "steps": steps,
    }

    if wants_json(ctx):
        echo_json(summary)
    else:
        table = Table(title=f"Session {session.session_id}")
        table.add_column("#", justify="right")
        table.add_column("Question", style="cyan")
        table.add_column("Phase", style="magenta")
        table.add_column("Confidence", justify="right")
        table.add_column("New questions", justify="right")
        table.add_column("New gaps", justify="right")
        table.add_column("Status")
        for i, step in enumerate(steps, 1):
            table.add_row(
                str(i),
                step["question_id"],
                step["phase"],
                f"{step['confidence']:.1f}",
                str(step["new_questions"]),
                str(step["new_gaps"]),
                step["status"],
            )
        console.print(table)
        console.print(
            f"Status: [bold]{summary['status']}[/bold]  phase: {summary['phase']}  "
            f"confidence: {summary['confidence']:.1f}/{summary['target']:.0f}"
        )
        for issue in summary["blocking_issues"]:
            console.print(f"[red]- {issue}[/red]")
        if summary["ready"]:
            console.print("[green]Ready for implementation[/green]")

    if readiness_error is not None:
        sys.exit(EXIT_BLOCKED)
