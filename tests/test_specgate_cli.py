"""
Tests for the SpecGate command-line interface.
"""

import json
import logging

import pytest
import yaml
from click.testing import CliRunner

from specgate import __version__
from specgate.cli.main import cli
from specgate.cli.rules import parse_assignments
from specgate.errors import ValidationError
from specgate.logging import EXIT_BLOCKED, EXIT_CONFIG_ERROR, EXIT_OK, EXIT_RUNTIME_ERROR

TASK = {
    "task_id": "task-cli",
    "task_description": "The finance team must export the monthly invoice report as CSV within 5 seconds",
    "initial_requirements": [
        "The finance team must download each exported CSV file from the reports page within 10 seconds"
    ],
    "stakeholders": ["Product Owner"],
}


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_version(runner):
    result = runner.invoke(cli, ["version"])

    assert result.exit_code == EXIT_OK
    assert f"SpecGate v{__version__}" in result.output


class TestDetect:
    def test_json_report(self, runner, tmp_path):
        path = tmp_path / "requirements.txt"
        path.write_text("The page must load fast\n\n", encoding="utf-8")

        result = runner.invoke(cli, ["--json", "detect", str(path)])

        assert result.exit_code == EXIT_OK
        payload = json.loads(result.stdout)
        assert payload["clarity_score"] == 0.0
        assert [a["type"] for a in payload["ambiguities"]] == [
            "vague_term",
            "incomplete_requirement",
            "subjective_criteria",
        ]
        assert payload["clarification_questions"]

    def test_clean_yaml_statements(self, runner, tmp_path):
        path = write_yaml(tmp_path / "requirements.yaml", {"statements": [TASK["task_description"]]})

        result = runner.invoke(cli, ["detect", str(path)])

        assert result.exit_code == EXIT_OK
        assert "No ambiguities found in 1 statements" in result.output

    def test_table_output(self, runner, tmp_path):
        path = tmp_path / "requirements.txt"
        path.write_text("The page must load fast\n", encoding="utf-8")

        result = runner.invoke(cli, ["detect", str(path)])

        assert result.exit_code == EXIT_OK
        assert "Ambiguities (clarity 0.0)" in result.output
        assert "Clarification questions" in result.output

    def test_malformed_statement_file(self, runner, tmp_path):
        path = write_yaml(tmp_path / "requirements.yaml", {"statements": 5})

        result = runner.invoke(cli, ["detect", str(path)])

        assert result.exit_code == EXIT_RUNTIME_ERROR
        assert "Error" in result.output


class TestRulesCheck:
    def test_blocking_violation_exits_blocked(self, runner, tmp_path):
        path = write_yaml(tmp_path / "inputs.yaml", {"test_discipline": {"has_tests": False}})

        result = runner.invoke(cli, ["--json", "rules", "check", str(path)])

        assert result.exit_code == EXIT_BLOCKED
        payload = json.loads(result.stdout)
        assert payload["compliant"] is False
        assert payload["blocking"] == ["tdd-missing-tests"]

    def test_compliant_inputs(self, runner, tmp_path):
        path = write_yaml(
            tmp_path / "inputs.yaml",
            {
                "test_discipline": {"has_tests": True, "coverage": 95, "phase": "green"},
                "questioning": {"confidence": 90, "questions_asked": 7},
            },
        )

        result = runner.invoke(cli, ["rules", "check", str(path)])

        assert result.exit_code == EXIT_OK
        assert "Compliant (2 rule families checked)" in result.output

    def test_non_blocking_violations_exit_ok(self, runner, tmp_path):
        path = write_yaml(tmp_path / "inputs.yaml", {"quality": {"test_coverage": 50}})

        result = runner.invoke(cli, ["--json", "rules", "check", str(path)])

        assert result.exit_code == EXIT_OK
        payload = json.loads(result.stdout)
        assert payload["blocking"] == []
        assert "qual-insufficient-coverage" in [v["id"] for v in payload["violations"]]

    def test_invalid_inputs(self, runner, tmp_path):
        path = write_yaml(tmp_path / "inputs.yaml", {"test_discipline": {"bogus": 1}})

        result = runner.invoke(cli, ["rules", "check", str(path)])

        assert result.exit_code == EXIT_RUNTIME_ERROR

    def test_broken_rulebook_is_config_error(self, runner, tmp_path):
        inputs = write_yaml(tmp_path / "inputs.yaml", {"test_discipline": {"has_tests": True}})
        rulebook = tmp_path / "rulebook.yaml"
        rulebook.write_text("- not\n- a mapping\n", encoding="utf-8")

        result = runner.invoke(cli, ["rules", "check", str(inputs), "--rulebook", str(rulebook)])

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_rulebook_changes_thresholds(self, runner, tmp_path):
        inputs = write_yaml(tmp_path / "inputs.yaml", {"test_discipline": {"has_tests": True, "coverage": 60}})
        rulebook = write_yaml(tmp_path / "rulebook.yaml", {"test_discipline": {"minimum_coverage": 50}})

        result = runner.invoke(cli, ["rules", "check", str(inputs), "--rulebook", str(rulebook)])

        assert result.exit_code == EXIT_OK
        assert "Compliant" in result.output


class TestRulesAmend:
    def test_accepted_amendment_writes_rulebook(self, runner, tmp_path):
        output = tmp_path / "amended.yaml"

        result = runner.invoke(
            cli,
            [
                "rules", "amend", "context-embedding",
                "--set", "maximum_lines=3000",
                "--rationale", "Larger shards for reporting work",
                "--output", str(output),
            ],
        )

        assert result.exit_code == EXIT_OK
        assert "Amendment amend-1 applied" in result.output
        assert yaml.safe_load(output.read_text())["context"]["maximum_lines"] == 3000

    def test_immutable_rule_is_rejected(self, runner):
        result = runner.invoke(
            cli,
            ["--json", "rules", "amend", "tdd-first", "--set", "minimum_coverage=10", "-r", "too strict"],
        )

        assert result.exit_code == EXIT_RUNTIME_ERROR
        payload = json.loads(result.stdout)
        assert payload["accepted"] is False
        assert "immutable" in payload["reason"]
        assert payload["amendment"]["status"] == "rejected"

    def test_parse_assignments(self):
        change = parse_assignments(("performance.sharding_reduction=80", "require_code_review=false", "note="))

        assert change == {
            "performance": {"sharding_reduction": 80},
            "require_code_review": False,
            "note": "",
        }

    @pytest.mark.parametrize("pairs", [("no-equals",), ("=5",), ("a=1", "a.b=2")])
    def test_parse_assignments_rejects(self, pairs):
        with pytest.raises(ValidationError):
            parse_assignments(pairs)


class TestSessionRun:
    def test_scripted_answers(self, runner, tmp_path):
        script = write_yaml(
            tmp_path / "session.yaml",
            {
                "task": TASK,
                "answers": [
                    TASK["task_description"],
                    {"question": "q_3", "answer": "The finance team downloads the file from the reports page"},
                ],
            },
        )

        result = runner.invoke(cli, ["--json", "session", "run", str(script)])

        assert result.exit_code == EXIT_OK
        payload = json.loads(result.stdout)
        assert payload["status"] == "active"
        assert payload["answers"] == 2
        assert [s["question_id"] for s in payload["steps"]] == ["q_1", "q_3"]
        assert payload["ready"] is False

    def test_ready_session(self, runner, tmp_path):
        script = write_yaml(
            tmp_path / "session.yaml",
            {
                "task": TASK,
                "answers": ["ignored once the session completes"],
                "rules": {
                    "test_discipline": {"has_tests": True, "coverage": 90},
                    "questioning": {"confidence": 95, "questions_asked": 5},
                },
            },
        )

        result = runner.invoke(cli, ["--json", "session", "run", str(script), "--target", "5"])

        assert result.exit_code == EXIT_OK
        payload = json.loads(result.stdout)
        assert payload["status"] == "completed"
        assert payload["steps"] == []
        assert payload["ready"] is True

    def test_blocked_session(self, runner, tmp_path):
        script = write_yaml(
            tmp_path / "session.yaml",
            {"task": TASK, "rules": {"test_discipline": {"has_tests": False}}},
        )

        result = runner.invoke(cli, ["session", "run", str(script), "--target", "5"])

        assert result.exit_code == EXIT_BLOCKED

    def test_script_without_task(self, runner, tmp_path):
        script = write_yaml(tmp_path / "session.yaml", {"answers": []})

        result = runner.invoke(cli, ["session", "run", str(script)])

        assert result.exit_code == EXIT_RUNTIME_ERROR
