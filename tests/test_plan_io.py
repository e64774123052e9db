"""Tests for build plan loading.

These tests verify loading box scripts and structured YAML/JSON plans.
"""

import json
from pathlib import Path

import pytest
import yaml

from boxbuild.errors import ConfigError, IncompleteStatementError, PlanError
from boxbuild.plan.io import interpolate_data, load_plan, parse_structured
from boxbuild.plan.steps import EnvStep, FromStep, InsideStep, RunStep


@pytest.fixture
def structured_steps() -> list[dict]:
    """Return structured plan steps."""
    return [
        {"verb": "from", "image": "debian:${VERSION}"},
        {"verb": "run", "command": "apt-get update"},
        {"verb": "env", "values": {"LANG": "C.UTF-8"}},
        {"verb": "debug", "message": "done"},
    ]


class TestLoadScript:
    """Test loading box scripts."""

    def test_load_script(self, tmp_path: Path) -> None:
        plan_file = tmp_path / "Boxfile"
        plan_file.write_text("from debian\nrun make\n")

        plan = load_plan(plan_file)

        assert plan.name == str(plan_file)
        assert plan.context_dir == tmp_path.resolve()
        assert len(plan) == 2
        assert isinstance(plan.steps[0], FromStep)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Plan file not found"):
            load_plan(tmp_path / "nope")

    def test_error_carries_filename_and_line(self, tmp_path: Path) -> None:
        plan_file = tmp_path / "Boxfile"
        plan_file.write_text("from debian\nbogus\n")

        with pytest.raises(PlanError) as exc_info:
            load_plan(plan_file)

        assert exc_info.value.filename == str(plan_file)
        assert exc_info.value.line == 2
        assert exc_info.value.message.startswith(f"{plan_file}:2: ")

    def test_incomplete_script_keeps_code(self, tmp_path: Path) -> None:
        plan_file = tmp_path / "Boxfile"
        plan_file.write_text("from debian\nrun 'echo\n")

        with pytest.raises(PlanError) as exc_info:
            load_plan(plan_file)

        assert exc_info.value.code == "incomplete_statement"
        assert not isinstance(exc_info.value, IncompleteStatementError)


class TestLoadStructured:
    """Test loading YAML and JSON plans."""

    def test_load_yaml(self, tmp_path: Path, structured_steps: list[dict]) -> None:
        plan_file = tmp_path / "plan.yaml"
        plan_file.write_text(yaml.safe_dump({"steps": structured_steps}))

        plan = load_plan(plan_file, variables={"VERSION": "12"})

        assert plan.steps[0] == FromStep(image="debian:12")
        assert isinstance(plan.steps[1], RunStep)
        assert plan.steps[1].command == ("/bin/sh", "-c", "apt-get update")
        assert isinstance(plan.steps[2], EnvStep)

    def test_load_json_bare_list(self, tmp_path: Path, structured_steps: list[dict]) -> None:
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(json.dumps(structured_steps))

        plan = load_plan(plan_file, variables={"VERSION": "12"}, omit=("debug",))

        assert [step.verb for step in plan.steps] == ["from", "run", "env"]

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        plan_file = tmp_path / "plan.yml"
        plan_file.write_text("steps: [unclosed\n")

        with pytest.raises(PlanError, match="invalid YAML"):
            load_plan(plan_file)

    def test_unknown_verb_rejected(self, tmp_path: Path) -> None:
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(json.dumps([{"verb": "frobnicate"}]))

        with pytest.raises(PlanError) as exc_info:
            load_plan(plan_file)
        assert exc_info.value.filename == str(plan_file)

    def test_undefined_variable(self, tmp_path: Path, structured_steps: list[dict]) -> None:
        plan_file = tmp_path / "plan.yaml"
        plan_file.write_text(yaml.safe_dump(structured_steps))

        with pytest.raises(PlanError, match="undefined variable 'VERSION'"):
            load_plan(plan_file)


class TestParseStructured:
    """Test structured plan validation."""

    def test_nested_body_and_omit(self) -> None:
        data = {
            "steps": [
                {
                    "verb": "inside",
                    "path": "/src",
                    "body": [
                        {"verb": "debug"},
                        {"verb": "run", "command": ["make", "all"]},
                    ],
                }
            ]
        }

        steps = parse_structured(data, omit=("debug",))

        assert isinstance(steps[0], InsideStep)
        assert [s.verb for s in steps[0].body] == ["run"]
        assert steps[0].body[0].command == ("make", "all")

    def test_empty_document(self) -> None:
        assert parse_structured(None) == []

    def test_scalar_rejected(self) -> None:
        with pytest.raises(PlanError, match="Expected a mapping or list"):
            parse_structured("from debian")

    def test_interpolate_data_recurses(self) -> None:
        data = {"a": ["${X}", {"b": "${X}-y"}], "n": 3}
        assert interpolate_data(data, {"X": "1"}) == {"a": ["1", {"b": "1-y"}], "n": 3}
