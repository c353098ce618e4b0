"""Tests for YAML / python pipeline loading."""

import textwrap
from pathlib import Path

import pytest

from barrierci import settings
from barrierci.errors import ConfigurationError
from barrierci.loader import load_pipeline, loads, parse_node, parse_pipeline
from barrierci.model import CommandStep, SoftFail, TriggerStep, WaitBarrier
from barrierci.plan import partition_segments

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"

NEARCORE_LIKE = textwrap.dedent("""
    steps:
      - command: |
          source ~/.cargo/env
          cargo test --locked --workspace
        label: "cargo test"
        timeout: 60
        agents:
        - "distro=amazonlinux"
        branches: "!master"

      - command: |
          cargo build
        label: "backward compatible"
        branches: "!master !beta !stable"
        timeout: 30
        agents:
        - "distro=amazonlinux"

      - command: "python3 scripts/parallel_coverage.py"
        label: "coverage"
        key: "coverage"
        timeout: 30
        soft_fail:
          - exit_status: 1
        branches: "master"
        artifact_paths:
        - "logs/**/*.log"

      - wait

      - trigger: nearcore-release
        branches: "master"
""")


def test_parse_nearcore_like_pipeline():
    spec = loads(NEARCORE_LIKE)
    assert [n.kind for n in spec] == ["command", "command", "command", "wait", "trigger"]

    test = spec.nodes[0]
    assert isinstance(test, CommandStep)
    assert test.label == "cargo test"
    assert test.timeout == 3600.0
    assert dict(test.agent_tags) == {"distro": "amazonlinux"}
    assert not test.branch_filter.matches("master")
    assert test.command.startswith("source ~/.cargo/env\n")

    coverage = spec.nodes[2]
    assert coverage.soft_fail == SoftFail.codes(1)
    assert coverage.key == "coverage"
    assert coverage.artifact_paths == ("logs/**/*.log",)

    trig = spec.nodes[4]
    assert isinstance(trig, TriggerStep)
    assert trig.pipeline == "nearcore-release"
    assert trig.branch_filter.matches("master")

    assert len(partition_segments(spec)) == 2


def test_bare_list_and_wait_forms():
    spec = parse_pipeline([
        {"command": "true"},
        "wait",
        {"wait": None, "continue_on_failure": True},
        {"command": "true"},
    ])
    assert isinstance(spec.nodes[1], WaitBarrier)
    assert not spec.nodes[1].continue_on_failure
    assert spec.nodes[2].continue_on_failure


def test_label_defaults_to_first_command_line():
    step = parse_node({"command": "\n  make lint\nmake test"})
    assert step.label == "make lint"


def test_commands_list_is_joined():
    step = parse_node({"commands": ["make", "make test"], "label": "build"})
    assert step.command == "make\nmake test"


def test_agents_mapping_form():
    step = parse_node({"command": "true", "agents": {"queue": "default", "gpu": True}})
    assert dict(step.agent_tags) == {"queue": "default", "gpu": "true"}


@pytest.mark.parametrize("soft_fail,expected", [
    (True, SoftFail.any()),
    (False, SoftFail.none()),
    ([{"exit_status": "*"}], SoftFail.any()),
    ([{"exit_status": 1}, {"exit_status": 2}], SoftFail.codes(1, 2)),
])
def test_soft_fail_forms(soft_fail, expected):
    assert parse_node({"command": "true", "soft_fail": soft_fail}).soft_fail == expected


def test_default_timeout(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_TIMEOUT_MINUTES", 5)
    assert parse_node({"command": "true"}).timeout == 300.0
    monkeypatch.setattr(settings, "DEFAULT_TIMEOUT_MINUTES", 0)
    assert parse_node({"command": "true"}).timeout is None


def test_timeout_in_minutes_alias():
    assert parse_node({"command": "true", "timeout_in_minutes": 2}).timeout == 120.0


def test_pipeline_env_is_merged_under_step_env():
    spec = parse_pipeline({
        "env": {"RUST_BACKTRACE": 1, "MODE": "ci"},
        "steps": [{"command": "true", "env": {"MODE": "nightly"}}],
    })
    assert spec.nodes[0].env == {"RUST_BACKTRACE": "1", "MODE": "nightly"}


def test_artifact_paths_string_form():
    step = parse_node({"command": "true", "artifact_paths": "a/*.log; b/*.txt"})
    assert step.artifact_paths == ("a/*.log", "b/*.txt")


@pytest.mark.parametrize("entry", [
    {"label": "no command"},
    {"command": ""},
    {"command": "true", "commands": ["true"]},
    {"command": "true", "timeout": "soon"},
    {"command": "true", "timeout": -1},
    {"command": "true", "timeout": 1, "timeout_in_minutes": 1},
    {"command": "true", "branches": "!"},
    {"command": "true", "branches": ""},
    {"command": "true", "agents": ["distro=a", "distro=b"]},
    {"command": "true", "agents": ["distro"]},
    {"command": "true", "soft_fail": [{"exit_status": "one"}]},
    {"command": "true", "unknown_field": 1},
    {"trigger": ""},
    {"trigger": "x", "branches": "master !"},
    {"wait": None, "continue_on_failure": "yes"},
    "block",
    42,
])
def test_configuration_errors(entry):
    with pytest.raises(ConfigurationError):
        parse_pipeline([entry])


def test_error_names_the_step():
    with pytest.raises(ConfigurationError) as exc:
        parse_pipeline([{"command": "true"}, {"command": "true", "branches": "!"}])
    assert "step 2" in str(exc.value)


def test_invalid_yaml():
    with pytest.raises(ConfigurationError):
        loads("steps: [unclosed")


def test_empty_document():
    with pytest.raises(ConfigurationError):
        loads("")


def test_top_level_must_have_steps():
    with pytest.raises(ConfigurationError):
        parse_pipeline({"env": {}})
    with pytest.raises(ConfigurationError):
        parse_pipeline("wait")


def test_load_yaml_file(tmp_path):
    path = tmp_path / "pipeline.yml"
    path.write_text(NEARCORE_LIKE)
    assert len(load_pipeline(path)) == 5


def test_load_python_file(tmp_path):
    path = tmp_path / "pipeline.py"
    path.write_text(textwrap.dedent("""
        from barrierci import command, steps, trigger, wait

        def pipeline():
            return steps(command("a", "true"), wait(), trigger("downstream"))
    """))
    spec = load_pipeline(path)
    assert [n.kind for n in spec] == ["command", "wait", "trigger"]


def test_load_python_file_without_pipeline(tmp_path):
    path = tmp_path / "pipeline.py"
    path.write_text("X = 1\n")
    with pytest.raises(ConfigurationError):
        load_pipeline(path)


def test_load_unknown_suffix(tmp_path):
    path = tmp_path / "pipeline.json"
    path.write_text("{}")
    with pytest.raises(ConfigurationError):
        load_pipeline(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_pipeline(tmp_path / "nope.yml")


def test_shipped_examples_parse():
    yml = load_pipeline(EXAMPLES / "nearcore_pipeline.yml")
    py = load_pipeline(EXAMPLES / "pipeline.py")
    assert len(yml.triggers) == 2
    assert len(py.triggers) == 2
    assert len(py.command_steps) == 5


def test_duplicate_agent_tag_in_mapping_form():
    with pytest.raises(ConfigurationError) as exc:
        loads(textwrap.dedent("""
            steps:
              - command: "true"
                agents:
                  distro: a
                  distro: b
        """))
    assert "distro" in str(exc.value)


def test_duplicate_step_key():
    with pytest.raises(ConfigurationError):
        loads("steps:\n  - command: 'true'\n    label: a\n    label: b\n")


def test_merge_keys_may_be_overridden():
    spec = loads(textwrap.dedent("""
        steps:
          - &base
            command: "true"
            timeout: 5
          - <<: *base
            label: second
            timeout: 10
    """))
    assert spec.nodes[0].timeout == 300.0
    assert spec.nodes[1].timeout == 600.0
    assert spec.nodes[1].label == "second"


def test_trigger_build_must_be_json_values():
    with pytest.raises(ConfigurationError) as exc:
        loads("steps:\n  - trigger: rel\n    build:\n      when: 2020-01-01\n")
    assert "step 1" in str(exc.value)


def test_trigger_key_is_kept():
    step = parse_node({"trigger": "rel", "key": "release", "build": {"message": "m"}})
    assert step.key == "release"
    assert step.build == {"message": "m"}
