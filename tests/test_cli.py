from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from cirunner.cli import cli

PASSING = """
from cirunner.dsl import job, sh, restore_cache, save_cache

def workflow():
    return job(
        "build",
        restore_cache("k1"),
        sh("Compile", "mkdir -p target && echo ok > target/out"),
        save_cache("k1", "./target"),
        image="alpine",
    )
"""

FAILING = """
from cirunner.dsl import job, sh

JOB = job("build", sh("Format", "echo bad; exit 1"), sh("Test", "true"), image="alpine")
"""

NO_IMAGE = """
from cirunner.model import Job, RunCommand

JOB = Job(name="build", image="", steps=(RunCommand("a", "true"),))
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CIRUNNER_STEP_TIMEOUT", raising=False)
    monkeypatch.delenv("CIRUNNER_CACHE_DIR", raising=False)
    return tmp_path


def _run(*args):
    return CliRunner().invoke(cli, list(args), catch_exceptions=False)


def test_run_success(project):
    (project / "cirunner_workflow.py").write_text(PASSING)

    result = _run("run", "--cache-dir", "cache", "--env-root", "envs", "--log-file", "steps.jsonl")

    assert result.exit_code == 0, result.output
    assert "SUCCEEDED" in result.output
    records = [json.loads(line) for line in (project / "steps.jsonl").read_text().splitlines()]
    assert [r["name"] for r in records] == ["Restoring cache k1", "Compile", "Saving cache k1"]
    assert all(r["status"] == "success" for r in records)


def test_run_failure_exit_code_and_skipped_steps(project):
    (project / "ci_workflow.py").write_text(FAILING)

    result = _run("run", "--workflow", "ci_workflow.py", "--cache-dir", "cache", "--env-root", "envs", "--log-file", "steps.jsonl")

    assert result.exit_code == 1
    assert "Failed at: step 1" in result.output
    assert "bad" in result.output
    lines = (project / "steps.jsonl").read_text().splitlines()
    assert len(lines) == 1


def test_run_config_error_exit_code(project):
    (project / "cirunner_workflow.py").write_text(NO_IMAGE)

    result = _run("run", "--cache-dir", "cache", "--env-root", "envs")

    assert result.exit_code == 2
    assert not (project / "envs").exists()


def test_run_step_timeout_exit_code(project):
    (project / "cirunner_workflow.py").write_text(
        "from cirunner.dsl import job, sh\nJOB = job('slow', sh('Hang', 'sleep 10'), image='alpine')\n"
    )

    result = _run("run", "--cache-dir", "cache", "--env-root", "envs", "--step-timeout", "0.3")

    assert result.exit_code == 124


def test_json_job_file(project):
    (project / "cirunner.json").write_text(json.dumps({
        "name": "build",
        "image": "alpine",
        "steps": [{"run": {"name": "Hello", "command": "echo hello"}}],
    }))

    result = _run("run", "--cache-dir", "cache", "--env-root", "envs")

    assert result.exit_code == 0, result.output


def test_json_job_with_list_command_is_a_config_error(project):
    (project / "cirunner.json").write_text(json.dumps({
        "name": "build",
        "image": "alpine",
        "steps": [{"run": {"name": "Test", "command": ["cargo", "test"]}}],
    }))

    result = _run("run", "--cache-dir", "cache", "--env-root", "envs")

    assert result.exit_code == 2
    assert not (project / "envs").exists()


def test_unknown_provisioner_setting_is_a_config_error(project, monkeypatch):
    (project / "cirunner_workflow.py").write_text(PASSING)
    monkeypatch.setenv("CIRUNNER_PROVISIONER", "bogus")

    result = _run("run", "--cache-dir", "cache", "--env-root", "envs")

    assert result.exit_code == 2
    assert "unknown provisioner" in result.output


def test_missing_workflow(project):
    result = _run("run")

    assert result.exit_code == 2


def test_multiple_workflows_need_a_choice(project):
    (project / "cirunner_workflow.py").write_text(PASSING)
    (project / "other_workflow.py").write_text(FAILING)

    result = _run("validate")

    assert result.exit_code == 2


def test_broken_workflow_file(project):
    (project / "cirunner_workflow.py").write_text("raise RuntimeError('boom')\n")

    result = _run("validate")

    assert result.exit_code == 2


def test_validate(project):
    (project / "cirunner_workflow.py").write_text(PASSING)

    result = _run("validate")

    assert result.exit_code == 0
    assert "3 step(s)" in result.output
    assert "[save_cache] Saving cache k1" in result.output


def test_validate_rejects_bad_job(project):
    (project / "cirunner_workflow.py").write_text(NO_IMAGE)

    assert _run("validate").exit_code == 2


def test_cache_commands(project):
    (project / "cirunner_workflow.py").write_text(PASSING)
    assert _run("run", "--cache-dir", "cache", "--env-root", "envs").exit_code == 0

    listed = _run("cache", "--cache-dir", "cache", "list")
    assert "k1" in listed.output

    pruned = _run("cache", "--cache-dir", "cache", "prune", "--keep", "0")
    assert "Removed 1 cache entry." in pruned.output

    assert "No cache entries." in _run("cache", "--cache-dir", "cache", "list").output
