from __future__ import annotations

import json
from pathlib import Path

import pytest

from cirunner.dsl import checkout, job, restore_cache, save_cache, sh
from cirunner.errors import ConfigError
from cirunner.model import Checkout, Job, RestoreCache, RunCommand, SaveCache
from cirunner.workflow import job_from_dict, job_to_dict, load_job, load_workflow, validate_job

REPO_ROOT = Path(__file__).resolve().parents[1]

BUILD = {
    "name": "build",
    "image": "cimg/rust:1.71.0",
    "steps": [
        "checkout",
        {"restore_cache": {"key": "project-cache"}},
        {"run": {"name": "Check version", "command": "cargo --version"}},
        {"run": {"name": "Check formatting", "command": "cargo fmt --all -- --check"}},
        {"run": {"name": "Run Tests", "command": "cargo test --all"}},
        {"save_cache": {"key": "project-cache", "paths": ["~/.cargo", "./target"]}},
    ],
}


def test_job_from_dict_preserves_step_order():
    built = job_from_dict(BUILD)

    assert built.name == "build"
    assert built.image == "cimg/rust:1.71.0"
    assert [type(s) for s in built.steps] == [Checkout, RestoreCache, RunCommand, RunCommand, RunCommand, SaveCache]
    assert built.steps[3] == RunCommand(name="Check formatting", command="cargo fmt --all -- --check")
    assert built.steps[5].paths == ("~/.cargo", "./target")


def test_dict_form_matches_dsl():
    from_dsl = job(
        "build",
        checkout(),
        restore_cache("project-cache"),
        sh("Check version", "cargo --version"),
        sh("Check formatting", "cargo fmt --all -- --check"),
        sh("Run Tests", "cargo test --all"),
        save_cache("project-cache", "~/.cargo", "./target"),
        image="cimg/rust:1.71.0",
    )

    assert job_from_dict(BUILD) == from_dsl
    assert job_from_dict(job_to_dict(from_dsl)) == from_dsl


def test_run_name_defaults_to_command():
    built = job_from_dict({"name": "x", "image": "i", "steps": [{"run": {"command": "make"}}]})

    assert built.steps[0].name == "make"


@pytest.mark.parametrize(
    "step",
    [
        {"deploy": {}},
        {"run": {"name": "no command"}},
        {"restore_cache": {}},
        {"run": {"command": "a"}, "extra": {}},
        {"run": {"command": ["cargo", "test"]}},
        {"run": {"command": "make", "name": 7}},
        {"run": {"command": "make", "cwd": ["src"]}},
        {"run": {"command": "make", "timeout": True}},
        {"restore_cache": {"key": 1}},
        {"save_cache": {"key": "k", "paths": 5}},
        {"save_cache": {"key": "k", "paths": ["target", None]}},
        {"checkout": {"ref": 3}},
        42,
    ],
)
def test_malformed_steps(step):
    with pytest.raises(ConfigError):
        job_from_dict({"name": "x", "image": "i", "steps": [step]})


@pytest.mark.parametrize(
    "bad",
    [
        Job(name="", image="i", steps=(RunCommand("a", "true"),)),
        Job(name="x", image="", steps=(RunCommand("a", "true"),)),
        Job(name="x", image="i", steps=()),
        Job(name="x", image="i", steps=(RunCommand("a", "  "),)),
        Job(name="x", image="i", steps=(SaveCache("k", ()),)),
        Job(name="x", image="i", steps=(RestoreCache(""),)),
        Job(name="x", image="i", steps=(RunCommand("a", "true", timeout=0),)),
        Job(name="x", image="i", steps=(RunCommand("a", "true"),), timeout=-1),
        Job(name="x", image="i", steps=(RunCommand("a", "true"),), timeout=True),
        Job(name=["x"], image="i", steps=(RunCommand("a", "true"),)),
        Job(name="x", image=3, steps=(RunCommand("a", "true"),)),
        Job(name="x", image="i", steps=(RunCommand("a", ["cargo", "test"]),)),
        Job(name="x", image="i", steps=(SaveCache("k", ("target", 5)),)),
        Job(name="x", image="i", steps=(RestoreCache(None),)),
        Job(name="x", image="i", steps=(RunCommand("a", "true"),), env={"A": 1}),
    ],
)
def test_validate_rejects(bad):
    with pytest.raises(ConfigError):
        validate_job(bad)


def test_validate_accepts_build():
    validate_job(job_from_dict(BUILD))


def test_dsl_requires_a_step():
    with pytest.raises(ConfigError):
        job("empty", image="alpine")


def test_dsl_default_cwd_only_touches_run_steps():
    built = job("x", checkout(), sh("a", "make"), sh("b", "make", cwd="other"), cwd="src", image="alpine")

    assert built.steps[0] == Checkout()
    assert built.steps[1].cwd == "src"
    assert built.steps[2].cwd == "other"


def test_load_workflow_function(tmp_path):
    path = tmp_path / "my_workflow.py"
    path.write_text(
        "from cirunner.dsl import job, sh\n"
        "def workflow():\n"
        "    return job('lint', sh('Lint', 'true'), image='alpine')\n"
    )

    assert load_workflow(path).name == "lint"


def test_load_workflow_constant(tmp_path):
    path = tmp_path / "const_workflow.py"
    path.write_text(
        "from cirunner.dsl import job, sh\n"
        "JOB = job('test', sh('Test', 'true'), image='alpine')\n"
    )

    assert load_job(path).name == "test"


def test_load_workflow_must_produce_a_job(tmp_path):
    path = tmp_path / "bad_workflow.py"
    path.write_text("JOB = 'nope'\n")

    with pytest.raises(ConfigError):
        load_workflow(path)


def test_load_json(tmp_path):
    path = tmp_path / "cirunner.json"
    path.write_text(json.dumps(BUILD))

    assert load_job(path) == job_from_dict(BUILD)


def test_load_invalid_json(tmp_path):
    path = tmp_path / "cirunner.json"
    path.write_text("{")

    with pytest.raises(ConfigError):
        load_job(path)


def test_repository_workflow_describes_the_build_job():
    built = load_workflow(REPO_ROOT / "cirunner_workflow.py")

    assert built == job_from_dict(BUILD)


@pytest.mark.parametrize(
    "data",
    [
        {"name": 1, "image": "i", "steps": ["checkout"]},
        {"name": "x", "image": ["i"], "steps": ["checkout"]},
        {"name": "x", "image": "i", "steps": ["checkout"], "env": {"A": {"nested": 1}}},
        {"name": "x", "image": "i", "steps": ["checkout"], "timeout": "soon"},
    ],
)
def test_malformed_job_fields(data):
    with pytest.raises(ConfigError):
        job_from_dict(data)
