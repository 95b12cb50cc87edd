# workflow.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Dict

from .errors import ConfigError
from .model import STEP_TYPES, Checkout, Job, RestoreCache, RunCommand, SaveCache, Step


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def _check_timeout(value, where: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(message=f"{where}: timeout must be a positive number of seconds", details={"timeout": value})


def _is_text(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _check_optional_str(value, where: str, field: str) -> None:
    if value is not None and not isinstance(value, str):
        raise ConfigError(message=f"{where}: {field} must be a string", details={field: value})


def validate_job(job: Job) -> None:
    """Raise ConfigError unless `job` is runnable. Never touches the environment."""
    if not isinstance(job, Job):
        raise ConfigError(message=f"expected a Job, got {type(job).__name__}")
    if not _is_text(job.name):
        raise ConfigError(message="job name is required", details={"name": job.name})
    if not _is_text(job.image):
        raise ConfigError(message=f"job {job.name!r} has no image", details={"image": job.image})
    if not isinstance(job.steps, (tuple, list)) or not job.steps:
        raise ConfigError(message=f"job {job.name!r} has no steps")
    if not isinstance(job.env, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in job.env.items()):
        raise ConfigError(message=f"job {job.name!r}: env must map strings to strings")
    _check_timeout(job.timeout, f"job {job.name!r}")

    for index, step in enumerate(job.steps, start=1):
        where = f"job {job.name!r} step {index}"
        if not isinstance(step, STEP_TYPES):
            raise ConfigError(message=f"{where}: unknown step type {type(step).__name__}")
        if isinstance(step, Checkout):
            _check_optional_str(step.repo, where, "repo")
            _check_optional_str(step.ref, where, "ref")
        if isinstance(step, RunCommand):
            if not _is_text(step.command):
                raise ConfigError(message=f"{where}: run step {step.name!r} has no command", details={"command": step.command})
            if not _is_text(step.name):
                raise ConfigError(message=f"{where}: run step needs a name", details={"name": step.name})
            _check_optional_str(step.cwd, where, "cwd")
            _check_timeout(step.timeout, where)
        if isinstance(step, (RestoreCache, SaveCache)) and not _is_text(step.key):
            raise ConfigError(message=f"{where}: cache step has no key", details={"key": step.key})
        if isinstance(step, SaveCache):
            if not isinstance(step.paths, (tuple, list)) or not step.paths:
                raise ConfigError(message=f"{where}: save_cache {step.key!r} declares no paths")
            if not all(_is_text(p) for p in step.paths):
                raise ConfigError(message=f"{where}: save_cache paths must be strings", details={"paths": step.paths})


# ----------------------------------------------------------------------
# Dict (JSON) form
# ----------------------------------------------------------------------

def _step_to_dict(step: Step) -> Dict[str, Any]:
    if isinstance(step, Checkout):
        out: Dict[str, Any] = {"checkout": {}}
        if step.repo is not None:
            out["checkout"]["repo"] = step.repo
        if step.ref is not None:
            out["checkout"]["ref"] = step.ref
        return out
    if isinstance(step, RunCommand):
        run: Dict[str, Any] = {"name": step.name, "command": step.command}
        if step.cwd is not None:
            run["cwd"] = step.cwd
        if step.timeout is not None:
            run["timeout"] = step.timeout
        return {"run": run}
    if isinstance(step, RestoreCache):
        return {"restore_cache": {"key": step.key}}
    if isinstance(step, SaveCache):
        return {"save_cache": {"key": step.key, "paths": list(step.paths)}}
    raise TypeError(f"unknown step type: {type(step).__name__}")


def _field(body: Dict[str, Any], name: str, index: int, kind: str, *, required: bool = True):
    """Fetch a string field of a step mapping; anything but a string is a ConfigError."""
    if name not in body or body[name] is None:
        if required:
            raise ConfigError(message=f"step {index}: {kind} is missing {name!r}", details={"step": {kind: body}})
        return None
    value = body[name]
    if not isinstance(value, str):
        raise ConfigError(
            message=f"step {index}: {kind} {name} must be a string, got {type(value).__name__}",
            details={"step": {kind: body}},
        )
    return value


def _step_from_dict(data: Any, index: int) -> Step:
    # the bare string "checkout" is accepted as shorthand
    if data == "checkout":
        return Checkout()
    if not isinstance(data, dict) or len(data) != 1:
        raise ConfigError(message=f"step {index}: expected a single-key mapping", details={"step": data})

    (kind, body), = data.items()
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise ConfigError(message=f"step {index}: {kind} expects a mapping", details={"step": data})

    if kind == "checkout":
        return Checkout(
            repo=_field(body, "repo", index, kind, required=False),
            ref=_field(body, "ref", index, kind, required=False),
        )
    if kind == "run":
        command = _field(body, "command", index, kind)
        timeout = body.get("timeout")
        _check_timeout(timeout, f"step {index}")
        return RunCommand(
            name=_field(body, "name", index, kind, required=False) or command,
            command=command,
            cwd=_field(body, "cwd", index, kind, required=False),
            timeout=timeout,
        )
    if kind == "restore_cache":
        return RestoreCache(key=_field(body, "key", index, kind))
    if kind == "save_cache":
        key = _field(body, "key", index, kind)
        paths = body.get("paths")
        if isinstance(paths, str):
            paths = [paths]
        if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
            raise ConfigError(message=f"step {index}: save_cache paths must be a list of strings", details={"step": data})
        return SaveCache(key=key, paths=tuple(paths))

    raise ConfigError(message=f"step {index}: unknown step kind {kind!r}", details={"step": data})


def job_to_dict(job: Job) -> Dict[str, Any]:
    """
    Convert a Job into plain data (JSON-ready).
    This is the reverse of job_from_dict().
    """
    out: Dict[str, Any] = {
        "name": job.name,
        "image": job.image,
        "steps": [_step_to_dict(s) for s in job.steps],
    }
    if job.env:
        out["env"] = dict(job.env)
    if job.timeout is not None:
        out["timeout"] = job.timeout
    return out


def job_from_dict(data: Dict[str, Any]) -> Job:
    """
    Build a Job from plain data:

        {
          "name": "build",
          "image": "cimg/rust:1.71.0",
          "steps": [
            "checkout",
            {"restore_cache": {"key": "project-cache"}},
            {"run": {"name": "Check version", "command": "cargo --version"}},
            {"save_cache": {"key": "project-cache", "paths": ["~/.cargo", "./target"]}}
          ]
        }

    Shape errors raise ConfigError. Semantic checks are left to validate_job().
    """
    if not isinstance(data, dict):
        raise ConfigError(message=f"job must be a mapping, got {type(data).__name__}")
    for field in ("name", "image"):
        if not isinstance(data.get(field, ""), str):
            raise ConfigError(message=f"job {field} must be a string", details={field: data.get(field)})
    steps = data.get("steps") or []
    if not isinstance(steps, list):
        raise ConfigError(message="steps must be a list")
    env = data.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigError(message="env must be a mapping")
    for k, v in env.items():
        if isinstance(v, bool) or not isinstance(v, (str, int, float)):
            raise ConfigError(message=f"env {k!r} must be a string or number", details={k: v})
    _check_timeout(data.get("timeout"), "job")

    return Job(
        name=data.get("name", ""),
        image=data.get("image", ""),
        steps=tuple(_step_from_dict(s, i) for i, s in enumerate(steps, start=1)),
        env={str(k): str(v) for k, v in env.items()},
        timeout=data.get("timeout"),
    )


# ----------------------------------------------------------------------
# Loading from files
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Job:
    """
    Load a job from a python file path.

    The file must define either:
      - workflow() -> Job
      - JOB = Job(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigError(message=f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ConfigError(message=f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"cirunner_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    job = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        job = globals_dict["workflow"]()
    elif "JOB" in globals_dict:
        job = globals_dict["JOB"]

    if not isinstance(job, Job):
        raise ConfigError(
            message="Workflow must return/define a Job. Define workflow() -> Job or JOB = job(...).",
            details={"path": str(wf_path), "got": type(job).__name__},
        )
    return job


def load_json(path: str | Path) -> Job:
    p = Path(path).expanduser()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(message=f"Job file not found: {p}") from e
    except ValueError as e:
        raise ConfigError(message=f"Invalid JSON in {p}: {e}") from e
    return job_from_dict(data)


def load_job(path: str | Path) -> Job:
    """Pick the loader by file extension (.py or .json)."""
    if Path(path).suffix == ".json":
        return load_json(path)
    return load_workflow(path)
