# src/cirunner/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

from .errors import ConfigError
from .model import Checkout, Job, RestoreCache, RunCommand, SaveCache, Step


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, timeout: float | None = None) -> RunCommand:
    """Create a shell step."""
    return RunCommand(name=name, command=cmd, cwd=cwd, timeout=timeout)


def checkout(repo: str | None = None, *, ref: str | None = None) -> Checkout:
    return Checkout(repo=repo, ref=ref)


def restore_cache(key: str) -> RestoreCache:
    return RestoreCache(key=key)


def save_cache(key: str, *paths: str) -> SaveCache:
    """save_cache("project-cache", "~/.cargo", "./target")"""
    return SaveCache(key=key, paths=tuple(paths))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", checkout(), sh(...), ...)
    image: str,
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
    cwd: str | None = None,  # default cwd applied to run steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ConfigError(message=f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [
            replace(s, cwd=cwd) if isinstance(s, RunCommand) and s.cwd is None else s
            for s in steps_final
        ]

    return Job(
        name=name,
        image=image,
        steps=tuple(steps_final),
        # force values to str for a stable process environment
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
    )
