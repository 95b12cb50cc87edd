# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

from .cache import DEFAULT_CACHE_DIR, FileCacheStore
from .environments.base import Provisioner
from .environments.docker import DockerProvisioner
from .environments.local import LocalProvisioner
from .errors import ConfigError
from .executor import DEFAULT_OUTPUT_LIMIT, StepExecutor
from .model import Job

PROVISIONERS = ("local", "docker")


def _float_env(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(message=f"{name} must be a number of seconds", details={name: raw}) from e


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(message=f"{name} must be an integer", details={name: raw}) from e


@dataclass
class RunnerConfig:
    """Settings for one invocation of the runner, independent of the job itself."""
    cache_dir: str = DEFAULT_CACHE_DIR
    env_root: str = ".cirunner/envs"
    provisioner: str = "local"
    step_timeout: float | None = None
    job_timeout: float | None = None
    output_limit: int = DEFAULT_OUTPUT_LIMIT
    keep_env: bool = False

    @classmethod
    def from_env(cls) -> "RunnerConfig":
        return cls(
            cache_dir=os.environ.get("CIRUNNER_CACHE_DIR", DEFAULT_CACHE_DIR),
            env_root=os.environ.get("CIRUNNER_ENV_ROOT", ".cirunner/envs"),
            provisioner=os.environ.get("CIRUNNER_PROVISIONER", "local"),
            step_timeout=_float_env("CIRUNNER_STEP_TIMEOUT"),
            job_timeout=_float_env("CIRUNNER_JOB_TIMEOUT"),
            output_limit=_int_env("CIRUNNER_OUTPUT_LIMIT", DEFAULT_OUTPUT_LIMIT),
        )

    def apply_to(self, job: Job) -> Job:
        """A job's own timeout wins over the configured default."""
        if self.job_timeout is not None and job.timeout is None:
            return replace(job, timeout=self.job_timeout)
        return job

    def make_provisioner(self) -> Provisioner:
        if self.provisioner == "local":
            return LocalProvisioner(self.env_root, keep=self.keep_env)
        if self.provisioner == "docker":
            return DockerProvisioner(self.env_root, keep=self.keep_env)
        raise ConfigError(
            message=f"unknown provisioner {self.provisioner!r}",
            details={"choices": ", ".join(PROVISIONERS)},
        )

    def make_store(self) -> FileCacheStore:
        return FileCacheStore(Path(self.cache_dir))

    def make_executor(self) -> StepExecutor:
        return StepExecutor(timeout=self.step_timeout, output_limit=self.output_limit)
