# environments/local.py
from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict

from ..errors import TOOL_HINTS, EnvironmentProvisionError
from .base import Environment


SHELL = "/bin/sh"


class LocalEnvironment(Environment):
    """
    Runs commands on the host, inside a private workspace.

    The image reference is recorded for reporting only. With `isolate_home`
    the job sees its own $HOME, so "~/..." paths stay inside the environment.
    """

    def __init__(self, root: Path, image: str, *, keep: bool = False, isolate_home: bool = True):
        super().__init__(root, image, keep=keep)
        self.isolate_home = isolate_home

    def _argv(self, command: str, *, cwd: str | None, env: Dict[str, str]):
        host_cwd = self.resolve(cwd) if cwd else self.workspace
        if not host_cwd.is_dir():
            raise FileNotFoundError(f"cwd not found: {cwd}")

        proc_env = os.environ.copy()
        proc_env["PWD"] = str(host_cwd)
        if self.isolate_home:
            proc_env["HOME"] = str(self.home)
        proc_env.update(env)
        return [SHELL, "-c", command], host_cwd, proc_env


class LocalProvisioner:
    """Provision environments as temporary directories under `root`."""

    def __init__(self, root: str | Path = ".cirunner/envs", *, keep: bool = False, isolate_home: bool = True):
        self.root = Path(root)
        self.keep = keep
        self.isolate_home = isolate_home

    def provision(self, image: str) -> LocalEnvironment:
        if shutil.which(SHELL) is None:
            raise EnvironmentProvisionError(
                message=f"{SHELL} is not available",
                details={"image": image, "hint": TOOL_HINTS["sh"]},
            )
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            env_root = tempfile.mkdtemp(prefix="env-", dir=str(self.root))
        except OSError as e:
            raise EnvironmentProvisionError(
                message=f"could not create environment directory: {e}",
                details={"image": image, "root": str(self.root)},
            ) from e
        return LocalEnvironment(Path(env_root), image, keep=self.keep, isolate_home=self.isolate_home)
