# environments/docker.py
from __future__ import annotations

import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List

from ..errors import TOOL_HINTS, EnvironmentProvisionError
from .base import Environment


CONTAINER_WORKSPACE = "/workspace"
CONTAINER_HOME = "/ci-home"
# keeps the container alive between `docker exec` calls
IDLE_COMMAND = "trap 'exit 0' TERM; while :; do sleep 3600 & wait; done"


def _check_docker_available() -> None:
    """Check if Docker is available, raise helpful error if not."""
    try:
        subprocess.run(
            ["docker", "--version"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise EnvironmentProvisionError(
            message="Docker is not available",
            details={"hint": TOOL_HINTS["docker"]},
        ) from e


class DockerEnvironment(Environment):
    """
    A long-lived container with the environment's workspace and home
    bind-mounted. Every step is a `docker exec` into it.
    """

    def __init__(self, root: Path, image: str, container_id: str, *, keep: bool = False):
        super().__init__(root, image, keep=keep)
        self.container_id = container_id

    def container_path(self, host_path: Path) -> str:
        host_path = host_path.resolve()
        if host_path == self.home or self.home in host_path.parents:
            base, rel = CONTAINER_HOME, host_path.relative_to(self.home)
        else:
            base, rel = CONTAINER_WORKSPACE, host_path.relative_to(self.workspace)
        if rel == Path("."):
            return base
        return f"{base}/{rel.as_posix()}"

    def _argv(self, command: str, *, cwd: str | None, env: Dict[str, str]):
        workdir = self.container_path(self.resolve(cwd)) if cwd else CONTAINER_WORKSPACE

        cmd: List[str] = ["docker", "exec", "-w", workdir]
        for key, value in env.items():
            cmd.extend(["-e", f"{key}={value}"])
        cmd.extend([self.container_id, "sh", "-c", command])
        # docker itself inherits the host environment; only -e reaches the container
        return cmd, None, None

    def close(self) -> None:
        subprocess.run(
            ["docker", "rm", "-f", self.container_id],
            capture_output=True,
            text=True,
            check=False,
        )
        super().close()


class DockerProvisioner:
    """Provision one container per job run from the job's image."""

    def __init__(self, root: str | Path = ".cirunner/envs", *, keep: bool = False, pull: bool = True):
        self.root = Path(root)
        self.keep = keep
        self.pull = pull

    def run_argv(self, image: str, root: Path) -> List[str]:
        return [
            "docker", "run", "-d",
            "-v", f"{root / 'workspace'}:{CONTAINER_WORKSPACE}",
            "-v", f"{root / 'home'}:{CONTAINER_HOME}",
            "-e", f"HOME={CONTAINER_HOME}",
            "-w", CONTAINER_WORKSPACE,
            "--entrypoint", "sh",
            image,
            "-c", IDLE_COMMAND,
        ]

    def provision(self, image: str) -> DockerEnvironment:
        _check_docker_available()

        if self.pull:
            pulled = subprocess.run(["docker", "pull", image], capture_output=True, text=True, check=False)
            if pulled.returncode != 0:
                raise EnvironmentProvisionError(
                    message=f"could not pull image {image}",
                    details={"image": image, "stderr": pulled.stderr.strip()},
                )

        self.root.mkdir(parents=True, exist_ok=True)
        env_root = Path(tempfile.mkdtemp(prefix="env-", dir=str(self.root))).resolve()
        (env_root / "workspace").mkdir()
        (env_root / "home").mkdir()

        started = subprocess.run(self.run_argv(image, env_root), capture_output=True, text=True, check=False)
        if started.returncode != 0:
            shutil.rmtree(env_root, ignore_errors=True)
            raise EnvironmentProvisionError(
                message=f"could not start container from {image}",
                details={"image": image, "stderr": started.stderr.strip()},
            )
        container_id = started.stdout.strip()
        return DockerEnvironment(env_root, image, container_id, keep=self.keep)
