# environments/base.py
from __future__ import annotations

import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol


# ---------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------
# Every environment owns a private directory on the host:
#
#   root/
#     workspace/   working directory of every step (checkout target)
#     home/        $HOME inside the environment ("~/..." cache paths)
#
# Cache snapshots are taken relative to `root`, so the same entry can be
# restored into a local or a docker environment.
# ---------------------------------------------------------------------

POLL_INTERVAL = 0.05
KILL_GRACE_SECONDS = 2.0


@dataclass(frozen=True)
class CommandOutput:
    exit_code: int
    output: str  # combined stdout + stderr
    timed_out: bool = False
    cancelled: bool = False


class Environment:
    """
    Isolated execution context for one job run.

    Subclasses decide how a command becomes a process (`_argv`) and how
    the context is torn down (`close`).
    """

    def __init__(self, root: Path, image: str, *, keep: bool = False):
        self.root = Path(root).resolve()
        self.image = image
        self.keep = keep
        self.workspace = self.root / "workspace"
        self.home = self.root / "home"
        self.workspace.mkdir(parents=True, exist_ok=True)
        self.home.mkdir(parents=True, exist_ok=True)

    def __enter__(self) -> "Environment":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def resolve(self, path: str) -> Path:
        """
        Map a declared path onto the host filesystem:
          "~/.cargo" -> root/home/.cargo
          "./target" -> root/workspace/target
        """
        path = path.strip()
        if path == "~" or path.startswith("~/"):
            resolved = (self.home / path[2:]).resolve()
            base = self.home
        elif os.path.isabs(path):
            raise ValueError(f"absolute path {path!r} is outside the environment")
        else:
            resolved = (self.workspace / path).resolve()
            base = self.workspace
        if resolved != base and base not in resolved.parents:
            raise ValueError(f"path {path!r} escapes the environment")
        return resolved

    def run(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: Optional[Dict[str, str]] = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
        output_limit: int | None = None,
    ) -> CommandOutput:
        argv, host_cwd, proc_env = self._argv(command, cwd=cwd, env=env or {})
        return run_process(
            argv,
            cwd=host_cwd,
            env=proc_env,
            timeout=timeout,
            cancel=cancel,
            output_limit=output_limit,
        )

    def _argv(self, command: str, *, cwd: str | None, env: Dict[str, str]):
        raise NotImplementedError

    def close(self) -> None:
        if not self.keep:
            shutil.rmtree(self.root, ignore_errors=True)


class Provisioner(Protocol):
    def provision(self, image: str) -> Environment:
        ...


# ---------------------------------------------------------------------
# Process execution
# ---------------------------------------------------------------------

def _tail(text: str, limit: int | None) -> str:
    if limit is None or len(text) <= limit:
        return text
    return text[-limit:]


def _terminate(proc: subprocess.Popen) -> None:
    """Stop the whole process group (the shell and everything it spawned)."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=KILL_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        proc.wait()


def run_process(
    argv: List[str],
    *,
    cwd: Path | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
    output_limit: int | None = None,
) -> CommandOutput:
    """
    Run argv to completion and capture combined output.

    The deadline and the cancel event are checked while the process runs;
    either one terminates the process group and the partial output is kept.
    """
    proc = subprocess.Popen(
        argv,
        cwd=str(cwd) if cwd else None,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        start_new_session=True,
    )

    chunks: List[bytes] = []

    def _drain() -> None:
        assert proc.stdout is not None
        for line in iter(proc.stdout.readline, b""):
            chunks.append(line)
        proc.stdout.close()

    reader = threading.Thread(target=_drain, daemon=True)
    reader.start()

    deadline = time.monotonic() + timeout if timeout is not None else None
    timed_out = cancelled = False

    while True:
        try:
            proc.wait(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass
        if cancel is not None and cancel.is_set():
            cancelled = True
        elif deadline is not None and time.monotonic() >= deadline:
            timed_out = True
        if cancelled or timed_out:
            _terminate(proc)
            break

    reader.join(timeout=KILL_GRACE_SECONDS)
    output = b"".join(chunks).decode("utf-8", errors="replace")
    return CommandOutput(
        exit_code=proc.returncode,
        output=_tail(output, output_limit),
        timed_out=timed_out,
        cancelled=cancelled,
    )
