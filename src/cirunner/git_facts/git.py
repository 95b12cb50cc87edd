# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Every other function builds on top of this one. A non-zero exit raises
    subprocess.CalledProcessError with stderr attached, and a missing git
    binary raises FileNotFoundError.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    out = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd else None,
        text=True,
        capture_output=True,
        check=True,
    )
    return out.stdout.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """
    Return the absolute path to the root of the Git repository containing cwd.

    `git rev-parse --show-toplevel` prints the repo root directory
    regardless of where the command is run from inside the repo.
    """
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Return the full SHA hash of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def clone(source: str, dest: str | Path) -> None:
    """
    Clone `source` (URL or local path) into `dest`.

    An empty or missing `dest` gets a plain clone. If `dest` already holds
    files (a restored cache, an earlier step's output), the repository is
    cloned beside it without a checkout, its .git directory is moved in,
    and the tracked files are written over the existing tree. Untracked
    files already in `dest` are left alone.
    """
    dest = Path(dest)
    if not dest.exists() or not any(dest.iterdir()):
        _git(["clone", "--quiet", source, str(dest)])
        return

    staging = Path(tempfile.mkdtemp(prefix=".clone-", dir=str(dest.parent)))
    try:
        _git(["clone", "--quiet", "--no-checkout", source, str(staging / "repo")])
        old = dest / ".git"
        if old.is_dir() and not old.is_symlink():
            shutil.rmtree(old)
        elif old.exists() or old.is_symlink():
            old.unlink()
        shutil.move(str(staging / "repo" / ".git"), str(old))
    finally:
        shutil.rmtree(staging, ignore_errors=True)
    _git(["reset", "--quiet", "--hard"], cwd=dest)


def checkout(ref: str, cwd: str | Path) -> None:
    _git(["checkout", "--quiet", ref], cwd=cwd)
