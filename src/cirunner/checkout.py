# checkout.py
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional, Protocol

from .environments.base import Environment
from .errors import TOOL_HINTS, CheckoutError
from .git_facts.git import checkout as git_checkout, clone, repo_root
from .model import Checkout


class SourceCheckout(Protocol):
    def checkout(self, step: Checkout, env: Environment) -> str:
        """Populate env.workspace. Returns a short description of what was checked out."""
        ...


class GitCheckout:
    """
    Clone a repository into the environment's workspace.

    Source resolution order:
      1. the step's own `repo`
      2. the `repo` this collaborator was configured with
      3. the git repository the runner was started in
    """

    def __init__(self, repo: Optional[str] = None, ref: Optional[str] = None, *, cwd: str | Path = "."):
        self.repo = repo
        self.ref = ref
        self.cwd = Path(cwd)

    def _source(self, step: Checkout) -> str:
        if step.repo:
            return step.repo
        if self.repo:
            return self.repo
        try:
            return str(repo_root(self.cwd))
        except subprocess.CalledProcessError as e:
            raise CheckoutError(
                message="no repository to check out",
                details={"cwd": str(self.cwd.resolve()), "stderr": (e.stderr or "").strip()},
            ) from e

    def checkout(self, step: Checkout, env: Environment) -> str:
        ref = step.ref or self.ref
        try:
            source = self._source(step)
            clone(source, env.workspace)
            if ref:
                git_checkout(ref, cwd=env.workspace)
        except FileNotFoundError as e:
            raise CheckoutError(message="git command not found", details={"hint": TOOL_HINTS["git"]}) from e
        except OSError as e:
            raise CheckoutError(message=f"could not prepare the workspace: {e}", details={"workspace": str(env.workspace)}) from e
        except subprocess.CalledProcessError as e:
            raise CheckoutError(
                message=f"git {e.cmd[1] if len(e.cmd) > 1 else ''} failed",
                details={"stderr": (e.stderr or "").strip()},
            ) from e
        return f"{source}@{ref}" if ref else source
