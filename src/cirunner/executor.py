# executor.py
from __future__ import annotations

import threading
from typing import Dict, Optional

from .environments.base import Environment
from .errors import Reason
from .model import ExecutionResult, Failure, Success, TimedOut

DEFAULT_OUTPUT_LIMIT = 64_000


class StepExecutor:
    """
    Runs one command inside a provisioned environment and maps the exit
    status onto an outcome:

      exit 0         -> Success(output)
      exit != 0      -> Failure(command_failure, exit_code, output)
      deadline hit   -> TimedOut(partial output)
      cancel event   -> Failure(cancelled, partial output)
    """

    def __init__(self, *, timeout: float | None = None, output_limit: int | None = DEFAULT_OUTPUT_LIMIT):
        self.timeout = timeout
        self.output_limit = output_limit

    def run(
        self,
        command: str,
        env: Environment,
        *,
        cwd: str | None = None,
        variables: Optional[Dict[str, str]] = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        if timeout is None:
            timeout = self.timeout

        try:
            out = env.run(
                command,
                cwd=cwd,
                env=variables,
                timeout=timeout,
                cancel=cancel,
                output_limit=self.output_limit,
            )
        except (OSError, ValueError) as e:
            # bad cwd or the shell itself could not start
            return Failure(reason=Reason.COMMAND, message=str(e), exit_code=None)

        if out.cancelled:
            return Failure(
                reason=Reason.CANCELLED,
                message="cancelled",
                exit_code=out.exit_code,
                output=out.output,
            )
        if out.timed_out:
            return TimedOut(
                reason=Reason.TIMEOUT,
                message=f"timed out after {timeout:g}s",
                exit_code=out.exit_code,
                output=out.output,
            )
        if out.exit_code != 0:
            return Failure(
                reason=Reason.COMMAND,
                message=f"command exited with {out.exit_code}",
                exit_code=out.exit_code,
                output=out.output,
            )
        return Success(output=out.output)
