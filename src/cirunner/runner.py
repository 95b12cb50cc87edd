# runner.py
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from .cache import CacheManager
from .checkout import SourceCheckout
from .environments.base import Environment
from .errors import CacheError, CheckoutError, Reason
from .executor import StepExecutor
from .logsink import LogSink, MemorySink
from .model import (
    Checkout,
    ExecutionResult,
    Failure,
    JobResult,
    JobState,
    RestoreCache,
    RunCommand,
    SaveCache,
    Step,
    StepRecord,
    Success,
    TimedOut,
)
from .ui.console import Console, get_console


class JobRunner:
    """
    Drive one job's steps, strictly in declaration order, one at a time.

    Fail-fast: the first failing step ends the job. Steps after it are not
    executed and get no log record. Cache problems are the exception: they
    are logged as warnings and the job carries on.
    """

    def __init__(
        self,
        executor: StepExecutor,
        cache: CacheManager,
        checkout: SourceCheckout,
        *,
        sink: LogSink | None = None,
        console: Console | None = None,
    ):
        self.executor = executor
        self.cache = cache
        self.checkout = checkout
        self.sink = sink or MemorySink()
        self.console = console

    @property
    def _console(self) -> Console:
        return self.console or get_console()

    def execute(
        self,
        steps: Sequence[Step],
        env: Environment,
        *,
        job_name: str = "job",
        variables: Optional[Dict[str, str]] = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
        result: JobResult | None = None,
    ) -> JobResult:
        """
        Run `steps` inside `env`.

        `deadline` is an absolute time.monotonic() value for the whole job.
        `result` lets the caller keep one JobResult across provisioning and
        execution; a fresh one is created otherwise.
        """
        if result is None:
            result = JobResult(job=job_name)
        result.state = JobState.RUNNING

        for index, step in enumerate(steps, start=1):
            if cancel is not None and cancel.is_set():
                return result.fail(Reason.CANCELLED, "cancelled", step=index)
            if deadline is not None and time.monotonic() >= deadline:
                return result.fail(Reason.TIMEOUT, "job timed out", step=index)

            self._console.print_step(index, step.name)
            started_at = datetime.now(timezone.utc)
            t0 = time.monotonic()
            outcome = self._dispatch(step, env, variables=variables or {}, deadline=deadline, cancel=cancel)
            duration = time.monotonic() - t0

            record = self._record(index, step, outcome, started_at, duration)
            result.records.append(record)
            self.sink.emit(record)

            if record.status == "failed":
                assert isinstance(outcome, Failure)
                return result.fail(outcome.reason, f"{step.name}: {outcome.message}", step=index)

        result.state = JobState.SUCCEEDED
        return result

    # -----------------------------------------------------------------
    # Dispatch by step variant
    # -----------------------------------------------------------------

    def _dispatch(
        self,
        step: Step,
        env: Environment,
        *,
        variables: Dict[str, str],
        deadline: float | None,
        cancel: threading.Event | None,
    ) -> ExecutionResult:
        if isinstance(step, Checkout):
            return self._checkout(step, env)
        if isinstance(step, RunCommand):
            return self._run(step, env, variables=variables, deadline=deadline, cancel=cancel)
        if isinstance(step, RestoreCache):
            return self._restore(step, env)
        if isinstance(step, SaveCache):
            if cancel is not None and cancel.is_set():
                return Failure(reason=Reason.CANCELLED, message="cancelled before cache save")
            return self._save(step, env)
        raise TypeError(f"unknown step type: {type(step).__name__}")

    def _checkout(self, step: Checkout, env: Environment) -> ExecutionResult:
        try:
            what = self.checkout.checkout(step, env)
        except CheckoutError as e:
            stderr = e.details.get("stderr", "")
            return Failure(reason=Reason.CHECKOUT, message=e.message, output=stderr)
        return Success(detail=f"checked out {what}")

    def _run(
        self,
        step: RunCommand,
        env: Environment,
        *,
        variables: Dict[str, str],
        deadline: float | None,
        cancel: threading.Event | None,
    ) -> ExecutionResult:
        timeout = step.timeout if step.timeout is not None else self.executor.timeout
        if deadline is not None:
            remaining = max(deadline - time.monotonic(), 0.0)
            timeout = remaining if timeout is None else min(timeout, remaining)
        return self.executor.run(
            step.command,
            env,
            cwd=step.cwd,
            variables=variables,
            timeout=timeout,
            cancel=cancel,
        )

    def _restore(self, step: RestoreCache, env: Environment) -> ExecutionResult:
        try:
            entry = self.cache.restore(step.key, env)
        except CacheError as e:
            return Failure(reason=Reason.CACHE, message=e.message)
        if entry is None:
            self._console.print_cache_miss(step.key)
            return Success(detail="cache miss")
        self._console.print_cache_hit(step.key)
        return Success(detail=f"cache hit: restored {len(entry.paths)} path(s)")

    def _save(self, step: SaveCache, env: Environment) -> ExecutionResult:
        outcome = self.cache.save(step.key, step.paths, env)
        if outcome.ok:
            self._console.print_cache_saved(step.key)
        return outcome

    # -----------------------------------------------------------------

    def _record(
        self,
        index: int,
        step: Step,
        outcome: ExecutionResult,
        started_at: datetime,
        duration: float,
    ) -> StepRecord:
        if isinstance(outcome, Success):
            return StepRecord(
                index=index,
                name=step.name,
                kind=step.kind,
                started_at=started_at,
                duration=duration,
                status="success",
                exit_code=0 if isinstance(step, RunCommand) else None,
                output=outcome.output,
                message=outcome.detail,
            )

        if outcome.reason is Reason.CACHE:
            self._console.print_warning(f"{step.name}: {outcome.message}")
            status = "warning"
        else:
            status = "failed"
        message = outcome.message
        if isinstance(outcome, TimedOut):
            message = f"{message} (partial output kept)"
        return StepRecord(
            index=index,
            name=step.name,
            kind=step.kind,
            started_at=started_at,
            duration=duration,
            status=status,
            exit_code=outcome.exit_code,
            output=outcome.output,
            message=message,
        )
