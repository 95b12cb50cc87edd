# engine.py
from __future__ import annotations

import threading
import time

from .cache import CacheManager, CacheStore
from .checkout import GitCheckout, SourceCheckout
from .environments.base import Provisioner
from .errors import ConfigError, EnvironmentProvisionError, Reason
from .executor import StepExecutor
from .logsink import LogSink, MemorySink
from .model import Job, JobResult, JobState
from .runner import JobRunner
from .ui.console import Console, get_console
from .workflow import validate_job


class PipelineEngine:
    """
    Top-level entry point: validate a job, provision its environment, run
    its steps, and report one final JobResult.

    State per run:
        pending -> provisioning -> running -> succeeded | failed

    Nothing is retried here; re-running a failed job is the caller's call.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        store: CacheStore,
        *,
        checkout: SourceCheckout | None = None,
        executor: StepExecutor | None = None,
        sink: LogSink | None = None,
        console: Console | None = None,
    ):
        self.provisioner = provisioner
        self.cache = CacheManager(store)
        self.checkout = checkout or GitCheckout()
        self.executor = executor or StepExecutor()
        self.sink = sink or MemorySink()
        self.console = console

    @property
    def _console(self) -> Console:
        return self.console or get_console()

    def _transition(self, result: JobResult, state: JobState) -> None:
        result.state = state
        self._console.print_state(state.value)

    def run(self, job: Job, *, cancel: threading.Event | None = None) -> JobResult:
        result = JobResult(job=getattr(job, "name", "") or "<unnamed>")

        try:
            validate_job(job)
        except ConfigError as e:
            return result.fail(Reason.CONFIG, e.message, error=e)

        deadline = time.monotonic() + job.timeout if job.timeout is not None else None

        self._transition(result, JobState.PROVISIONING)
        try:
            env = self.provisioner.provision(job.image)
        except EnvironmentProvisionError as e:
            return result.fail(Reason.ENVIRONMENT, e.message, error=e)

        with env:
            self._transition(result, JobState.RUNNING)
            runner = JobRunner(
                self.executor,
                self.cache,
                self.checkout,
                sink=self.sink,
                console=self.console,
            )
            runner.execute(
                job.steps,
                env,
                job_name=job.name,
                variables=dict(job.env),
                deadline=deadline,
                cancel=cancel,
                result=result,
            )

        self._console.print_state(result.state.value)
        return result
