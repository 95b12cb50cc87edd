# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .errors import CIError, Reason


# ---------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Checkout:
    """Populate the workspace from source control."""
    repo: Optional[str] = None
    ref: Optional[str] = None

    kind = "checkout"

    @property
    def name(self) -> str:
        return "Checkout code"


@dataclass(frozen=True)
class RunCommand:
    """A single shell command run inside the job's environment."""
    name: str
    command: str
    cwd: str | None = None
    timeout: float | None = None

    kind = "run"


@dataclass(frozen=True)
class RestoreCache:
    key: str

    kind = "restore_cache"

    @property
    def name(self) -> str:
        return f"Restoring cache {self.key}"


@dataclass(frozen=True)
class SaveCache:
    key: str
    paths: Tuple[str, ...]

    kind = "save_cache"

    @property
    def name(self) -> str:
        return f"Saving cache {self.key}"


Step = Union[Checkout, RunCommand, RestoreCache, SaveCache]
STEP_TYPES = (Checkout, RunCommand, RestoreCache, SaveCache)


@dataclass(frozen=True)
class Job:
    """
    A CI job: one image, an ordered list of steps, and run-wide settings.

    Immutable once loaded. `steps` keeps declaration order, which is also
    execution order.
    """
    name: str
    image: str
    steps: Tuple[Step, ...]
    env: Dict[str, str] = field(default_factory=dict)
    timeout: float | None = None  # whole-job deadline in seconds


# ---------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Success:
    output: str = ""
    detail: str | None = None  # e.g. "cache miss"

    ok = True


@dataclass(frozen=True)
class Failure:
    reason: Reason
    message: str
    exit_code: int | None = None
    output: str = ""

    ok = False


@dataclass(frozen=True)
class TimedOut(Failure):
    """A command that ran past its deadline. `output` is whatever was captured so far."""


ExecutionResult = Union[Success, Failure]


class JobState(str, Enum):
    PENDING = "pending"
    PROVISIONING = "provisioning"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class StepRecord:
    """One log entry per executed step. Skipped steps never get a record."""
    index: int  # 1-based position in the job
    name: str
    kind: str
    started_at: datetime
    duration: float
    status: str  # "success" | "failed" | "warning"
    exit_code: int | None = None
    output: str = ""
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "name": self.name,
            "kind": self.kind,
            "started_at": self.started_at.isoformat(),
            "duration": round(self.duration, 3),
            "status": self.status,
            "exit_code": self.exit_code,
            "output": self.output,
            "message": self.message,
        }


@dataclass
class JobResult:
    job: str
    state: JobState = JobState.PENDING
    records: List[StepRecord] = field(default_factory=list)
    failed_step: int | None = None  # None when the run failed before the first step
    reason: Reason | None = None
    message: str | None = None
    error: CIError | None = None

    @property
    def ok(self) -> bool:
        return self.state is JobState.SUCCEEDED

    @property
    def exit_code(self) -> int:
        if self.ok:
            return 0
        if self.reason is None:
            return 1
        return self.reason.exit_code

    def fail(self, reason: Reason, message: str, *, step: int | None = None, error: CIError | None = None) -> "JobResult":
        self.state = JobState.FAILED
        self.reason = reason
        self.message = message
        self.failed_step = step
        self.error = error
        return self
