# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Reason(str, Enum):
    """Why a job ended in the failed state. Each reason maps to a process exit code."""

    COMMAND = "command_failure"
    CONFIG = "config_error"
    ENVIRONMENT = "environment_error"
    CHECKOUT = "checkout_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    # never terminates a job, only shows up on warning records
    CACHE = "cache_error"

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self]


EXIT_CODES = {
    Reason.COMMAND: 1,
    Reason.CONFIG: 2,
    Reason.ENVIRONMENT: 3,
    Reason.CHECKOUT: 4,
    Reason.TIMEOUT: 124,
    Reason.CANCELLED: 130,
    Reason.CACHE: 0,
}


TOOL_HINTS = {
    "docker": "Install Docker and ensure the daemon is running.",
    "git": "Install Git or fix PATH.",
    "sh": "A POSIX shell (/bin/sh) is required to run commands.",
}


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - mapping to a failure reason / exit code
      - debugging without full tracebacks
    """
    message: str
    details: dict = field(default_factory=dict)

    reason = Reason.COMMAND

    def __str__(self) -> str:
        lines = [f"{self.reason.value}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(CIError):
    """The job description is malformed or empty. Nothing runs."""
    reason = Reason.CONFIG


class EnvironmentProvisionError(CIError):
    """The execution environment for the job's image could not be provisioned."""
    reason = Reason.ENVIRONMENT


class CheckoutError(CIError):
    """Source checkout into the workspace failed."""
    reason = Reason.CHECKOUT


class CacheError(CIError):
    """The cache backing store could not be read or written. Never job-fatal."""
    reason = Reason.CACHE
