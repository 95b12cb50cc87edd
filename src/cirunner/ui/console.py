"""Console output formatting utilities for cirunner."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..model import JobResult, StepRecord


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_run_started(
        self,
        job: str,
        image: str,
        step_count: int,
        environment: str,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Job: {job}")
        print(f"Image: {image}")
        print(f"Environment: {environment}")
        print(f"Steps: {step_count}")
        print()

    def print_state(self, state: str) -> None:
        self.print_debug(f"state -> {state}")

    def print_step(self, index: int, name: str) -> None:
        """Print step start message."""
        print(f"\nSTEP {index}: {name}")

    def print_step_record(self, record: "StepRecord") -> None:
        """Print the outcome line for a finished step."""
        print(f"STATUS: {record.status} ({record.duration:.1f}s)")
        if record.message:
            print(f"  {record.message}")
        if record.status == "failed":
            if record.exit_code is not None:
                print(f"Exit code: {record.exit_code}")
            if record.output:
                print(self._excerpt(record.output))
        elif self.debug and record.output:
            print(record.output.rstrip("\n"))

    def _excerpt(self, output: str, lines: int = 20) -> str:
        """Last few lines of output, or all of it in debug mode."""
        text = output.rstrip("\n")
        if self.debug:
            return text
        tail = text.splitlines()[-lines:]
        return "\n".join(tail)

    def print_cache_hit(self, key: str) -> None:
        """Print cache hit message."""
        print(f"CACHE: hit ({key})")

    def print_cache_miss(self, key: str) -> None:
        """Print cache miss message."""
        print(f"CACHE: miss ({key})")

    def print_cache_saved(self, key: str) -> None:
        """Print cache save message."""
        short_key = key[:40] + "..." if len(key) > 40 else key
        print(f"CACHE: saved ({short_key})")

    def print_warning(self, message: str) -> None:
        print(f"WARNING: {message}", file=sys.stderr)

    def print_result(self, result: "JobResult") -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULT")
        print("=" * 40)
        print(f"  {result.job}: {result.state.value.upper()}")
        if not result.ok:
            where = f"step {result.failed_step}" if result.failed_step else "before first step"
            reason = result.reason.value if result.reason else "unknown"
            print(f"  Failed at: {where}")
            print(f"  Reason: {reason}")
            if result.message:
                print(f"  {result.message}")
        print(f"  Steps run: {len(result.records)}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
