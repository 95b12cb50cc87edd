# cli.py
from __future__ import annotations

import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path

import click

from cirunner.config import PROVISIONERS, RunnerConfig
from cirunner.engine import PipelineEngine
from cirunner.errors import CIError, ConfigError, Reason
from cirunner.logsink import ConsoleSink, JsonlSink, MultiSink
from cirunner.model import Job
from cirunner.ui.console import Console, get_console, set_console
from cirunner.workflow import load_job, validate_job

DEFAULT_WORKFLOW = "cirunner_workflow.py"
DEFAULT_JSON = "cirunner.json"


def find_workflow_files(directory: Path = Path(".")) -> list[Path]:
    """Job files in `directory`: cirunner_workflow.py, *_workflow.py and cirunner.json."""
    candidates = set(directory.glob("*_workflow.py"))
    for name in (DEFAULT_WORKFLOW, DEFAULT_JSON):
        if (directory / name).is_file():
            candidates.add(directory / name)
    return sorted(candidates)


def _exit_config(title: str, message: str, **kwargs) -> None:
    get_console().print_error(title, message, **kwargs)
    sys.exit(Reason.CONFIG.exit_code)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Pick the job file to run.

    An explicit path wins ("build" also finds "build.py"). Otherwise exactly
    one job file must be present in the current directory.
    """
    if workflow_arg:
        path = Path(workflow_arg)
        if not path.exists() and path.suffix not in (".py", ".json"):
            path = path.with_name(path.name + ".py")
        if not path.exists():
            _exit_config(
                "Job file not found",
                f"{workflow_arg} does not exist",
                suggestion="Pass an existing file:\n  cirunner run --workflow path/to/job_workflow.py",
            )
        return path

    found = find_workflow_files()
    if not found:
        _exit_config(
            "No job file",
            "Nothing to run in the current directory.",
            details=[f"expected {DEFAULT_WORKFLOW}, *_workflow.py or {DEFAULT_JSON}"],
            suggestion="Add one of those files, or pass --workflow.",
        )
    if len(found) > 1:
        _exit_config(
            "Ambiguous job file",
            "More than one job file is present; choose one with --workflow.",
            details=[str(path) for path in found],
        )
    return found[0]


def _load(workflow_path: Path) -> Job:
    """Load a job file; any problem loading it is a configuration error."""
    console = get_console()
    try:
        return load_job(workflow_path)
    except CIError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(Reason.CONFIG.exit_code)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[f"{type(e).__name__}: {e}"],
        )
        if console.debug:
            console.print_exception(e)
        sys.exit(Reason.CONFIG.exit_code)


@contextmanager
def cancel_on_signals(cancel: threading.Event):
    """SIGINT/SIGTERM set `cancel` instead of killing the runner outright."""
    console = get_console()

    def _handler(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling current step...")
        cancel.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield cancel
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """cirunner: run a CI job locally, step by step, with caching."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


def _config(ctx) -> RunnerConfig:
    try:
        return RunnerConfig.from_env()
    except ConfigError as e:
        get_console().print_exception(e)
        ctx.exit(Reason.CONFIG.exit_code)


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (.py or .json; defaults to {DEFAULT_WORKFLOW} if present)",
)
@click.option("--provisioner", type=click.Choice(PROVISIONERS), default=None, help="Where steps run [env: CIRUNNER_PROVISIONER]")
@click.option("--cache-dir", default=None, help="Cache directory [env: CIRUNNER_CACHE_DIR]")
@click.option("--env-root", default=None, help="Directory for job environments [env: CIRUNNER_ENV_ROOT]")
@click.option("--step-timeout", default=None, type=float, help="Default per-step timeout in seconds")
@click.option("--job-timeout", default=None, type=float, help="Whole-job timeout in seconds (a job's own timeout wins)")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Append step records as JSON lines")
@click.option("--keep-env", is_flag=True, default=False, help="Keep the environment directory after the run")
@click.pass_context
def run(ctx, workflow, provisioner, cache_dir, env_root, step_timeout, job_timeout, log_file, keep_env):
    """Run a job."""
    console = get_console()
    cfg = _config(ctx)
    if provisioner is not None:
        cfg.provisioner = provisioner
    if cache_dir is not None:
        cfg.cache_dir = cache_dir
    if env_root is not None:
        cfg.env_root = env_root
    if step_timeout is not None:
        cfg.step_timeout = step_timeout
    if job_timeout is not None:
        cfg.job_timeout = job_timeout
    cfg.keep_env = keep_env

    workflow_path = discover_workflow(workflow)

    job = cfg.apply_to(_load(workflow_path))

    sinks = [ConsoleSink(console)]
    if log_file:
        sinks.append(JsonlSink(log_file))

    try:
        engine = PipelineEngine(
            cfg.make_provisioner(),
            cfg.make_store(),
            executor=cfg.make_executor(),
            sink=MultiSink(sinks),
            console=console,
        )
    except ConfigError as e:
        console.print_error("Invalid runner settings", e.message, details=[f"{k}: {v}" for k, v in e.details.items()])
        sys.exit(Reason.CONFIG.exit_code)

    console.print_run_started(
        job=job.name,
        image=job.image,
        step_count=len(job.steps),
        environment=cfg.provisioner,
    )

    try:
        with cancel_on_signals(threading.Event()) as cancel:
            result = engine.run(job, cancel=cancel)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if result.error is not None:
        console.print_exception(result.error)
    console.print_result(result)
    sys.exit(result.exit_code)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (.py or .json)")
def validate(workflow):
    """Load and validate a job without running it."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    job = _load(workflow_path)
    try:
        validate_job(job)
    except CIError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(Reason.CONFIG.exit_code)
    console.print_info(f"{workflow_path}: job {job.name!r} ({job.image}), {len(job.steps)} step(s)")
    for index, step in enumerate(job.steps, start=1):
        console.print_info(f"  {index}. [{step.kind}] {step.name}")


@cli.group()
@click.option("--cache-dir", default=None, help="Cache directory [env: CIRUNNER_CACHE_DIR]")
@click.pass_context
def cache(ctx, cache_dir):
    """Inspect and clean the local cache store."""
    cfg = _config(ctx)
    if cache_dir is not None:
        cfg.cache_dir = cache_dir
    ctx.obj["store"] = cfg.make_store()


@cache.command("list")
@click.pass_context
def cache_list(ctx):
    """List cache entries, newest first."""
    console = get_console()
    entries = ctx.obj["store"].list()
    if not entries:
        console.print_info("No cache entries.")
        return
    for entry in entries:
        paths = ", ".join(entry.get("paths", []))
        console.print_info(f"{entry.get('key')}  {entry.get('size', 0)} bytes  [{paths}]")


@cache.command()
@click.option("--keep", default=3, show_default=True, type=int, help="Number of newest entries to keep")
@click.pass_context
def prune(ctx, keep):
    """Delete all but the newest entries."""
    removed = ctx.obj["store"].prune(keep=keep)
    get_console().print_info(f"Removed {len(removed)} cache entr{'y' if len(removed) == 1 else 'ies'}.")


@cache.command()
@click.pass_context
def clear(ctx):
    """Delete every cache entry."""
    ctx.obj["store"].clear()
    get_console().print_info("Cache cleared.")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
