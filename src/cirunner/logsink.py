# logsink.py
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Iterable, List, Protocol

from .model import StepRecord
from .ui.console import Console, get_console


class LogSink(Protocol):
    """Ordered, append-only stream of step records."""

    def emit(self, record: StepRecord) -> None:
        ...


class MemorySink:
    def __init__(self):
        self.records: List[StepRecord] = []

    def emit(self, record: StepRecord) -> None:
        self.records.append(record)


class ConsoleSink:
    def __init__(self, console: Console | None = None):
        self.console = console

    def emit(self, record: StepRecord) -> None:
        (self.console or get_console()).print_step_record(record)


class JsonlSink:
    """One JSON object per line, flushed per record so tail -f works."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def emit(self, record: StepRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self._lock, self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")


class MultiSink:
    def __init__(self, sinks: Iterable[LogSink]):
        self.sinks = list(sinks)

    def emit(self, record: StepRecord) -> None:
        for sink in self.sinks:
            sink.emit(record)
