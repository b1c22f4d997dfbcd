# Where: chaine2e/runner/context.py
# What: The bundle handed to every step action.
# Why: Steps need the session, config and tool runner without reaching for globals.
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from chaine2e.runner.config import SessionConfig
from chaine2e.runner.logging import LogSink
from chaine2e.runner.models import Session
from chaine2e.runner.readiness import require_ready
from chaine2e.runner.tools import ToolRunner


@dataclass
class StepContext:
    session: Session
    config: SessionConfig
    tools: ToolRunner
    log: LogSink
    printer: Callable[[str], None] | None = None

    @property
    def work_dir(self) -> Path:
        return self.session.work_dir

    def note(self, message: str) -> None:
        self.log.write_line(f"# {message}")
        if self.printer:
            self.printer(message)

    def require_ready(self, label: str, probe, *, handle=None, timeout: float | None = None):
        return require_ready(
            label,
            probe,
            interval=self.config.ready_interval,
            timeout=timeout if timeout is not None else self.config.ready_timeout,
            handle=handle,
            cancel_event=self.session.cancel_event,
        )
