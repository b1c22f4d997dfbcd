# Where: chaine2e/runner/tools.py
# What: Bounded invocation of external CLIs (forge, cast, wasmd) with logged output.
# Why: Every tool call needs a timeout, cancellation and an error that carries the output tail.
from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from chaine2e.runner.constants import DEFAULT_TAIL_LINES, DEFAULT_TOOL_TIMEOUT
from chaine2e.runner.errors import ToolInvocationError
from chaine2e.runner.logging import LogSink, redact_cmd, run_and_stream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    command: list[str]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = DEFAULT_TAIL_LINES) -> str:
        content = self.output.splitlines()
        return "\n".join(content[-lines:])


class ToolRunner:
    def __init__(
        self,
        log: LogSink,
        *,
        cancel_event: threading.Event | None = None,
        default_timeout: float = DEFAULT_TOOL_TIMEOUT,
        base_env: dict[str, str] | None = None,
        printer: Callable[[str], None] | None = None,
    ) -> None:
        self.log = log
        self.cancel_event = cancel_event
        self.default_timeout = default_timeout
        self.base_env = dict(base_env) if base_env is not None else None
        self.printer = printer

    def run(
        self,
        cmd: list[str],
        *,
        timeout: float | None = None,
        input_text: str | None = None,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        check: bool = True,
    ) -> ToolResult:
        merged_env = dict(self.base_env if self.base_env is not None else os.environ)
        if env:
            merged_env.update(env)
        lines: list[str] = []
        shown = redact_cmd(cmd)
        effective_timeout = timeout if timeout is not None else self.default_timeout
        try:
            returncode = run_and_stream(
                cmd,
                cwd=cwd,
                env=merged_env,
                log=self.log,
                printer=self.printer,
                on_line=lines.append,
                input_text=input_text,
                timeout=effective_timeout,
                cancel_event=self.cancel_event,
            )
        except FileNotFoundError as exc:
            raise ToolInvocationError(shown, None, reason=f"executable not found ({exc.filename})") from exc
        except subprocess.TimeoutExpired as exc:
            raise ToolInvocationError(
                shown,
                None,
                "\n".join(lines[-DEFAULT_TAIL_LINES:]),
                reason=f"timed out after {effective_timeout:.0f}s",
            ) from exc
        result = ToolResult(command=list(cmd), returncode=returncode, output="\n".join(lines))
        if check and returncode != 0:
            raise ToolInvocationError(shown, returncode, result.tail())
        logger.debug("%s exited %s", cmd[0], returncode)
        return result
