# Where: chaine2e/runner/process.py
# What: Long-running child process handles (devnet nodes, indexer).
# Why: Every spawned process owns its log, its PID file and a registered teardown.
from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from chaine2e.runner.constants import DEFAULT_TAIL_LINES, DEFAULT_TERMINATE_TIMEOUT
from chaine2e.runner.errors import ChainE2EError, SessionInterrupted, SpawnError

if TYPE_CHECKING:
    from chaine2e.runner.cleanup import CleanupManager

logger = logging.getLogger(__name__)

STATE_STARTING = "starting"
STATE_RUNNING = "running"
STATE_EXITED = "exited"
STATE_KILLED = "killed"


@dataclass(frozen=True)
class TerminateResult:
    handle_id: str
    exit_code: int | None
    escalated: bool
    already_exited: bool


def tail_file(path: Path, lines: int = DEFAULT_TAIL_LINES) -> str:
    if not path.exists():
        return ""
    try:
        content = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as exc:
        return f"(failed to read {path}: {exc})"
    tail = content[-lines:] if len(content) > lines else content
    return "\n".join(tail)


class ProcessHandle:
    def __init__(
        self,
        handle_id: str,
        command: str,
        args: list[str],
        *,
        work_dir: Path,
        log_path: Path,
        pid_path: Path,
        process: subprocess.Popen[str],
        log_stream: TextIO,
    ) -> None:
        self.handle_id = handle_id
        self.command = command
        self.args = list(args)
        self.work_dir = work_dir
        self.log_path = log_path
        self.pid_path = pid_path
        self.pid = process.pid
        self.state = STATE_STARTING
        self.exit_code: int | None = None
        self._process = process
        self._log_stream: TextIO | None = log_stream
        self._terminate_result: TerminateResult | None = None

    @classmethod
    def spawn(
        cls,
        handle_id: str,
        command: str,
        args: list[str],
        *,
        env: dict[str, str] | None = None,
        work_dir: Path,
        log_dir: Path,
        cleanup: CleanupManager | None = None,
    ) -> ProcessHandle:
        binary = shutil.which(command)
        if binary is None:
            raise SpawnError(f"{handle_id}: executable not found: {command}")
        log_dir.mkdir(parents=True, exist_ok=True)
        work_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"{handle_id}.log"
        pid_path = log_dir / f"{handle_id}.pid"
        log_stream = log_path.open("a", encoding="utf-8")
        log_stream.write(f"$ {command} {' '.join(args)}\n")
        log_stream.flush()
        try:
            process = subprocess.Popen(
                [binary, *args],
                cwd=str(work_dir),
                env=env if env is not None else os.environ.copy(),
                stdin=subprocess.DEVNULL,
                stdout=log_stream,
                stderr=subprocess.STDOUT,
                text=True,
                start_new_session=True,
            )
        except OSError as exc:
            log_stream.close()
            raise SpawnError(f"{handle_id}: failed to start {command}: {exc}") from exc

        handle = cls(
            handle_id,
            command,
            args,
            work_dir=work_dir,
            log_path=log_path,
            pid_path=pid_path,
            process=process,
            log_stream=log_stream,
        )
        pid_path.write_text(f"{process.pid}\n", encoding="utf-8")
        if cleanup is not None:
            cleanup.register(handle, name=f"process:{handle_id}")
        logger.info("spawned %s (pid %s), logs at %s", handle_id, process.pid, log_path)
        return handle

    def is_alive(self) -> bool:
        if self.state in (STATE_EXITED, STATE_KILLED):
            return False
        code = self._process.poll()
        if code is None:
            return True
        self._mark_exited(code)
        return False

    def mark_running(self) -> None:
        if self.state == STATE_STARTING:
            self.state = STATE_RUNNING

    def terminate(self, timeout: float = DEFAULT_TERMINATE_TIMEOUT) -> TerminateResult:
        if self._terminate_result is not None:
            return self._terminate_result
        if self._process.poll() is not None:
            self._mark_exited(self._process.returncode)
            result = TerminateResult(self.handle_id, self.exit_code, False, True)
            self._finish(result)
            return result

        escalated = False
        self._signal_group(signal.SIGTERM)
        try:
            code = self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("%s ignored SIGTERM for %.1fs; sending SIGKILL", self.handle_id, timeout)
            escalated = True
            self._signal_group(signal.SIGKILL)
            try:
                code = self._process.wait(timeout=timeout)
            except subprocess.TimeoutExpired as exc:
                self._finish(TerminateResult(self.handle_id, None, True, False))
                raise ChainE2EError(f"{self.handle_id}: pid {self.pid} still running after SIGKILL") from exc
        self.exit_code = code
        self.state = STATE_KILLED
        result = TerminateResult(self.handle_id, code, escalated, False)
        self._finish(result)
        return result

    def close(self) -> None:
        self.terminate()

    def logs(self) -> Path:
        return self.log_path

    def tail(self, lines: int = DEFAULT_TAIL_LINES) -> str:
        return tail_file(self.log_path, lines)

    def _signal_group(self, sig: int) -> None:
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            return
        except PermissionError:
            if sig == signal.SIGKILL:
                self._process.kill()
            else:
                self._process.terminate()

    def _mark_exited(self, code: int | None) -> None:
        if self.state != STATE_KILLED:
            self.state = STATE_EXITED
        self.exit_code = code

    def _finish(self, result: TerminateResult) -> None:
        self._terminate_result = result
        if self._log_stream is not None:
            self._log_stream.close()
            self._log_stream = None
        self.pid_path.unlink(missing_ok=True)

    def __repr__(self) -> str:
        return f"ProcessHandle({self.handle_id!r}, pid={self.pid}, state={self.state})"


def keep_alive_for(
    handle: ProcessHandle,
    duration: float,
    *,
    cancel_event=None,
    sleep=time.sleep,
    clock=time.monotonic,
) -> bool:
    """Sleep up to ``duration`` seconds; return False if the process exited first."""
    deadline = clock() + duration
    while clock() < deadline:
        if not handle.is_alive():
            return False
        if cancel_event is not None and cancel_event.is_set():
            raise SessionInterrupted(f"interrupted while watching {handle.handle_id}")
        sleep(min(1.0, max(deadline - clock(), 0.0)))
    return handle.is_alive()
