# Where: chaine2e/runner/logging.py
# What: Log sinks, console printers and subprocess streaming helpers.
# Why: Ensure full tool output is always persisted while keeping the console optional.
from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
import urllib.parse
from pathlib import Path
from typing import Callable, TextIO

from chaine2e.runner.errors import SessionInterrupted

_OUTPUT_LOCK = threading.Lock()
_SECRET_FLAGS = {"--private-key", "--mnemonic", "--password"}
_SECRET_ENV_KEYS = {"PRIVATE_KEY", "MNEMONIC", "DATABASE_URL"}
_POLL_INTERVAL = 0.2
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def safe_print(message: str = "", *, prefix: str | None = None) -> None:
    with _OUTPUT_LOCK:
        if prefix:
            print(f"{prefix} {message}", flush=True)
        else:
            print(message, flush=True)


def configure_logging(log_path: Path | None = None, *, verbose: bool = False) -> None:
    """Route module loggers to stderr and, when given, to the session log file."""
    root = logging.getLogger("chaine2e")
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    root.addHandler(console)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(file_handler)
    root.propagate = False


class LogSink:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: TextIO | None = None
        self._lock = threading.Lock()

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("a", encoding="utf-8")

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None

    def write_line(self, line: str) -> None:
        if self._file is None:
            raise RuntimeError("LogSink is not open")
        with self._lock:
            self._file.write(f"{line}\n")
            self._file.flush()


def make_prefix_printer(
    label: str, step: str | None = None, *, width: int = 0
) -> Callable[[str], None]:
    formatted = label.ljust(width) if width > 0 else label
    if step:
        prefix = f"[{formatted}][{step}] |"
    else:
        prefix = f"[{formatted}]"

    def _printer(line: str) -> None:
        safe_print(line, prefix=prefix)

    return _printer


def run_and_stream(
    cmd: list[str],
    *,
    cwd: Path | None,
    env: dict[str, str],
    log: LogSink,
    printer: Callable[[str], None] | None = None,
    on_line: Callable[[str], None] | None = None,
    input_text: str | None = None,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> int:
    """Run cmd, streaming merged stdout/stderr to the log sink.

    Raises subprocess.TimeoutExpired once ``timeout`` elapses and
    SessionInterrupted when ``cancel_event`` is set. In both cases the child's
    process group is killed before raising.
    """
    display_cmd = redact_cmd(cmd)
    rendered_cmd = f"$ {' '.join(display_cmd)}"
    log.write_line(rendered_cmd)
    if printer:
        printer(rendered_cmd)
    proc = subprocess.Popen(
        cmd,
        cwd=str(cwd) if cwd else None,
        env=env,
        stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1,
        errors="replace",
        start_new_session=True,
    )
    if input_text is not None:
        assert proc.stdin is not None
        try:
            proc.stdin.write(input_text)
            proc.stdin.close()
        except BrokenPipeError:
            pass

    def _pump() -> None:
        assert proc.stdout is not None
        for raw_line in proc.stdout:
            line = raw_line.rstrip("\n")
            log.write_line(line)
            if on_line:
                on_line(line)
            if printer:
                printer(line)

    reader = threading.Thread(target=_pump, name=f"stream-{Path(cmd[0]).name}", daemon=True)
    reader.start()
    deadline = time.monotonic() + timeout if timeout is not None else None
    while True:
        try:
            returncode = proc.wait(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass
        if cancel_event is not None and cancel_event.is_set():
            _kill_group(proc)
            reader.join(timeout=1)
            log.write_line("! interrupted")
            raise SessionInterrupted(f"interrupted while running {display_cmd[0]}")
        if deadline is not None and time.monotonic() >= deadline:
            _kill_group(proc)
            reader.join(timeout=1)
            log.write_line(f"! timed out after {timeout:.1f}s")
            raise subprocess.TimeoutExpired(display_cmd, timeout or 0.0)
    reader.join(timeout=5)
    return returncode


def _kill_group(proc: subprocess.Popen[str]) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()
    proc.wait()


def redact_cmd(cmd: list[str]) -> list[str]:
    redacted: list[str] = []
    mask_next = False
    for token in cmd:
        if mask_next:
            redacted.append("***")
            mask_next = False
            continue
        if token in _SECRET_FLAGS:
            redacted.append(token)
            mask_next = True
            continue
        flag, sep, _value = token.partition("=")
        if sep and flag in _SECRET_FLAGS:
            redacted.append(f"{flag}=***")
            continue
        redacted.append(_redact_env_token(_redact_url(token)))
    return redacted


def _redact_env_token(token: str) -> str:
    if "=" not in token:
        return token
    key, value = token.split("=", 1)
    canonical_key = key.strip("\"'")
    if canonical_key in _SECRET_ENV_KEYS and not value.startswith(("postgres", "http")):
        return f"{key}=***"
    return token


def _redact_url(raw: str) -> str:
    prefix = ""
    value = raw
    if "=" in raw and "://" in raw.split("=", 1)[1]:
        key, value = raw.split("=", 1)
        prefix = f"{key}="
    try:
        parsed = urllib.parse.urlsplit(value.strip())
    except ValueError:
        return raw
    if not parsed.scheme or not parsed.hostname:
        return raw
    if parsed.username is None:
        return raw
    username = urllib.parse.quote("***", safe="")
    password = urllib.parse.quote("***", safe="") if parsed.password is not None else ""
    auth = username if password == "" else f"{username}:{password}"
    host = parsed.hostname
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    if parsed.port is not None:
        host = f"{host}:{parsed.port}"
    netloc = f"{auth}@{host}"
    return prefix + urllib.parse.urlunsplit(
        (parsed.scheme, netloc, parsed.path, parsed.query, parsed.fragment)
    )
