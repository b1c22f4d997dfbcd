# Where: chaine2e/runner/cleanup.py
# What: LIFO teardown registry for processes, temp dirs and callbacks.
# Why: Every exit path (normal, failure, interrupt) must run teardown exactly once.
from __future__ import annotations

import atexit
import logging
import shutil
import signal
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from chaine2e.runner.errors import TerminationError

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    name: str
    action: Callable[[], Any]


def _resolve_action(resource: Any) -> Callable[[], Any]:
    if callable(resource):
        return resource
    for attr in ("terminate", "close"):
        method = getattr(resource, attr, None)
        if callable(method):
            return method
    raise TypeError(f"cleanup resource must be callable or expose terminate()/close(): {resource!r}")


class CleanupManager:
    """Registry of teardown actions executed in reverse registration order.

    ``run_all`` executes at most once; later calls return the errors of the
    first run. Failures are logged and collected as TerminationError, never
    raised, so one stuck resource cannot keep the others alive. Signals that
    arrive while teardown is running are counted but do not interrupt it; a
    KeyboardInterrupt raised by an action is re-raised after every action ran.
    """

    def __init__(self, *, keep_paths: bool = False) -> None:
        self._entries: list[_Entry] = []
        self._lock = threading.Lock()
        self._ran = False
        self._errors: list[TerminationError] = []
        self._keep_paths = keep_paths
        self._atexit_registered = False
        self._previous_handlers: dict[int, Any] = {}
        self._signal_count = 0
        self._tearing_down = False
        self.cancel_event = threading.Event()
        self.received_signal: int | None = None

    @property
    def has_run(self) -> bool:
        return self._ran

    @property
    def errors(self) -> list[TerminationError]:
        return list(self._errors)

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, resource: Any, name: str | None = None) -> None:
        action = _resolve_action(resource)
        label = name or getattr(resource, "handle_id", None) or repr(resource)
        with self._lock:
            if self._ran:
                raise RuntimeError(f"cleanup already ran; cannot register {label}")
            self._entries.append(_Entry(name=label, action=action))

    def register_path(self, path: Path, name: str | None = None) -> None:
        def _remove() -> None:
            if self._keep_paths:
                logger.info("keeping %s", path)
                return
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()

        self.register(_remove, name=name or f"path:{path}")

    def run_all(self) -> list[TerminationError]:
        with self._lock:
            if self._ran:
                return list(self._errors)
            self._ran = True
            self._tearing_down = True
            entries = list(reversed(self._entries))

        interrupt: KeyboardInterrupt | None = None
        try:
            for entry in entries:
                try:
                    entry.action()
                    logger.debug("cleanup ok: %s", entry.name)
                except KeyboardInterrupt as exc:
                    interrupt = exc
                    self._errors.append(TerminationError(entry.name, exc))
                    logger.warning("cleanup of %s interrupted; continuing with the rest", entry.name)
                except Exception as exc:
                    error = TerminationError(entry.name, exc)
                    logger.warning("cleanup failed: %s", error)
                    self._errors.append(error)
        finally:
            self._tearing_down = False
            self.restore_signal_handlers()
        if interrupt is not None:
            raise interrupt
        return list(self._errors)

    def install_atexit(self) -> None:
        if self._atexit_registered:
            return
        atexit.register(self._atexit_hook)
        self._atexit_registered = True

    def _atexit_hook(self) -> None:
        if not self._ran:
            logger.warning("running cleanup from atexit hook")
            self.run_all()

    def install_signal_handlers(self, signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)) -> bool:
        if threading.current_thread() is not threading.main_thread():
            return False
        for sig in signals:
            self._previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, self._handle_signal)
        return True

    def restore_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        while self._previous_handlers:
            sig, handler = self._previous_handlers.popitem()
            signal.signal(sig, handler)

    def _handle_signal(self, signum: int, _frame: Any) -> None:
        self._signal_count += 1
        self.received_signal = signum
        self.cancel_event.set()
        if self._tearing_down:
            logger.warning("received signal %s during cleanup; finishing teardown first", signum)
            return
        logger.warning("received signal %s; cancelling session", signum)
        if self._signal_count > 1:
            raise KeyboardInterrupt

    def __enter__(self) -> CleanupManager:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.run_all()
