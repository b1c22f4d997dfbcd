# Where: chaine2e/runner/session.py
# What: Session lifecycle: work dir, logs, tool runner, cleanup on every exit path.
# Why: The cleanup manager must exist before the first spawn and run exactly once at the end.
from __future__ import annotations

import logging
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from chaine2e.runner.cleanup import CleanupManager
from chaine2e.runner.config import SessionConfig
from chaine2e.runner.constants import SESSION_LOG_FILE
from chaine2e.runner.context import StepContext
from chaine2e.runner.events import EVENT_CLEANUP, EVENT_SESSION_START, Event
from chaine2e.runner.logging import LogSink, configure_logging
from chaine2e.runner.models import Session
from chaine2e.runner.tools import ToolRunner

logger = logging.getLogger(__name__)


def _make_work_dir(config: SessionConfig) -> Path:
    if config.work_root:
        root = Path(config.work_root).expanduser().resolve()
        root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="chain-e2e-", dir=root))
    return Path(tempfile.mkdtemp(prefix="chain-e2e-"))


@contextmanager
def open_session(
    config: SessionConfig,
    *,
    reporter=None,
    verbose: bool = False,
    printer: Callable[[str], None] | None = None,
    install_signals: bool = True,
) -> Iterator[StepContext]:
    cleanup = CleanupManager(keep_paths=config.keep_artifacts)
    work_dir = _make_work_dir(config)
    # Registered first so it is removed last, after every process is gone.
    cleanup.register_path(work_dir, name="work-dir")
    cleanup.install_atexit()
    if install_signals:
        cleanup.install_signal_handlers()

    session = Session(work_dir=work_dir, cleanup=cleanup)
    session.temp_dirs.append(work_dir)
    configure_logging(session.log_dir / SESSION_LOG_FILE, verbose=verbose)
    cleanup.register(lambda: configure_logging(None, verbose=verbose), name="session-log")
    log = LogSink(session.log_dir / "tools.log")
    log.open()
    cleanup.register(log.close, name="tools-log")
    tools = ToolRunner(log, cancel_event=cleanup.cancel_event, default_timeout=config.tool_timeout, printer=printer)
    ctx = StepContext(session=session, config=config, tools=tools, log=log, printer=printer)

    logger.info("session %s started in %s", session.session_id, work_dir)
    if reporter is not None:
        reporter.emit(Event(EVENT_SESSION_START, data={"work_dir": str(work_dir), "session_id": session.session_id}))
    try:
        yield ctx
    finally:
        errors = cleanup.run_all()
        if reporter is not None:
            reporter.emit(Event(EVENT_CLEANUP, data={"errors": [str(err) for err in errors]}))
