# Where: chaine2e/runner/indexer.py
# What: Optional soak run of the indexer against the exported session.
# Why: The indexer must survive for --duration on the live chains to count as passing.
from __future__ import annotations

import os
from pathlib import Path

from chaine2e.runner.context import StepContext
from chaine2e.runner.errors import ChainE2EError
from chaine2e.runner.process import ProcessHandle, keep_alive_for
from chaine2e.runner.ui import format_duration


def run_indexer(ctx: StepContext) -> str:
    indexer = ctx.config.indexer
    if not indexer.command:
        raise ChainE2EError("no indexer command configured")
    env = os.environ.copy()
    env.update(ctx.session.exports)
    env.update(indexer.env)
    handle = ProcessHandle.spawn(
        "indexer",
        indexer.command,
        list(indexer.args),
        env=env,
        work_dir=Path(indexer.work_dir).expanduser().resolve(),
        log_dir=ctx.session.log_dir,
        cleanup=ctx.session.cleanup,
    )
    handle.mark_running()
    survived = keep_alive_for(handle, indexer.duration, cancel_event=ctx.session.cancel_event)
    if not survived:
        code = handle.exit_code
        if code == 0:
            return f"indexer finished cleanly before {format_duration(indexer.duration)}"
        raise ChainE2EError(
            f"indexer exited with code {code} before {format_duration(indexer.duration)}\n"
            f"--- last log lines ---\n{handle.tail()}"
        )
    handle.terminate()
    return f"indexer ran for {format_duration(indexer.duration)}"
