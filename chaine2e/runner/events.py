# Where: chaine2e/runner/events.py
# What: Event and status definitions for chain E2E reporting.
# Why: Provide a stable, decoupled contract between execution and UI.
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

EVENT_SESSION_START = "session_start"
EVENT_SESSION_END = "session_end"
EVENT_STEP_START = "step_start"
EVENT_STEP_END = "step_end"
EVENT_CLEANUP = "cleanup"
EVENT_MESSAGE = "message"

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"
STATUS_SIMULATED = "simulated"

VERDICT_SUCCESS = "success"
VERDICT_PARTIAL = "partial"
VERDICT_FAILED = "failed"


@dataclass(frozen=True)
class Event:
    event_type: str
    step: str | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.monotonic)
