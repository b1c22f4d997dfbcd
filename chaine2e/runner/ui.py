# Where: chaine2e/runner/ui.py
# What: Plain console reporter for session and step events.
# Why: Keep output deterministic and line-oriented so CI logs stay readable.
from __future__ import annotations

import os
import sys

from chaine2e.runner.events import (
    EVENT_CLEANUP,
    EVENT_MESSAGE,
    EVENT_SESSION_END,
    EVENT_SESSION_START,
    EVENT_STEP_END,
    EVENT_STEP_START,
    STATUS_FAILED,
    STATUS_SIMULATED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    VERDICT_FAILED,
    VERDICT_PARTIAL,
    VERDICT_SUCCESS,
    Event,
)
from chaine2e.runner.logging import safe_print

_COLOR_RESET = "\033[0m"
_COLOR_GREEN = "\033[32m"
_COLOR_RED = "\033[31m"
_COLOR_YELLOW = "\033[33m"
_COLOR_BLUE = "\033[34m"
_COLOR_GRAY = "\033[90m"


def _resolve_feature(flag: bool | None, default: bool) -> bool:
    if flag is None:
        return default
    return bool(flag)


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    total = int(seconds)
    if total >= 3600:
        hours, rest = divmod(total, 3600)
        return f"{hours}h{rest // 60:02d}m"
    mins = total // 60
    secs = total % 60
    return f"{mins}m{secs:02d}s"


class Reporter:
    def start(self) -> None:
        return None

    def emit(self, event: Event) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class PlainReporter(Reporter):
    def __init__(
        self,
        *,
        verbose: bool,
        step_label_width: int = 0,
        color: bool | None = None,
        emoji: bool | None = None,
    ) -> None:
        self._verbose = verbose
        self._step_label_width = max(step_label_width, len("session"), len("cleanup"))
        is_tty = sys.stdout.isatty()
        term = os.environ.get("TERM", "").lower()
        color_default = is_tty and term != "dumb" and not os.environ.get("NO_COLOR")
        emoji_default = is_tty and term != "dumb" and not os.environ.get("NO_EMOJI")
        self._color = _resolve_feature(color, color_default)
        self._emoji = _resolve_feature(emoji, emoji_default)

    def close(self) -> None:
        sys.stdout.flush()

    def _prefix(self, label: str) -> str:
        return f"[{label.ljust(self._step_label_width)}]"

    def _emoji_prefix(self, emoji: str) -> str:
        if not self._emoji or not emoji:
            return ""
        return f"{emoji} "

    def _colorize(self, text: str, color: str) -> str:
        if not self._color:
            return text
        return f"{color}{text}{_COLOR_RESET}"

    def _status_word(self, status: str) -> str:
        if status == STATUS_SUCCESS:
            return self._colorize("ok", _COLOR_GREEN)
        if status == STATUS_FAILED:
            return self._colorize("failed", _COLOR_RED)
        if status == STATUS_SKIPPED:
            return self._colorize("skipped", _COLOR_YELLOW)
        if status == STATUS_SIMULATED:
            return self._colorize("simulated", _COLOR_BLUE)
        return status

    def _status_icon(self, status: str) -> str:
        if status == STATUS_SUCCESS:
            return "✅"
        if status == STATUS_FAILED:
            return "❌"
        if status == STATUS_SKIPPED:
            return "⏭️"
        if status == STATUS_SIMULATED:
            return "🧪"
        return ""

    def emit(self, event: Event) -> None:
        if event.event_type == EVENT_MESSAGE and event.message:
            safe_print(event.message)
            return

        if event.event_type == EVENT_SESSION_START:
            work_dir = event.data.get("work_dir", "")
            suffix = f" (work dir {work_dir})" if work_dir and self._verbose else ""
            safe_print(f"{self._prefix('session')} {self._emoji_prefix('🚀')}started{suffix}")
            return

        if event.event_type == EVENT_SESSION_END:
            verdict = str(event.data.get("verdict", ""))
            if verdict == VERDICT_SUCCESS:
                text = self._colorize("SUCCESS", _COLOR_GREEN)
                icon = "✅"
            elif verdict == VERDICT_PARTIAL:
                text = self._colorize("PARTIAL", _COLOR_YELLOW)
                icon = "⚠️"
            elif verdict == VERDICT_FAILED:
                text = self._colorize("FAILED", _COLOR_RED)
                icon = "❌"
            else:
                text, icon = verdict, ""
            safe_print(f"{self._prefix('session')} {self._emoji_prefix(icon)}done ... {text}")
            return

        if event.event_type == EVENT_CLEANUP:
            errors = event.data.get("errors") or []
            if errors:
                for err in errors:
                    safe_print(f"{self._prefix('cleanup')} {self._colorize(str(err), _COLOR_RED)}")
            elif self._verbose:
                safe_print(f"{self._prefix('cleanup')} {self._emoji_prefix('🧹')}done")
            return

        if event.event_type == EVENT_STEP_START and event.step:
            if self._verbose:
                safe_print(f"{self._prefix(event.step)} {self._emoji_prefix('⏳')}start")
            return

        if event.event_type == EVENT_STEP_END and event.step:
            status = str(event.data.get("status", ""))
            duration = event.data.get("duration")
            suffix = f" ({format_duration(duration)})" if duration else ""
            icon_prefix = self._emoji_prefix(self._status_icon(status))
            safe_print(f"{self._prefix(event.step)} {icon_prefix}{self._status_word(status)}{suffix}")
            if event.message and (status != STATUS_SUCCESS or self._verbose):
                for line in event.message.splitlines():
                    safe_print(self._colorize(f"    {line}", _COLOR_GRAY))
            return
