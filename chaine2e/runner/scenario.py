# Where: chaine2e/runner/scenario.py
# What: Ordered step execution with dependency gating, degradation and fatal aborts.
# Why: A failed prerequisite must never let a dependent step report success.
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from chaine2e.runner.context import StepContext
from chaine2e.runner.errors import ChainE2EError, SessionInterrupted
from chaine2e.runner.events import (
    EVENT_MESSAGE,
    EVENT_STEP_END,
    EVENT_STEP_START,
    STATUS_FAILED,
    STATUS_RUNNING,
    STATUS_SIMULATED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    Event,
)
from chaine2e.runner.models import StepResult

logger = logging.getLogger(__name__)

VIABILITY_STEP_ID = "session-viability"

StepAction = Callable[[StepContext], "str | None"]


@dataclass(frozen=True)
class ScenarioStep:
    step_id: str
    action: StepAction
    depends_on: tuple[str, ...] = ()
    description: str = ""
    degradable: bool = False
    simulate: StepAction | None = None
    session_fatal: bool = False
    provides_environment: bool = False


class ScenarioRunner:
    def __init__(self, steps: list[ScenarioStep], *, reporter=None, clock: Callable[[], float] = time.time) -> None:
        validate_steps(steps)
        self.steps = list(steps)
        self.reporter = reporter
        self.clock = clock
        self.interrupted = False
        self.abort_reason: str | None = None

    def _emit(self, event: Event) -> None:
        if self.reporter is not None:
            self.reporter.emit(event)

    def _abort(self, reason: str) -> None:
        self.abort_reason = reason
        logger.warning("session aborted: %s", reason)
        self._emit(Event(EVENT_MESSAGE, message=f"session aborted ({reason}); remaining steps are skipped"))

    def _record(self, ctx: StepContext, result: StepResult) -> StepResult:
        ctx.session.results.append(result)
        self._emit(
            Event(
                EVENT_STEP_END,
                step=result.step_id,
                message=result.detail,
                data={"status": result.status, "duration": result.duration, "fatal": result.session_fatal},
            )
        )
        return result

    def run(self, ctx: StepContext) -> list[StepResult]:
        statuses: dict[str, str] = {}
        providers = [step.step_id for step in self.steps if step.provides_environment]
        viability_checked = False

        for step in self.steps:
            if self.abort_reason is None and ctx.session.cancel_event.is_set():
                self.interrupted = True
                self._abort("interrupted")
            if self.abort_reason is not None:
                now = self.clock()
                result = StepResult(step.step_id, STATUS_SKIPPED, f"session aborted: {self.abort_reason}", now, now)
                statuses[step.step_id] = self._record(ctx, result).status
                continue

            result = self._run_step(ctx, step, statuses)
            statuses[step.step_id] = result.status
            if self.abort_reason is None and self.interrupted:
                self._abort("interrupted")
            elif self.abort_reason is None and result.fatal_failure:
                self._abort(f"{step.step_id} failed")

            if not viability_checked and providers and all(pid in statuses for pid in providers):
                viability_checked = True
                if not any(statuses[pid] == STATUS_SUCCESS for pid in providers):
                    now = self.clock()
                    self._record(
                        ctx,
                        StepResult(
                            VIABILITY_STEP_ID,
                            STATUS_FAILED,
                            "no chain environment became ready",
                            now,
                            now,
                            session_fatal=True,
                            error_type="SessionNotViable",
                        ),
                    )
                    if self.abort_reason is None:
                        self._abort("no chain environment available")
        return list(ctx.session.results)

    def _run_step(self, ctx: StepContext, step: ScenarioStep, statuses: dict[str, str]) -> StepResult:
        blocking = [(dep, statuses[dep]) for dep in step.depends_on if statuses[dep] != STATUS_SUCCESS]
        if blocking:
            reason = ", ".join(f"{dep} {status}" for dep, status in blocking)
            if step.degradable and step.simulate is not None:
                return self._execute(ctx, step, step.simulate, STATUS_SIMULATED, prefix=f"degraded ({reason}): ")
            now = self.clock()
            return self._record(ctx, StepResult(step.step_id, STATUS_SKIPPED, f"dependency not met: {reason}", now, now))
        return self._execute(ctx, step, step.action, STATUS_SUCCESS)

    def _execute(
        self,
        ctx: StepContext,
        step: ScenarioStep,
        action: StepAction,
        ok_status: str,
        *,
        prefix: str = "",
    ) -> StepResult:
        started = self.clock()
        self._emit(Event(EVENT_STEP_START, step=step.step_id, message=step.description, data={"status": STATUS_RUNNING}))
        ctx.log.write_line(f"### {step.step_id}: {step.description or step.step_id}")
        fatal = step.session_fatal
        error_type = None
        try:
            detail = action(ctx) or ""
            status = ok_status
        except (SessionInterrupted, KeyboardInterrupt) as exc:
            ctx.session.cancel_event.set()
            self.interrupted = True
            status, fatal = STATUS_FAILED, True
            detail = f"interrupted: {exc}" if str(exc) else "interrupted"
            error_type = "SessionInterrupted"
        except ChainE2EError as exc:
            status, detail, error_type = STATUS_FAILED, str(exc), exc.__class__.__name__
        except Exception as exc:
            logger.exception("step %s raised unexpectedly", step.step_id)
            status, detail, error_type = STATUS_FAILED, f"{exc.__class__.__name__}: {exc}", exc.__class__.__name__
        if status == STATUS_FAILED:
            ctx.log.write_line(f"!!! {step.step_id} failed: {detail}")
        result = StepResult(
            step.step_id,
            status,
            f"{prefix}{detail}",
            started,
            self.clock(),
            session_fatal=fatal,
            error_type=error_type,
        )
        return self._record(ctx, result)


def validate_steps(steps: list[ScenarioStep]) -> None:
    seen: set[str] = set()
    for step in steps:
        if step.step_id in seen:
            raise ValueError(f"duplicate step id: {step.step_id}")
        for dep in step.depends_on:
            if dep not in seen:
                raise ValueError(f"{step.step_id} depends on {dep!r}, which is not an earlier step")
        if step.degradable and step.simulate is None:
            raise ValueError(f"{step.step_id} is degradable but has no simulate action")
        seen.add(step.step_id)
