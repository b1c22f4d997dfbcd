# Where: chaine2e/runner/report.py
# What: Aggregate step results into a verdict, a console table and a CI summary.
# Why: One place decides what "success", "partial" and "failed" mean for a session.
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from chaine2e.runner.events import (
    STATUS_FAILED,
    STATUS_SIMULATED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    VERDICT_FAILED,
    VERDICT_PARTIAL,
    VERDICT_SUCCESS,
)
from chaine2e.runner.models import ContractDeployment, Session, StepResult

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2
EXIT_INTERRUPTED = 130


def summarize(results: list[StepResult]) -> str:
    if any(result.fatal_failure for result in results):
        return VERDICT_FAILED
    if any(result.status != STATUS_SUCCESS for result in results):
        return VERDICT_PARTIAL
    return VERDICT_SUCCESS


def exit_code_for(verdict: str, *, interrupted: bool = False) -> int:
    if interrupted:
        return EXIT_INTERRUPTED
    if verdict == VERDICT_SUCCESS:
        return EXIT_SUCCESS
    if verdict == VERDICT_PARTIAL:
        return EXIT_PARTIAL
    return EXIT_FAILED


@dataclass
class SessionReport:
    session_id: str
    verdict: str
    results: list[StepResult]
    deployments: list[ContractDeployment] = field(default_factory=list)
    exports: dict[str, str] = field(default_factory=dict)
    cleanup_errors: list[str] = field(default_factory=list)
    interrupted: bool = False
    work_dir: str | None = None

    @property
    def exit_code(self) -> int:
        return exit_code_for(self.verdict, interrupted=self.interrupted)

    def counts(self) -> dict[str, int]:
        counts = {STATUS_SUCCESS: 0, STATUS_FAILED: 0, STATUS_SKIPPED: 0, STATUS_SIMULATED: 0}
        for result in self.results:
            counts[result.status] = counts.get(result.status, 0) + 1
        return counts


def build_report(
    session: Session,
    *,
    cleanup_errors: list[BaseException] | None = None,
    interrupted: bool = False,
    keep_work_dir: bool = False,
) -> SessionReport:
    return SessionReport(
        session_id=session.session_id,
        verdict=summarize(session.results),
        results=list(session.results),
        deployments=list(session.deployments),
        exports=dict(session.exports),
        cleanup_errors=[str(err) for err in cleanup_errors or []],
        interrupted=interrupted,
        work_dir=str(session.work_dir) if keep_work_dir else None,
    )


def _first_line(text: str, limit: int = 72) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    return line if len(line) <= limit else line[: limit - 3] + "..."


def render_table(report: SessionReport) -> str:
    rows = [("STEP", "STATUS", "TIME", "DETAIL")]
    for result in report.results:
        status = result.status.upper()
        if result.fatal_failure:
            status += " (fatal)"
        rows.append((result.step_id, status, f"{result.duration:.1f}s", _first_line(result.detail)))
    widths = [max(len(row[i]) for row in rows) for i in range(3)]
    lines = []
    for row in rows:
        lines.append(
            f"{row[0].ljust(widths[0])}  {row[1].ljust(widths[1])}  {row[2].rjust(widths[2])}  {row[3]}".rstrip()
        )
    if report.deployments:
        lines.append("")
        lines.append("Deployments:")
        for item in report.deployments:
            suffix = " (simulated)" if item.simulated else ""
            code = f" code_id={item.code_id}" if item.code_id else ""
            lines.append(f"  {item.chain}/{item.name}: {item.address}{code}{suffix}")
    if report.cleanup_errors:
        lines.append("")
        lines.append("Cleanup errors:")
        lines.extend(f"  {err}" for err in report.cleanup_errors)
    counts = report.counts()
    lines.append("")
    lines.append(
        f"Verdict: {report.verdict.upper()} "
        f"({counts[STATUS_SUCCESS]} success, {counts[STATUS_FAILED]} failed, "
        f"{counts[STATUS_SKIPPED]} skipped, {counts[STATUS_SIMULATED]} simulated)"
    )
    if report.work_dir:
        lines.append(f"Artifacts kept in {report.work_dir}")
    return "\n".join(lines)


def to_summary(report: SessionReport) -> dict[str, Any]:
    return {
        "session_id": report.session_id,
        "verdict": report.verdict,
        "exit_code": report.exit_code,
        "interrupted": report.interrupted,
        "steps": [
            {
                "id": result.step_id,
                "status": result.status,
                "detail": result.detail,
                "duration": round(result.duration, 3),
                "session_fatal": result.session_fatal,
                "error_type": result.error_type,
            }
            for result in report.results
        ],
        "deployments": [
            {
                "chain": item.chain,
                "name": item.name,
                "address": item.address,
                "tx_hash": item.tx_hash,
                "code_id": item.code_id,
                "simulated": item.simulated,
            }
            for item in report.deployments
        ],
        "exports": report.exports,
        "cleanup_errors": report.cleanup_errors,
    }


def write_summary_json(report: SessionReport, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_summary(report), indent=2) + "\n", encoding="utf-8")
    return path
