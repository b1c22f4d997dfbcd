# Where: chaine2e/runner/readiness.py
# What: Bounded readiness polling for devnet nodes plus the stock probes.
# Why: Replace fixed sleeps with a check that also notices a node that died.
from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import requests

from chaine2e.runner.constants import DEFAULT_READY_INTERVAL, DEFAULT_READY_TIMEOUT
from chaine2e.runner.errors import ProcessDied, ReadinessTimeout, SessionInterrupted

logger = logging.getLogger(__name__)

OUTCOME_READY = "ready"
OUTCOME_TIMED_OUT = "timed_out"
OUTCOME_PROCESS_DIED = "process_died"
OUTCOME_CANCELLED = "cancelled"

# A probe returns a truthy value when ready. Raising is treated as "not yet".
Probe = Callable[[], Any]


@dataclass(frozen=True)
class ReadinessResult:
    outcome: str
    attempts: int
    elapsed: float
    last_error: str | None = None
    value: Any = None

    @property
    def ready(self) -> bool:
        return self.outcome == OUTCOME_READY


def wait_ready(
    probe: Probe,
    *,
    interval: float = DEFAULT_READY_INTERVAL,
    timeout: float = DEFAULT_READY_TIMEOUT,
    handle=None,
    cancel_event: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessResult:
    """Poll ``probe`` until it succeeds, the process dies, or ``timeout`` expires.

    Liveness is checked before every probe attempt, so a node that crashed on
    startup is reported as ``process_died`` on the next iteration rather than
    after the full timeout.
    """
    start = clock()
    attempts = 0
    last_err: str | None = None
    while True:
        elapsed = clock() - start
        if cancel_event is not None and cancel_event.is_set():
            return ReadinessResult(OUTCOME_CANCELLED, attempts, elapsed, last_err)
        if handle is not None and not handle.is_alive():
            return ReadinessResult(OUTCOME_PROCESS_DIED, attempts, elapsed, last_err)
        attempts += 1
        try:
            value = probe()
        except Exception as exc:
            value = None
            last_err = str(exc) or exc.__class__.__name__
        if value:
            return ReadinessResult(OUTCOME_READY, attempts, clock() - start, last_err, value)
        elapsed = clock() - start
        if elapsed >= timeout:
            return ReadinessResult(OUTCOME_TIMED_OUT, attempts, elapsed, last_err)
        sleep(min(interval, max(timeout - elapsed, 0.0)))


def require_ready(
    label: str,
    probe: Probe,
    *,
    interval: float = DEFAULT_READY_INTERVAL,
    timeout: float = DEFAULT_READY_TIMEOUT,
    handle=None,
    cancel_event: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessResult:
    result = wait_ready(
        probe,
        interval=interval,
        timeout=timeout,
        handle=handle,
        cancel_event=cancel_event,
        clock=clock,
        sleep=sleep,
    )
    tail = handle.tail() if handle is not None else ""
    if result.outcome == OUTCOME_READY:
        if handle is not None:
            handle.mark_running()
        logger.info("%s ready after %d attempt(s) in %.1fs", label, result.attempts, result.elapsed)
        return result
    if result.outcome == OUTCOME_CANCELLED:
        raise SessionInterrupted(f"{label}: interrupted while waiting for readiness")
    if result.outcome == OUTCOME_PROCESS_DIED:
        code = getattr(handle, "exit_code", None)
        raise ProcessDied(
            f"{label}: process exited with code {code} before becoming ready",
            attempts=result.attempts,
            elapsed=result.elapsed,
            tail=tail,
        )
    suffix = f" (last error: {result.last_error})" if result.last_error else ""
    raise ReadinessTimeout(
        f"{label}: not ready after {result.elapsed:.1f}s{suffix}",
        attempts=result.attempts,
        elapsed=result.elapsed,
        tail=tail,
    )


def _session() -> requests.Session:
    session = requests.Session()
    session.trust_env = False
    return session


def jsonrpc_request(url: str, method: str, params: list[Any] | None = None, *, timeout: float = 3.0) -> Any:
    payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []}
    with _session() as session:
        response = session.post(url, json=payload, timeout=timeout)
    response.raise_for_status()
    body = response.json()
    if body.get("error"):
        raise RuntimeError(f"{method} error: {body['error']}")
    if "result" not in body:
        raise RuntimeError(f"{method}: response has no result field")
    return body["result"]


def jsonrpc_probe(url: str, method: str = "eth_chainId") -> Probe:
    def _probe() -> Any:
        return jsonrpc_request(url, method)

    return _probe


def tendermint_status(rpc_url: str, *, timeout: float = 3.0) -> dict[str, Any]:
    with _session() as session:
        response = session.get(f"{rpc_url.rstrip('/')}/status", timeout=timeout)
    response.raise_for_status()
    body = response.json()
    return body.get("result", body)


def tendermint_status_probe(rpc_url: str) -> Probe:
    def _probe() -> dict[str, Any] | None:
        status = tendermint_status(rpc_url)
        sync_info = status.get("sync_info", {})
        height = int(sync_info.get("latest_block_height", 0) or 0)
        if height <= 0:
            raise RuntimeError("no blocks produced yet")
        return status

    return _probe


def rest_probe(rest_url: str, path: str = "/cosmwasm/wasm/v1/code") -> Probe:
    def _probe() -> bool:
        with _session() as session:
            response = session.get(f"{rest_url.rstrip('/')}{path}", timeout=3.0)
        return response.status_code == 200

    return _probe


def log_pattern_probe(path: Path, pattern: str) -> Probe:
    regex = re.compile(pattern)

    def _probe() -> str | None:
        if not path.exists():
            return None
        match = None
        with path.open("r", encoding="utf-8", errors="replace") as f:
            for line in f:
                found = regex.search(line)
                if found:
                    match = found
        return match.group(0) if match else None

    return _probe
