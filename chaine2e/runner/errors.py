# Where: chaine2e/runner/errors.py
# What: Exception hierarchy for chain E2E sessions.
# Why: Steps fail with typed errors so results and reports can explain what broke.
from __future__ import annotations


class ChainE2EError(RuntimeError):
    """Base class for orchestrator failures."""


class SpawnError(ChainE2EError):
    """Raised when a node or tool process cannot be started."""


class ReadinessError(ChainE2EError):
    def __init__(self, message: str, *, attempts: int = 0, elapsed: float = 0.0, tail: str = "") -> None:
        super().__init__(message)
        self.attempts = attempts
        self.elapsed = elapsed
        self.tail = tail

    def __str__(self) -> str:
        base = super().__str__()
        if self.tail:
            return f"{base}\n--- last log lines ---\n{self.tail}"
        return base


class ReadinessTimeout(ReadinessError):
    """The probe never succeeded within the timeout."""


class ProcessDied(ReadinessError):
    """The watched process exited before becoming ready."""


class ExtractionFailure(ChainE2EError):
    """No declared pattern matched the tool output."""


class ToolInvocationError(ChainE2EError):
    def __init__(self, command: list[str], exit_code: int | None, tail: str = "", *, reason: str = "") -> None:
        rendered = " ".join(command)
        if reason:
            message = f"{rendered}: {reason}"
        else:
            message = f"{rendered} exited with code {exit_code}"
        super().__init__(message)
        self.command = list(command)
        self.exit_code = exit_code
        self.tail = tail

    def __str__(self) -> str:
        base = super().__str__()
        if self.tail:
            return f"{base}\n--- output tail ---\n{self.tail}"
        return base


class TerminationError(ChainE2EError):
    """A cleanup action failed. Collected by the cleanup manager, never raised."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"{name}: {cause}")
        self.name = name
        self.cause = cause


class SessionInterrupted(ChainE2EError):
    """The session received SIGINT/SIGTERM."""
