# Where: chaine2e/runner/models.py
# What: Dataclasses for chain environments, deployments, step results and the session.
# Why: Keep session state explicit and owned by one object instead of globals.
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from chaine2e.runner.events import STATUS_FAILED

if TYPE_CHECKING:
    from chaine2e.runner.cleanup import CleanupManager
    from chaine2e.runner.process import ProcessHandle


@dataclass(frozen=True)
class Account:
    name: str
    address: str
    private_key: str | None = field(default=None, repr=False)
    mnemonic: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class ContractDeployment:
    name: str
    address: str
    chain: str
    tx_hash: str | None = None
    code_id: str | None = None
    env_var: str | None = None
    simulated: bool = False


class FrozenEnvironmentError(AttributeError):
    pass


@dataclass
class ChainEnvironment:
    name: str
    chain_kind: str
    node: str
    rpc_url: str
    chain_id: str
    rest_url: str | None = None
    accounts: tuple[Account, ...] = ()
    process: ProcessHandle | None = None
    session_fatal: bool = False
    extra: dict[str, Any] = field(default_factory=dict)
    deployments: list[ContractDeployment] = field(default_factory=list)
    ready: bool = field(default=False, init=False)

    def __setattr__(self, key: str, value: Any) -> None:
        if getattr(self, "ready", False) and key != "deployments":
            raise FrozenEnvironmentError(f"{self.name} is ready; {key} is read-only")
        super().__setattr__(key, value)

    def mark_ready(self) -> None:
        self.accounts = tuple(self.accounts)
        object.__setattr__(self, "ready", True)

    def account(self, name: str) -> Account:
        for account in self.accounts:
            if account.name == name:
                return account
        raise KeyError(f"{self.name}: unknown account {name!r}")

    @property
    def primary_account(self) -> Account:
        if not self.accounts:
            raise KeyError(f"{self.name}: no accounts configured")
        return self.accounts[0]

    def record(self, deployment: ContractDeployment) -> None:
        if deployment.chain != self.chain_kind:
            raise ValueError(f"{deployment.name} belongs to {deployment.chain}, not {self.chain_kind}")
        self.deployments.append(deployment)

    def find(self, name: str) -> ContractDeployment | None:
        for deployment in reversed(self.deployments):
            if deployment.name == name:
                return deployment
        return None

    def deployment(self, name: str) -> ContractDeployment:
        found = self.find(name)
        if found is None:
            raise KeyError(f"{self.name}: contract {name!r} has not been deployed")
        return found


@dataclass(frozen=True)
class StepResult:
    step_id: str
    status: str
    detail: str = ""
    started_at: float = 0.0
    finished_at: float = 0.0
    session_fatal: bool = False
    error_type: str | None = None

    @property
    def duration(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def fatal_failure(self) -> bool:
        return self.session_fatal and self.status == STATUS_FAILED


@dataclass
class Session:
    work_dir: Path
    cleanup: CleanupManager
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    environments: dict[str, ChainEnvironment] = field(default_factory=dict)
    results: list[StepResult] = field(default_factory=list)
    deployments: list[ContractDeployment] = field(default_factory=list)
    temp_dirs: list[Path] = field(default_factory=list)
    exports: dict[str, str] = field(default_factory=dict)
    artifacts: dict[str, Path] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)

    @property
    def cancel_event(self) -> threading.Event:
        return self.cleanup.cancel_event

    @property
    def log_dir(self) -> Path:
        return self.work_dir / "logs"

    def record_deployment(self, deployment: ContractDeployment) -> None:
        env = self.environments.get(deployment.chain)
        if env is not None:
            env.record(deployment)
        self.deployments.append(deployment)

    def find_deployment(self, chain_kind: str, name: str) -> ContractDeployment | None:
        for deployment in reversed(self.deployments):
            if deployment.chain == chain_kind and deployment.name == name:
                return deployment
        return None

    def add_environment(self, env: ChainEnvironment) -> None:
        if env.chain_kind in self.environments:
            raise ValueError(f"environment for {env.chain_kind} already registered")
        self.environments[env.chain_kind] = env

    def environment(self, chain_kind: str) -> ChainEnvironment:
        env = self.environments.get(chain_kind)
        if env is None:
            raise KeyError(f"no {chain_kind} environment is available")
        return env

    def result_for(self, step_id: str) -> StepResult | None:
        for result in self.results:
            if result.step_id == step_id:
                return result
        return None
