# Where: chaine2e/runner/config.py
# What: Load the session YAML, apply .env and CLI overrides, validate.
# Why: Keep chain topology and contract lists declarative instead of hard-coded in steps.
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv

from chaine2e.runner import constants

CONFIG_ROOT = Path(__file__).resolve().parent.parent / "config"
DEFAULT_CONFIG_PATH = CONFIG_ROOT / "session.yaml"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smh]?)\s*$")
_DURATION_UNITS = {"": 1.0, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(ValueError):
    """Raised when the session configuration is invalid."""


def parse_duration(raw: str | int | float) -> float:
    if isinstance(raw, (int, float)):
        if raw < 0:
            raise ConfigError(f"duration must not be negative: {raw}")
        return float(raw)
    match = _DURATION_RE.match(str(raw))
    if not match:
        raise ConfigError(f"invalid duration {raw!r} (expected e.g. 30s, 5m, 1h)")
    value, unit = match.groups()
    return float(value) * _DURATION_UNITS[unit]


@dataclass
class ContractSpec:
    name: str
    artifact: str
    env_var: str | None = None
    constructor_args: list[str] = field(default_factory=list)
    init_msg: dict[str, Any] = field(default_factory=dict)
    label: str | None = None


@dataclass
class ConfigureCall:
    target: str
    signature: str | None = None
    args: list[str] = field(default_factory=list)
    msg: dict[str, Any] | None = None


@dataclass
class EthereumConfig:
    enabled: bool = True
    node: str = constants.NODE_ANVIL
    binary: str | None = None
    host: str = constants.DEFAULT_ETH_HOST
    port: int = constants.DEFAULT_ETH_PORT
    chain_id: int = constants.DEFAULT_ETH_CHAIN_ID
    rpc_url: str | None = None
    session_fatal: bool = False
    project_dir: str = "."
    forge_json: bool = True
    contracts: list[ContractSpec] = field(default_factory=list)
    configure: list[ConfigureCall] = field(default_factory=list)

    @property
    def attach(self) -> bool:
        return bool(self.rpc_url)

    @property
    def resolved_rpc_url(self) -> str:
        return self.rpc_url or f"http://{self.host}:{self.port}"


@dataclass
class UfoConfig:
    binary: str = "ufo"
    build_mode: str = "patched"
    validators: int = constants.DEFAULT_UFO_VALIDATORS
    block_time_ms: int = constants.DEFAULT_UFO_BLOCK_TIME_MS
    min_blocks: int = 3
    block_pattern: str = r"Block (\d+) produced"


@dataclass
class CosmosConfig:
    enabled: bool = True
    node: str = constants.NODE_WASMD
    binary: str = "wasmd"
    host: str = "127.0.0.1"
    rpc_port: int = constants.DEFAULT_COSMOS_RPC_PORT
    rest_port: int = constants.DEFAULT_COSMOS_REST_PORT
    grpc_port: int = constants.DEFAULT_COSMOS_GRPC_PORT
    chain_id: str = constants.DEFAULT_COSMOS_CHAIN_ID
    denom: str = constants.DEFAULT_COSMOS_DENOM
    moniker: str = "chain-e2e"
    rpc_url: str | None = None
    rest_url: str | None = None
    check_rest: bool = False
    genesis_subcommand: bool = True
    gas_prices: str | None = None
    validator_mnemonic: str = constants.VALIDATOR_MNEMONIC
    test_accounts: list[tuple[str, str]] = field(
        default_factory=lambda: [tuple(item) for item in constants.COSMOS_TEST_MNEMONICS]
    )
    session_fatal: bool = False
    project_dir: str = "."
    contracts: list[ContractSpec] = field(default_factory=list)
    configure: list[ConfigureCall] = field(default_factory=list)
    ufo: UfoConfig = field(default_factory=UfoConfig)

    @property
    def attach(self) -> bool:
        return bool(self.rpc_url)

    @property
    def resolved_rpc_url(self) -> str:
        return self.rpc_url or f"http://{self.host}:{self.rpc_port}"

    @property
    def resolved_rest_url(self) -> str:
        return self.rest_url or f"http://{self.host}:{self.rest_port}"


@dataclass
class CrossChainConfig:
    enabled: bool = True
    source_contract: str = "gateway"
    signature: str = "sendMessage(string,bytes)"
    args: list[str] = field(default_factory=list)
    relay_contract: str = "gateway"
    relay_msg: dict[str, Any] = field(default_factory=dict)
    verify_contract: str = "processor"
    verify_query: dict[str, Any] = field(default_factory=dict)
    expect: str | None = None
    payload: str = "0x68656c6c6f"


@dataclass
class IndexerConfig:
    command: str | None = None
    args: list[str] = field(default_factory=list)
    duration: float = constants.DEFAULT_INDEXER_DURATION
    env: dict[str, str] = field(default_factory=dict)
    work_dir: str = "."


@dataclass
class SessionConfig:
    work_root: str | None = None
    keep_artifacts: bool = False
    tool_timeout: float = constants.DEFAULT_TOOL_TIMEOUT
    ready_interval: float = constants.DEFAULT_READY_INTERVAL
    ready_timeout: float = constants.DEFAULT_READY_TIMEOUT
    export_path: str | None = None
    database_url: str | None = None
    allow_simulated_deployments: bool = False
    ethereum: EthereumConfig = field(default_factory=EthereumConfig)
    cosmos: CosmosConfig = field(default_factory=CosmosConfig)
    cross_chain: CrossChainConfig = field(default_factory=CrossChainConfig)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    source: Path | None = None

    @property
    def uses_ufo(self) -> bool:
        return self.cosmos.enabled and self.cosmos.node == constants.NODE_UFO


def _section(data: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a map")
    return value


def _as_list(value: Any, label: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{label}' must be a list")
    return value


def _contracts(raw: Any, label: str, artifact_key: str) -> list[ContractSpec]:
    contracts: list[ContractSpec] = []
    seen: set[str] = set()
    for item in _as_list(raw, label):
        if not isinstance(item, dict):
            raise ConfigError(f"{label} entries must be maps")
        name = str(item.get("name", "")).strip()
        artifact = str(item.get(artifact_key, "")).strip()
        if not name or not artifact:
            raise ConfigError(f"{label} entries require 'name' and '{artifact_key}'")
        if name in seen:
            raise ConfigError(f"duplicate contract name in {label}: {name}")
        seen.add(name)
        init_msg = item.get("init_msg") or {}
        if not isinstance(init_msg, dict):
            raise ConfigError(f"{label}.{name}.init_msg must be a map")
        contracts.append(
            ContractSpec(
                name=name,
                artifact=artifact,
                env_var=item.get("env_var"),
                constructor_args=[str(arg) for arg in _as_list(item.get("constructor_args"), f"{label}.{name}.constructor_args")],
                init_msg=init_msg,
                label=item.get("label"),
            )
        )
    return contracts


def _configure_calls(raw: Any, label: str, *, require_msg: bool) -> list[ConfigureCall]:
    calls: list[ConfigureCall] = []
    for item in _as_list(raw, label):
        if not isinstance(item, dict) or not item.get("target"):
            raise ConfigError(f"{label} entries require 'target'")
        msg = item.get("msg")
        if require_msg and not isinstance(msg, dict):
            raise ConfigError(f"{label}.{item['target']} requires a 'msg' map")
        if not require_msg and not item.get("signature"):
            raise ConfigError(f"{label}.{item['target']} requires a 'signature'")
        calls.append(
            ConfigureCall(
                target=str(item["target"]),
                signature=item.get("signature"),
                args=[str(arg) for arg in _as_list(item.get("args"), f"{label}.args")],
                msg=msg,
            )
        )
    return calls


def _apply_scalars(target: Any, data: Mapping[str, Any], keys: tuple[str, ...]) -> None:
    for key in keys:
        if key in data and data[key] is not None:
            setattr(target, key, data[key])


def build_config(data: Mapping[str, Any], *, source: Path | None = None) -> SessionConfig:
    config = SessionConfig(source=source)
    session = _section(data, "session")
    _apply_scalars(
        config,
        session,
        ("work_root", "keep_artifacts", "export_path", "database_url", "allow_simulated_deployments"),
    )
    for key in ("tool_timeout", "ready_interval", "ready_timeout"):
        if key in session:
            setattr(config, key, parse_duration(session[key]))

    eth = _section(data, "ethereum")
    _apply_scalars(
        config.ethereum,
        eth,
        ("enabled", "node", "binary", "host", "port", "chain_id", "rpc_url", "session_fatal", "project_dir", "forge_json"),
    )
    config.ethereum.contracts = _contracts(eth.get("contracts"), "ethereum.contracts", "artifact")
    config.ethereum.configure = _configure_calls(eth.get("configure"), "ethereum.configure", require_msg=False)

    cosmos = _section(data, "cosmos")
    _apply_scalars(
        config.cosmos,
        cosmos,
        (
            "enabled",
            "node",
            "binary",
            "host",
            "rpc_port",
            "rest_port",
            "grpc_port",
            "chain_id",
            "denom",
            "moniker",
            "rpc_url",
            "rest_url",
            "check_rest",
            "genesis_subcommand",
            "gas_prices",
            "validator_mnemonic",
            "session_fatal",
            "project_dir",
        ),
    )
    if "test_accounts" in cosmos:
        accounts = []
        for item in _as_list(cosmos["test_accounts"], "cosmos.test_accounts"):
            if not isinstance(item, dict) or not item.get("name") or not item.get("mnemonic"):
                raise ConfigError("cosmos.test_accounts entries require 'name' and 'mnemonic'")
            accounts.append((str(item["name"]), str(item["mnemonic"])))
        config.cosmos.test_accounts = accounts
    config.cosmos.contracts = _contracts(cosmos.get("contracts"), "cosmos.contracts", "wasm")
    config.cosmos.configure = _configure_calls(cosmos.get("configure"), "cosmos.configure", require_msg=True)
    _apply_scalars(
        config.cosmos.ufo,
        _section(cosmos, "ufo"),
        ("binary", "build_mode", "validators", "block_time_ms", "min_blocks", "block_pattern"),
    )

    cross = _section(data, "cross_chain")
    _apply_scalars(
        config.cross_chain,
        cross,
        (
            "enabled",
            "source_contract",
            "signature",
            "relay_contract",
            "relay_msg",
            "verify_contract",
            "verify_query",
            "expect",
            "payload",
        ),
    )
    if "args" in cross:
        config.cross_chain.args = [str(arg) for arg in _as_list(cross["args"], "cross_chain.args")]

    indexer = _section(data, "indexer")
    _apply_scalars(config.indexer, indexer, ("command", "work_dir"))
    if "args" in indexer:
        config.indexer.args = [str(arg) for arg in _as_list(indexer["args"], "indexer.args")]
    if "env" in indexer:
        config.indexer.env = {str(k): str(v) for k, v in _section(indexer, "env").items()}
    if "duration" in indexer:
        config.indexer.duration = parse_duration(indexer["duration"])

    validate_config(config)
    return config


def validate_config(config: SessionConfig) -> None:
    if not config.ethereum.enabled and not config.cosmos.enabled:
        raise ConfigError("at least one chain must be enabled")
    if config.ethereum.node not in constants.ETHEREUM_NODES:
        raise ConfigError(
            f"unsupported ethereum node {config.ethereum.node!r} "
            f"(expected one of: {', '.join(constants.ETHEREUM_NODES)})"
        )
    if config.cosmos.node not in constants.COSMOS_NODES:
        raise ConfigError(
            f"unsupported cosmos node {config.cosmos.node!r} "
            f"(expected one of: {', '.join(constants.COSMOS_NODES)})"
        )
    if config.cosmos.ufo.build_mode not in constants.BUILD_MODES:
        raise ConfigError(
            f"invalid build mode {config.cosmos.ufo.build_mode!r} "
            f"(expected one of: {', '.join(constants.BUILD_MODES)})"
        )
    try:
        validators = int(config.cosmos.ufo.validators)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"validators must be a positive integer: {config.cosmos.ufo.validators!r}") from exc
    if validators < 1:
        raise ConfigError(f"validators must be a positive integer: {validators}")
    config.cosmos.ufo.validators = validators
    for label, port in (
        ("ethereum.port", config.ethereum.port),
        ("cosmos.rpc_port", config.cosmos.rpc_port),
        ("cosmos.rest_port", config.cosmos.rest_port),
    ):
        if not isinstance(port, int) or port < 1 or port > 65535:
            raise ConfigError(f"{label} out of range: {port}")
    if config.ready_timeout <= 0 or config.tool_timeout <= 0:
        raise ConfigError("timeouts must be positive")


def load_config(path: Path | None = None) -> SessionConfig:
    config_path = path or DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise ConfigError(f"config file not found: {config_path}")
    with open(config_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a map at the top level")
    return build_config(data, source=config_path)


def load_env_file(path: Path | None) -> bool:
    if path is None or not path.exists():
        return False
    return load_dotenv(path, override=False)


def apply_env_overrides(config: SessionConfig, environ: Mapping[str, str] | None = None) -> None:
    env = os.environ if environ is None else environ
    eth_rpc = env.get(constants.ENV_ETH_RPC_URL, "").strip()
    if eth_rpc:
        config.ethereum.rpc_url = eth_rpc
    cosmos_rpc = env.get(constants.ENV_COSMOS_RPC_URL, "").strip()
    if cosmos_rpc:
        config.cosmos.rpc_url = cosmos_rpc
    cosmos_rest = env.get(constants.ENV_COSMOS_REST_URL, "").strip()
    if cosmos_rest:
        config.cosmos.rest_url = cosmos_rest
    database_url = env.get(constants.ENV_DATABASE_URL, "").strip()
    if database_url:
        config.database_url = database_url


def apply_cli_overrides(config: SessionConfig, args: Any) -> None:
    chain = getattr(args, "chain", None)
    if chain == constants.CHAIN_ETHEREUM:
        config.cosmos.enabled = False
        config.cross_chain.enabled = False
    elif chain == constants.CHAIN_COSMOS:
        config.ethereum.enabled = False
        config.cross_chain.enabled = False
    if getattr(args, "node", None):
        config.ethereum.node = args.node
    if getattr(args, "build_mode", None):
        config.cosmos.node = constants.NODE_UFO
        config.cosmos.ufo.build_mode = args.build_mode
    if getattr(args, "validators", None) is not None:
        config.cosmos.ufo.validators = args.validators
    if getattr(args, "duration", None):
        config.indexer.duration = parse_duration(args.duration)
    if getattr(args, "work_dir", None):
        config.work_root = str(args.work_dir)
    if getattr(args, "keep_artifacts", False):
        config.keep_artifacts = True
    if getattr(args, "env_out", None):
        config.export_path = str(args.env_out)
    if getattr(args, "ethereum_fatal", False):
        config.ethereum.session_fatal = True
    if getattr(args, "cosmos_fatal", False):
        config.cosmos.session_fatal = True
    if getattr(args, "allow_simulated", False):
        config.allow_simulated_deployments = True
    if config.uses_ufo:
        config.cross_chain.enabled = False
    validate_config(config)
