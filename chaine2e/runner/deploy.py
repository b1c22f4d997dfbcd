# Where: chaine2e/runner/deploy.py
# What: Contract deployment and configuration on the Ethereum and Cosmos devnets.
# Why: Turn declared contracts into recorded ContractDeployment entries via forge/cast/wasmd.
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from chaine2e.runner import constants
from chaine2e.runner.config import ConfigureCall, ContractSpec
from chaine2e.runner.context import StepContext
from chaine2e.runner.errors import ChainE2EError, ExtractionFailure
from chaine2e.runner.extract import (
    CAST_TX_FIELDS,
    CODE_ID_FIELDS,
    CODE_ID_PATTERNS,
    CONTRACT_ADDRESS_FIELDS,
    CONTRACT_ADDRESS_PATTERNS,
    COSMOS_TX_FIELDS,
    FORGE_ADDRESS_FIELDS,
    FORGE_ADDRESS_PATTERNS,
    FORGE_TX_FIELDS,
    TX_HASH_PATTERNS,
    Pattern,
    extract_first,
    parse_json_output,
)
from chaine2e.runner.models import ChainEnvironment, ContractDeployment
from chaine2e.runner.nodes import CosmosCli

logger = logging.getLogger(__name__)

_TEMPLATE_RE = re.compile(r"\{([A-Za-z0-9_.\-]+)\}")
_BROADCAST_TX_PATTERNS = (Pattern("txhash", r"\"?txhash\"?\s*[:=]\s*\"?([0-9A-Fa-f]{64})"),)


def resolve_template(value: Any, ctx: StepContext, chain_kind: str, extra: dict[str, str] | None = None) -> Any:
    """Substitute ``{...}`` references in strings, recursing into lists and maps.

    ``{NAME}`` is a deployment on ``chain_kind``, ``{ethereum.NAME}`` and
    ``{cosmos.NAME}`` pick the chain explicitly, ``{account.NAME}`` is an
    account address and ``{chain_id}`` the chain id. ``extra`` wins over all.
    """
    if isinstance(value, dict):
        return {key: resolve_template(item, ctx, chain_kind, extra) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_template(item, ctx, chain_kind, extra) for item in value]
    if not isinstance(value, str):
        return value

    def _lookup(match: re.Match[str]) -> str:
        ref = match.group(1)
        if extra and ref in extra:
            return extra[ref]
        env = ctx.session.environments.get(chain_kind)
        if ref == "chain_id":
            if env is None:
                raise ChainE2EError(f"{{chain_id}} used but {chain_kind} is not running")
            return env.chain_id
        scope, _, name = ref.partition(".")
        if name and scope == "account":
            if env is None:
                raise ChainE2EError(f"{{{ref}}} used but {chain_kind} is not running")
            return env.account(name).address
        if name and scope in constants.CHAIN_KINDS:
            target_chain, contract = scope, name
        else:
            target_chain, contract = chain_kind, ref
        deployment = ctx.session.find_deployment(target_chain, contract)
        if deployment is None:
            raise ChainE2EError(f"unresolved reference {{{ref}}}: {contract} not deployed on {target_chain}")
        return deployment.address

    return _TEMPLATE_RE.sub(_lookup, value)


def _project_dir(raw: str) -> Path:
    return Path(raw).expanduser().resolve()


def forge_create_cmd(spec: ContractSpec, env: ChainEnvironment, *, args: list[str], json_output: bool) -> list[str]:
    deployer = env.primary_account
    cmd = [
        "forge",
        "create",
        spec.artifact,
        "--rpc-url",
        env.rpc_url,
        "--private-key",
        deployer.private_key or "",
        "--broadcast",
    ]
    if json_output:
        cmd.append("--json")
    if args:
        cmd.extend(["--constructor-args", *args])
    return cmd


def parse_forge_output(output: str) -> tuple[str, str | None]:
    address = extract_first(output, fields=FORGE_ADDRESS_FIELDS, patterns=FORGE_ADDRESS_PATTERNS)
    try:
        tx_hash = extract_first(output, fields=FORGE_TX_FIELDS, patterns=TX_HASH_PATTERNS)
    except ExtractionFailure:
        tx_hash = None
    return address, tx_hash


def deploy_ethereum_contract(ctx: StepContext, spec: ContractSpec) -> str:
    env = ctx.session.environment(constants.CHAIN_ETHEREUM)
    args = [str(arg) for arg in resolve_template(spec.constructor_args, ctx, constants.CHAIN_ETHEREUM)]
    cmd = forge_create_cmd(spec, env, args=args, json_output=ctx.config.ethereum.forge_json)
    result = ctx.tools.run(cmd, cwd=_project_dir(ctx.config.ethereum.project_dir))
    address, tx_hash = parse_forge_output(result.output)
    ctx.session.record_deployment(
        ContractDeployment(
            name=spec.name,
            address=address,
            chain=constants.CHAIN_ETHEREUM,
            tx_hash=tx_hash,
            env_var=spec.env_var,
        )
    )
    return f"{spec.name} at {address}"


def _tx_document(output: str) -> dict[str, Any] | None:
    try:
        document = parse_json_output(output)
    except ExtractionFailure:
        return None
    return document if isinstance(document, dict) else None


def _check_tx_code(document: dict[str, Any] | None, label: str) -> None:
    if not document:
        return
    code = document.get("code", 0)
    if code not in (0, "0", None):
        raw_log = document.get("raw_log", "")
        raise ChainE2EError(f"{label}: transaction failed with code {code}: {raw_log}")


def _has_events(document: dict[str, Any] | None) -> bool:
    if not document:
        return False
    return bool(document.get("logs")) or bool(document.get("events"))


def broadcast_cosmos_tx(ctx: StepContext, cli: CosmosCli, args: list[str], *, label: str) -> str:
    """Broadcast a wasmd tx and return the output of the confirmed transaction."""
    result = cli.run([*args, *cli.tx_flags()])
    document = _tx_document(result.output)
    _check_tx_code(document, label)
    if _has_events(document):
        return result.output
    try:
        tx_hash = extract_first(result.output, fields=COSMOS_TX_FIELDS, patterns=_BROADCAST_TX_PATTERNS)
    except ExtractionFailure:
        return result.output

    def _probe() -> str | None:
        query = cli.run(["query", "tx", tx_hash, *cli.query_flags()], check=False)
        if not query.ok:
            return None
        return query.output

    confirmed = ctx.require_ready(f"{label} tx {tx_hash[:12]}", _probe).value
    _check_tx_code(_tx_document(confirmed), label)
    return confirmed


def cosmos_cli_for(ctx: StepContext, env: ChainEnvironment) -> CosmosCli:
    home = Path(env.extra.get("home", ctx.work_dir / "wasmd-home"))
    return CosmosCli(ctx, home, rpc_url=env.rpc_url)


def deploy_cosmos_contract(ctx: StepContext, spec: ContractSpec) -> str:
    env = ctx.session.environment(constants.CHAIN_COSMOS)
    cli = cosmos_cli_for(ctx, env)
    wasm = _project_dir(ctx.config.cosmos.project_dir) / spec.artifact
    if not wasm.exists():
        raise ChainE2EError(f"{spec.name}: wasm artifact not found: {wasm}")

    stored = broadcast_cosmos_tx(ctx, cli, ["tx", "wasm", "store", str(wasm)], label=f"store {spec.name}")
    code_id = extract_first(stored, fields=CODE_ID_FIELDS, patterns=CODE_ID_PATTERNS)

    init_msg = resolve_template(spec.init_msg, ctx, constants.CHAIN_COSMOS)
    instantiated = broadcast_cosmos_tx(
        ctx,
        cli,
        [
            "tx",
            "wasm",
            "instantiate",
            code_id,
            json.dumps(init_msg),
            "--label",
            spec.label or spec.name,
            "--no-admin",
        ],
        label=f"instantiate {spec.name}",
    )
    address = extract_first(instantiated, fields=CONTRACT_ADDRESS_FIELDS, patterns=CONTRACT_ADDRESS_PATTERNS)
    tx_hash = None
    document = _tx_document(instantiated)
    if document:
        tx_hash = document.get("txhash")
    ctx.session.record_deployment(
        ContractDeployment(
            name=spec.name,
            address=address,
            chain=constants.CHAIN_COSMOS,
            tx_hash=tx_hash,
            code_id=code_id,
            env_var=spec.env_var,
        )
    )
    return f"{spec.name} code {code_id} at {address}"


def configure_ethereum(ctx: StepContext, calls: list[ConfigureCall]) -> str:
    env = ctx.session.environment(constants.CHAIN_ETHEREUM)
    sender = env.primary_account
    for call in calls:
        target = env.deployment(call.target)
        args = [str(arg) for arg in resolve_template(call.args, ctx, constants.CHAIN_ETHEREUM)]
        cmd = [
            "cast",
            "send",
            target.address,
            call.signature or "",
            *args,
            "--rpc-url",
            env.rpc_url,
            "--private-key",
            sender.private_key or "",
            "--json",
        ]
        result = ctx.tools.run(cmd, cwd=_project_dir(ctx.config.ethereum.project_dir))
        try:
            status = extract_first(result.output, fields=("status",))
        except ExtractionFailure:
            status = None
        if status in ("0x0", "0"):
            raise ChainE2EError(f"{call.target}.{call.signature} reverted")
    return f"{len(calls)} call(s) sent"


def configure_cosmos(ctx: StepContext, calls: list[ConfigureCall]) -> str:
    env = ctx.session.environment(constants.CHAIN_COSMOS)
    cli = cosmos_cli_for(ctx, env)
    for call in calls:
        target = env.deployment(call.target)
        msg = resolve_template(call.msg or {}, ctx, constants.CHAIN_COSMOS)
        broadcast_cosmos_tx(
            ctx,
            cli,
            ["tx", "wasm", "execute", target.address, json.dumps(msg)],
            label=f"execute {call.target}",
        )
    return f"{len(calls)} execute call(s) confirmed"


def simulate_deployment(ctx: StepContext, spec: ContractSpec, chain_kind: str, index: int) -> str:
    if chain_kind == constants.CHAIN_ETHEREUM:
        pool = constants.SIMULATED_ETH_ADDRESSES
        code_id = None
    else:
        pool = constants.SIMULATED_COSMOS_ADDRESSES
        code_id = str(index + 1)
    address = pool[index % len(pool)]
    ctx.session.record_deployment(
        ContractDeployment(
            name=spec.name,
            address=address,
            chain=chain_kind,
            tx_hash=constants.SIMULATED_TX_HASH,
            code_id=code_id,
            env_var=spec.env_var,
            simulated=True,
        )
    )
    logger.warning("recorded placeholder %s deployment for %s", chain_kind, spec.name)
    return f"{spec.name} placeholder {address}"


def cast_tx_hash(output: str) -> str | None:
    try:
        return extract_first(output, fields=CAST_TX_FIELDS, patterns=TX_HASH_PATTERNS)
    except ExtractionFailure:
        return None
