# Where: chaine2e/runner/nodes.py
# What: Bring up (or attach to) the Ethereum and Cosmos devnets.
# Why: Node startup is the only place processes are spawned and chain facts discovered.
from __future__ import annotations

import json
import logging
import re
from pathlib import Path

import requests

from chaine2e.runner import constants
from chaine2e.runner.context import StepContext
from chaine2e.runner.errors import ChainE2EError, ToolInvocationError
from chaine2e.runner.models import Account, ChainEnvironment
from chaine2e.runner.process import ProcessHandle
from chaine2e.runner.readiness import (
    jsonrpc_probe,
    log_pattern_probe,
    rest_probe,
    tendermint_status,
    tendermint_status_probe,
)

logger = logging.getLogger(__name__)

KEYRING_BACKEND = "test"
VALIDATOR_KEY = "validator"


def _anvil_accounts() -> tuple[Account, ...]:
    return tuple(
        Account(name=name, address=address, private_key=key)
        for name, address, key in constants.ANVIL_ACCOUNTS
    )


def ethereum_node_args(ctx: StepContext) -> tuple[str, list[str]]:
    eth = ctx.config.ethereum
    if eth.node == constants.NODE_RETH:
        datadir = ctx.work_dir / "reth-data"
        args = [
            "node",
            "--dev",
            "--http",
            "--http.addr",
            eth.host,
            "--http.port",
            str(eth.port),
            "--datadir",
            str(datadir),
        ]
        return eth.binary or "reth", args
    args = ["--host", eth.host, "--port", str(eth.port), "--chain-id", str(eth.chain_id)]
    return eth.binary or "anvil", args


def start_ethereum_node(ctx: StepContext) -> str:
    eth = ctx.config.ethereum
    rpc_url = eth.resolved_rpc_url
    handle = None
    node = constants.NODE_ATTACHED if eth.attach else eth.node
    if not eth.attach:
        command, args = ethereum_node_args(ctx)
        handle = ProcessHandle.spawn(
            "ethereum-node",
            command,
            args,
            work_dir=ctx.work_dir,
            log_dir=ctx.session.log_dir,
            cleanup=ctx.session.cleanup,
        )
    result = ctx.require_ready("ethereum node", jsonrpc_probe(rpc_url), handle=handle)
    chain_id = str(int(str(result.value), 16)) if str(result.value).startswith("0x") else str(result.value)
    env = ChainEnvironment(
        name=f"ethereum-{node}",
        chain_kind=constants.CHAIN_ETHEREUM,
        node=node,
        rpc_url=rpc_url,
        chain_id=chain_id,
        accounts=_anvil_accounts(),
        process=handle,
        session_fatal=eth.session_fatal,
    )
    env.mark_ready()
    ctx.session.add_environment(env)
    return f"{node} at {rpc_url} (chain id {chain_id})"


def patch_genesis(path: Path) -> None:
    """Open code upload and instantiation to everybody on a fresh wasmd genesis."""
    data = json.loads(path.read_text(encoding="utf-8"))
    try:
        params = data["app_state"]["wasm"]["params"]
    except KeyError as exc:
        raise ChainE2EError(f"{path}: genesis has no app_state.wasm.params") from exc
    params["code_upload_access"] = {"permission": "Everybody"}
    params["instantiate_default_permission"] = "Everybody"
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


class CosmosCli:
    """Thin command builder for the wasmd CLI bound to one home directory."""

    def __init__(self, ctx: StepContext, home: Path, *, rpc_url: str | None = None) -> None:
        cosmos = ctx.config.cosmos
        self.ctx = ctx
        self.binary = cosmos.binary
        self.home = home
        self.chain_id = cosmos.chain_id
        self.rpc_url = rpc_url or cosmos.resolved_rpc_url
        self.genesis_prefix = ["genesis"] if cosmos.genesis_subcommand else []
        self.gas_prices = cosmos.gas_prices

    def _home(self) -> list[str]:
        return ["--home", str(self.home)]

    def run(self, args: list[str], **kwargs):
        return self.ctx.tools.run([self.binary, *args, *self._home()], **kwargs)

    def recover_key(self, name: str, mnemonic: str) -> str:
        self.run(
            ["keys", "add", name, "--recover", "--keyring-backend", KEYRING_BACKEND],
            input_text=f"{mnemonic}\n",
        )
        return self.key_address(name)

    def key_address(self, name: str) -> str:
        result = self.run(["keys", "show", name, "-a", "--keyring-backend", KEYRING_BACKEND])
        lines = [line.strip() for line in result.output.splitlines() if line.strip()]
        if not lines:
            raise ChainE2EError(f"keys show {name} printed no address")
        return lines[-1]

    def tx_flags(self, sender: str = VALIDATOR_KEY) -> list[str]:
        flags = [
            "--from",
            sender,
            "--keyring-backend",
            KEYRING_BACKEND,
            "--chain-id",
            self.chain_id,
            "--node",
            self.rpc_url,
            "--gas",
            "auto",
            "--gas-adjustment",
            "1.3",
            "--output",
            "json",
            "-y",
        ]
        if self.gas_prices:
            flags.extend(["--gas-prices", self.gas_prices])
        return flags

    def query_flags(self) -> list[str]:
        return ["--node", self.rpc_url, "--output", "json"]


def bootstrap_wasmd_home(ctx: StepContext, cli: CosmosCli) -> str:
    cosmos = ctx.config.cosmos
    cli.run(["init", cosmos.moniker, "--chain-id", cosmos.chain_id])
    validator = cli.recover_key(VALIDATOR_KEY, cosmos.validator_mnemonic)
    cli.run([*cli.genesis_prefix, "add-genesis-account", validator, constants.COSMOS_GENESIS_BALANCE])
    cli.run(
        [
            *cli.genesis_prefix,
            "gentx",
            VALIDATOR_KEY,
            constants.COSMOS_GENTX_STAKE,
            "--chain-id",
            cosmos.chain_id,
            "--keyring-backend",
            KEYRING_BACKEND,
        ]
    )
    cli.run([*cli.genesis_prefix, "collect-gentxs"])
    patch_genesis(cli.home / "config" / "genesis.json")
    return validator


def wasmd_start_args(ctx: StepContext, home: Path) -> list[str]:
    cosmos = ctx.config.cosmos
    return [
        "start",
        "--home",
        str(home),
        "--rpc.laddr",
        f"tcp://0.0.0.0:{cosmos.rpc_port}",
        "--grpc.address",
        f"0.0.0.0:{cosmos.grpc_port}",
        "--api.enable",
        "--api.address",
        f"tcp://0.0.0.0:{cosmos.rest_port}",
        "--minimum-gas-prices",
        f"0{cosmos.denom}",
    ]


def _block_height(status: dict) -> int:
    return int(status.get("sync_info", {}).get("latest_block_height", 0) or 0)


def wait_for_next_block(ctx: StepContext, rpc_url: str) -> None:
    start = _block_height(tendermint_status(rpc_url))

    def _probe() -> bool:
        return _block_height(tendermint_status(rpc_url)) > start

    ctx.require_ready("next cosmos block", _probe, timeout=max(ctx.config.ready_timeout, 10.0))


def fund_test_accounts(ctx: StepContext, cli: CosmosCli, *, fund: bool) -> list[Account]:
    accounts: list[Account] = []
    for name, mnemonic in ctx.config.cosmos.test_accounts:
        try:
            address = cli.recover_key(name, mnemonic)
        except (ToolInvocationError, ChainE2EError) as exc:
            logger.warning("could not import cosmos account %s: %s", name, exc)
            continue
        accounts.append(Account(name=name, address=address, mnemonic=mnemonic))
        if not fund:
            continue
        try:
            cli.run(
                [
                    "tx",
                    "bank",
                    "send",
                    VALIDATOR_KEY,
                    address,
                    constants.COSMOS_FUNDING_AMOUNT,
                    *cli.tx_flags(),
                ]
            )
            wait_for_next_block(ctx, cli.rpc_url)
        except (ToolInvocationError, ChainE2EError, requests.RequestException) as exc:
            logger.warning("funding %s (%s) failed: %s", name, address, exc)
            ctx.note(f"warning: funding {name} failed; continuing")
    return accounts


def start_cosmos_node(ctx: StepContext) -> str:
    cosmos = ctx.config.cosmos
    if cosmos.node == constants.NODE_UFO and not cosmos.attach:
        return start_ufo_node(ctx)

    home = ctx.work_dir / "wasmd-home"
    rpc_url = cosmos.resolved_rpc_url
    rest_url = cosmos.resolved_rest_url
    cli = CosmosCli(ctx, home, rpc_url=rpc_url)
    handle = None
    node = constants.NODE_ATTACHED if cosmos.attach else constants.NODE_WASMD
    if cosmos.attach:
        validator = cli.recover_key(VALIDATOR_KEY, cosmos.validator_mnemonic)
    else:
        validator = bootstrap_wasmd_home(ctx, cli)
        handle = ProcessHandle.spawn(
            "cosmos-node",
            cosmos.binary,
            wasmd_start_args(ctx, home),
            work_dir=ctx.work_dir,
            log_dir=ctx.session.log_dir,
            cleanup=ctx.session.cleanup,
        )
    result = ctx.require_ready("cosmos node", tendermint_status_probe(rpc_url), handle=handle)
    if cosmos.check_rest:
        ctx.require_ready("cosmos rest api", rest_probe(rest_url), handle=handle)
    network = result.value.get("node_info", {}).get("network") if isinstance(result.value, dict) else None
    chain_id = network or cosmos.chain_id

    accounts = [Account(name=VALIDATOR_KEY, address=validator, mnemonic=cosmos.validator_mnemonic)]
    accounts.extend(fund_test_accounts(ctx, cli, fund=not cosmos.attach))
    env = ChainEnvironment(
        name=f"cosmos-{node}",
        chain_kind=constants.CHAIN_COSMOS,
        node=node,
        rpc_url=rpc_url,
        rest_url=rest_url,
        chain_id=chain_id,
        accounts=tuple(accounts),
        process=handle,
        session_fatal=cosmos.session_fatal,
        extra={"home": str(home), "binary": cosmos.binary},
    )
    env.mark_ready()
    ctx.session.add_environment(env)
    return f"{node} at {rpc_url} (chain id {chain_id}, {len(accounts)} account(s))"


def ufo_node_args(ctx: StepContext) -> list[str]:
    ufo = ctx.config.cosmos.ufo
    return [
        "--build-mode",
        ufo.build_mode,
        "--validators",
        str(ufo.validators),
        "--block-time",
        str(ufo.block_time_ms),
    ]


def start_ufo_node(ctx: StepContext) -> str:
    cosmos = ctx.config.cosmos
    ufo = cosmos.ufo
    handle = ProcessHandle.spawn(
        "cosmos-node",
        ufo.binary,
        ufo_node_args(ctx),
        work_dir=ctx.work_dir,
        log_dir=ctx.session.log_dir,
        cleanup=ctx.session.cleanup,
    )
    ctx.require_ready("ufo node", log_pattern_probe(handle.log_path, ufo.block_pattern), handle=handle)
    env = ChainEnvironment(
        name=f"cosmos-ufo-{ufo.build_mode}",
        chain_kind=constants.CHAIN_COSMOS,
        node=constants.NODE_UFO,
        rpc_url=cosmos.resolved_rpc_url,
        chain_id=cosmos.chain_id,
        process=handle,
        session_fatal=cosmos.session_fatal,
        extra={"build_mode": ufo.build_mode, "validators": ufo.validators},
    )
    env.mark_ready()
    ctx.session.add_environment(env)
    return f"ufo ({ufo.build_mode}, {ufo.validators} validator(s))"


def assert_ufo_blocks(ctx: StepContext) -> str:
    env = ctx.session.environment(constants.CHAIN_COSMOS)
    ufo = ctx.config.cosmos.ufo
    pattern = log_pattern_probe(env.process.log_path, ufo.block_pattern)

    def _probe() -> int | None:
        line = pattern()
        if not line:
            return None
        match = re.search(ufo.block_pattern, line)
        height = int(match.group(1)) if match and match.groups() else 0
        return height if height >= ufo.min_blocks else None

    result = ctx.require_ready(
        f"ufo block {ufo.min_blocks}",
        _probe,
        handle=env.process,
        timeout=max(ctx.config.ready_timeout, ufo.min_blocks * ufo.block_time_ms / 1000.0 * 3),
    )
    return f"block height {result.value} reached"
