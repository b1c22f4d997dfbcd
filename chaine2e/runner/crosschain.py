# Where: chaine2e/runner/crosschain.py
# What: The scripted Ethereum -> Cosmos message scenario, live and simulated.
# Why: This is the one step that needs both chains; it degrades to a simulation when either is missing.
from __future__ import annotations

import json
import logging

from chaine2e.runner import constants
from chaine2e.runner.context import StepContext
from chaine2e.runner.deploy import broadcast_cosmos_tx, cast_tx_hash, cosmos_cli_for, resolve_template
from chaine2e.runner.errors import ChainE2EError

logger = logging.getLogger(__name__)


def _extra(ctx: StepContext, eth_tx_hash: str | None = None) -> dict[str, str]:
    extra = {"payload": ctx.config.cross_chain.payload}
    if eth_tx_hash:
        extra["eth_tx_hash"] = eth_tx_hash
    return extra


def send_ethereum_message(ctx: StepContext) -> str | None:
    cross = ctx.config.cross_chain
    env = ctx.session.environment(constants.CHAIN_ETHEREUM)
    gateway = env.deployment(cross.source_contract)
    args = [str(arg) for arg in resolve_template(cross.args, ctx, constants.CHAIN_ETHEREUM, _extra(ctx))]
    result = ctx.tools.run(
        [
            "cast",
            "send",
            gateway.address,
            cross.signature,
            *args,
            "--rpc-url",
            env.rpc_url,
            "--private-key",
            env.primary_account.private_key or "",
            "--json",
        ]
    )
    return cast_tx_hash(result.output)


def relay_to_cosmos(ctx: StepContext, eth_tx_hash: str | None) -> None:
    cross = ctx.config.cross_chain
    env = ctx.session.environment(constants.CHAIN_COSMOS)
    target = env.deployment(cross.relay_contract)
    msg = resolve_template(cross.relay_msg, ctx, constants.CHAIN_COSMOS, _extra(ctx, eth_tx_hash))
    broadcast_cosmos_tx(
        ctx,
        cosmos_cli_for(ctx, env),
        ["tx", "wasm", "execute", target.address, json.dumps(msg)],
        label="relay message",
    )


def verify_cosmos_state(ctx: StepContext, eth_tx_hash: str | None) -> str:
    cross = ctx.config.cross_chain
    env = ctx.session.environment(constants.CHAIN_COSMOS)
    target = env.deployment(cross.verify_contract)
    cli = cosmos_cli_for(ctx, env)
    query = resolve_template(cross.verify_query, ctx, constants.CHAIN_COSMOS, _extra(ctx, eth_tx_hash))
    result = cli.run(
        ["query", "wasm", "contract-state", "smart", target.address, json.dumps(query), *cli.query_flags()]
    )
    if cross.expect:
        expected = resolve_template(cross.expect, ctx, constants.CHAIN_COSMOS, _extra(ctx, eth_tx_hash))
        if expected not in result.output:
            raise ChainE2EError(f"{cross.verify_contract} state does not contain {expected!r}")
    return result.output.strip().splitlines()[-1] if result.output.strip() else ""


def run_cross_chain_message(ctx: StepContext) -> str:
    eth_tx_hash = send_ethereum_message(ctx)
    ctx.note(f"ethereum message tx {eth_tx_hash or 'unknown'}")
    relay_to_cosmos(ctx, eth_tx_hash)
    verify_cosmos_state(ctx, eth_tx_hash)
    return f"message relayed (eth tx {eth_tx_hash or 'unknown'})"


def _address_or_placeholder(ctx: StepContext, chain_kind: str, name: str, placeholder: str) -> str:
    deployment = ctx.session.find_deployment(chain_kind, name)
    return deployment.address if deployment else placeholder


def simulate_cross_chain_message(ctx: StepContext) -> str:
    cross = ctx.config.cross_chain
    source = _address_or_placeholder(
        ctx, constants.CHAIN_ETHEREUM, cross.source_contract, constants.SIMULATED_ETH_ADDRESSES[0]
    )
    target = _address_or_placeholder(
        ctx, constants.CHAIN_COSMOS, cross.relay_contract, constants.SIMULATED_COSMOS_ADDRESSES[0]
    )
    logger.warning("cross-chain message simulated: %s -> %s", source, target)
    return f"simulated {source} -> {target}; no transaction sent"
