# Where: chaine2e/runner/planner.py
# What: Build the ordered step list for a session from its config.
# Why: Keep step wiring (dependencies, degradation, fatality) separate from execution.
from __future__ import annotations

import functools
import re
from typing import Any

from chaine2e.runner import constants
from chaine2e.runner.config import ContractSpec, SessionConfig
from chaine2e.runner.crosschain import run_cross_chain_message, simulate_cross_chain_message
from chaine2e.runner.deploy import (
    configure_cosmos,
    configure_ethereum,
    deploy_cosmos_contract,
    deploy_ethereum_contract,
    simulate_deployment,
)
from chaine2e.runner.envfile import export_session
from chaine2e.runner.indexer import run_indexer
from chaine2e.runner.nodes import assert_ufo_blocks, start_cosmos_node, start_ethereum_node
from chaine2e.runner.scenario import ScenarioStep

STEP_ETH_NODE = "ethereum-node"
STEP_COSMOS_NODE = "cosmos-node"
STEP_ETH_CONFIGURE = "ethereum-configure"
STEP_COSMOS_CONFIGURE = "cosmos-configure"
STEP_COSMOS_BLOCKS = "cosmos-blocks"
STEP_CROSS_CHAIN = "cross-chain-message"
STEP_EXPORT = "export-env"
STEP_INDEXER = "indexer"

_REF_RE = re.compile(r"\{(?:(ethereum|cosmos)\.)?([A-Za-z0-9_\-]+)\}")


def deploy_step_id(chain_kind: str, name: str) -> str:
    return f"{chain_kind}-deploy-{name}"


def _references(value: Any, chain_kind: str) -> set[tuple[str, str]]:
    if isinstance(value, dict):
        found: set[tuple[str, str]] = set()
        for item in value.values():
            found |= _references(item, chain_kind)
        return found
    if isinstance(value, list):
        found = set()
        for item in value:
            found |= _references(item, chain_kind)
        return found
    if not isinstance(value, str):
        return set()
    return {(scope or chain_kind, name) for scope, name in _REF_RE.findall(value)}


def _deploy_steps(
    config: SessionConfig,
    chain_kind: str,
    contracts: list[ContractSpec],
    node_step: str,
) -> list[ScenarioStep]:
    steps: list[ScenarioStep] = []
    known = {spec.name for spec in contracts}
    action = deploy_ethereum_contract if chain_kind == constants.CHAIN_ETHEREUM else deploy_cosmos_contract
    for index, spec in enumerate(contracts):
        source = spec.constructor_args if chain_kind == constants.CHAIN_ETHEREUM else spec.init_msg
        deps = [node_step]
        for ref_chain, ref_name in sorted(_references(source, chain_kind)):
            if ref_chain == chain_kind and ref_name in known and ref_name != spec.name:
                dep_id = deploy_step_id(chain_kind, ref_name)
                if any(step.step_id == dep_id for step in steps):
                    deps.append(dep_id)
        degradable = config.allow_simulated_deployments
        steps.append(
            ScenarioStep(
                step_id=deploy_step_id(chain_kind, spec.name),
                action=functools.partial(action, spec=spec),
                depends_on=tuple(deps),
                description=f"deploy {spec.name} on {chain_kind}",
                degradable=degradable,
                simulate=functools.partial(simulate_deployment, spec=spec, chain_kind=chain_kind, index=index)
                if degradable
                else None,
            )
        )
    return steps


def build_plan(config: SessionConfig) -> list[ScenarioStep]:
    steps: list[ScenarioStep] = []
    eth = config.ethereum
    cosmos = config.cosmos
    eth_ready: list[str] = []
    cosmos_ready: list[str] = []

    if eth.enabled:
        steps.append(
            ScenarioStep(
                STEP_ETH_NODE,
                start_ethereum_node,
                description=f"start ethereum node ({'attach' if eth.attach else eth.node})",
                session_fatal=eth.session_fatal,
                provides_environment=True,
            )
        )
    if cosmos.enabled:
        label = "attach" if cosmos.attach else cosmos.node
        steps.append(
            ScenarioStep(
                STEP_COSMOS_NODE,
                start_cosmos_node,
                description=f"start cosmos node ({label})",
                session_fatal=cosmos.session_fatal,
                provides_environment=True,
            )
        )

    if eth.enabled:
        deploys = _deploy_steps(config, constants.CHAIN_ETHEREUM, eth.contracts, STEP_ETH_NODE)
        steps.extend(deploys)
        eth_ready = [step.step_id for step in deploys] or [STEP_ETH_NODE]
        if eth.configure and deploys:
            steps.append(
                ScenarioStep(
                    STEP_ETH_CONFIGURE,
                    functools.partial(configure_ethereum, calls=eth.configure),
                    depends_on=tuple(eth_ready),
                    description="wire ethereum contracts",
                )
            )
            eth_ready = [STEP_ETH_CONFIGURE]

    if cosmos.enabled and config.uses_ufo:
        steps.append(
            ScenarioStep(
                STEP_COSMOS_BLOCKS,
                assert_ufo_blocks,
                depends_on=(STEP_COSMOS_NODE,),
                description=f"wait for {cosmos.ufo.min_blocks} ufo blocks",
            )
        )
    elif cosmos.enabled:
        deploys = _deploy_steps(config, constants.CHAIN_COSMOS, cosmos.contracts, STEP_COSMOS_NODE)
        steps.extend(deploys)
        cosmos_ready = [step.step_id for step in deploys] or [STEP_COSMOS_NODE]
        if cosmos.configure and deploys:
            steps.append(
                ScenarioStep(
                    STEP_COSMOS_CONFIGURE,
                    functools.partial(configure_cosmos, calls=cosmos.configure),
                    depends_on=tuple(cosmos_ready),
                    description="wire cosmos contracts",
                )
            )
            cosmos_ready = [STEP_COSMOS_CONFIGURE]

    if config.cross_chain.enabled and eth.enabled and cosmos.enabled and not config.uses_ufo:
        steps.append(
            ScenarioStep(
                STEP_CROSS_CHAIN,
                run_cross_chain_message,
                depends_on=tuple(eth_ready + cosmos_ready),
                description="send ethereum -> cosmos message",
                degradable=True,
                simulate=simulate_cross_chain_message,
            )
        )

    steps.append(ScenarioStep(STEP_EXPORT, export_session, description="export addresses"))

    if config.indexer.command:
        node_steps = tuple(step.step_id for step in steps if step.provides_environment)
        steps.append(
            ScenarioStep(
                STEP_INDEXER,
                run_indexer,
                depends_on=node_steps + (STEP_EXPORT,),
                description="run indexer",
            )
        )
    return steps
