# Where: chaine2e/runner/tests/test_deploy.py
# What: Tests for contract deployment, configuration calls and template resolution.
# Why: Deployments must record exactly what the chain reported, never a guessed address.
from __future__ import annotations

import json

import pytest

from chaine2e.runner import constants
from chaine2e.runner.config import ConfigureCall, ContractSpec, build_config
from chaine2e.runner.deploy import (
    configure_cosmos,
    configure_ethereum,
    deploy_cosmos_contract,
    deploy_ethereum_contract,
    parse_forge_output,
    resolve_template,
    simulate_deployment,
)
from chaine2e.runner.errors import ChainE2EError, ExtractionFailure, ToolInvocationError
from chaine2e.runner.models import ContractDeployment

GATEWAY = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def test_parse_forge_output_from_json() -> None:
    output = json.dumps({"deployer": "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266", "deployedTo": GATEWAY, "transactionHash": "0x" + "ab" * 32})

    assert parse_forge_output(output) == (GATEWAY, "0x" + "ab" * 32)


def test_parse_forge_output_from_text() -> None:
    output = (
        "Deployer: 0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266\n"
        f"Deployed to: {GATEWAY}\n"
    )

    assert parse_forge_output(output) == (GATEWAY, None)


def test_parse_forge_output_without_address() -> None:
    with pytest.raises(ExtractionFailure):
        parse_forge_output("Error: compilation failed")


def test_resolve_template_handles_scopes_and_extra(make_ctx) -> None:
    ctx = make_ctx(chains=(constants.CHAIN_ETHEREUM, constants.CHAIN_COSMOS))
    ctx.session.record_deployment(ContractDeployment("gateway", GATEWAY, constants.CHAIN_ETHEREUM))
    ctx.session.record_deployment(ContractDeployment("gateway", "wasm1gateway", constants.CHAIN_COSMOS))

    value = resolve_template(
        {"route": ["{gateway}", "{ethereum.gateway}", "{account.validator}", "{chain_id}", "{payload}"]},
        ctx,
        constants.CHAIN_COSMOS,
        {"payload": "0x01"},
    )

    assert value == {"route": ["wasm1gateway", GATEWAY, ctx.session.environment("cosmos").accounts[0].address, "wasmd-test", "0x01"]}


def test_resolve_template_unknown_contract_fails(make_ctx) -> None:
    ctx = make_ctx(chains=(constants.CHAIN_ETHEREUM,))

    with pytest.raises(ChainE2EError, match="unresolved reference"):
        resolve_template("{processor}", ctx, constants.CHAIN_ETHEREUM)


def test_resolve_template_leaves_non_strings(make_ctx) -> None:
    ctx = make_ctx()

    assert resolve_template({"count": 3, "flag": True}, ctx, constants.CHAIN_COSMOS) == {"count": 3, "flag": True}


def test_deploy_ethereum_contract_records_deployment(make_ctx, tmp_path) -> None:
    config = build_config({"ethereum": {"project_dir": str(tmp_path)}})
    ctx = make_ctx(config, chains=(constants.CHAIN_ETHEREUM,))
    ctx.session.record_deployment(ContractDeployment("processor", "0x" + "11" * 20, constants.CHAIN_ETHEREUM))
    spec = ContractSpec("gateway", "src/Gateway.sol:Gateway", env_var="GATEWAY_ADDRESS", constructor_args=["{processor}"])

    detail = deploy_ethereum_contract(ctx, spec)

    deployment = ctx.session.find_deployment(constants.CHAIN_ETHEREUM, "gateway")
    assert deployment is not None
    assert deployment.address == GATEWAY
    assert deployment.tx_hash == "0x" + "01" * 32
    assert deployment.env_var == "GATEWAY_ADDRESS"
    assert ctx.session.environment("ethereum").find("gateway") == deployment
    assert detail == f"gateway at {GATEWAY}"
    cmd = ctx.tools.calls[0]
    assert cmd[:3] == ["forge", "create", "src/Gateway.sol:Gateway"]
    assert cmd[cmd.index("--constructor-args") + 1] == "0x" + "11" * 20
    assert "--json" in cmd


def test_deploy_ethereum_contract_failure_does_not_record(make_ctx) -> None:
    ctx = make_ctx(responder=lambda _cmd: ("Error: insufficient funds", 1), chains=(constants.CHAIN_ETHEREUM,))

    with pytest.raises(ToolInvocationError) as excinfo:
        deploy_ethereum_contract(ctx, ContractSpec("gateway", "src/Gateway.sol:Gateway"))

    assert "insufficient funds" in str(excinfo.value)
    assert constants.ANVIL_ACCOUNTS[0][2] not in str(excinfo.value)
    assert ctx.session.deployments == []


def test_deploy_cosmos_contract_polls_for_store_result(make_ctx, wasm_project) -> None:
    config = build_config({"cosmos": {"project_dir": str(wasm_project)}})
    ctx = make_ctx(config, chains=(constants.CHAIN_COSMOS,))
    spec = ContractSpec("gateway", "artifacts/gateway.wasm", env_var="COSMOS_GATEWAY_ADDRESS", init_msg={"admin": "{account.validator}"})

    detail = deploy_cosmos_contract(ctx, spec)

    deployment = ctx.session.find_deployment(constants.CHAIN_COSMOS, "gateway")
    assert deployment is not None
    assert deployment.code_id == "1"
    assert deployment.address.startswith("wasm1")
    assert deployment.tx_hash == "E" * 64
    assert detail.startswith("gateway code 1 at wasm1")
    tools = ctx.tools
    assert len(tools.find("query", "tx")) == 1
    instantiate = tools.find("instantiate")[0]
    assert json.loads(instantiate[5]) == {"admin": ctx.session.environment("cosmos").accounts[0].address}
    assert instantiate[instantiate.index("--label") + 1] == "gateway"
    assert "--no-admin" in instantiate
    assert instantiate[-2:] == ["--home", str(ctx.work_dir / "wasmd-home")]


def test_deploy_cosmos_contract_requires_wasm(make_ctx, tmp_path) -> None:
    config = build_config({"cosmos": {"project_dir": str(tmp_path)}})
    ctx = make_ctx(config, chains=(constants.CHAIN_COSMOS,))

    with pytest.raises(ChainE2EError, match="wasm artifact not found"):
        deploy_cosmos_contract(ctx, ContractSpec("gateway", "artifacts/missing.wasm"))

    assert ctx.tools.calls == []


def test_cosmos_tx_with_failure_code_raises(make_ctx, wasm_project) -> None:
    config = build_config({"cosmos": {"project_dir": str(wasm_project)}})
    failed = json.dumps({"txhash": "A" * 64, "code": 5, "raw_log": "insufficient fees", "logs": []})
    ctx = make_ctx(config, responder=lambda _cmd: failed, chains=(constants.CHAIN_COSMOS,))

    with pytest.raises(ChainE2EError, match="code 5: insufficient fees"):
        deploy_cosmos_contract(ctx, ContractSpec("gateway", "artifacts/gateway.wasm"))


def test_deploy_requires_a_running_chain(make_ctx) -> None:
    ctx = make_ctx()

    with pytest.raises(KeyError, match="no ethereum environment"):
        deploy_ethereum_contract(ctx, ContractSpec("gateway", "src/Gateway.sol:Gateway"))


def test_configure_ethereum_sends_each_call(make_ctx) -> None:
    ctx = make_ctx(chains=(constants.CHAIN_ETHEREUM,))
    ctx.session.record_deployment(ContractDeployment("processor", "0x" + "11" * 20, constants.CHAIN_ETHEREUM))
    ctx.session.record_deployment(ContractDeployment("gateway", GATEWAY, constants.CHAIN_ETHEREUM))
    calls = [
        ConfigureCall("processor", "setGateway(address)", ["{gateway}"]),
        ConfigureCall("gateway", "setRelayer(address)", ["{account.deployer}"]),
    ]

    assert configure_ethereum(ctx, calls) == "2 call(s) sent"

    first, second = ctx.tools.calls
    assert first[:5] == ["cast", "send", "0x" + "11" * 20, "setGateway(address)", GATEWAY]
    assert second[4] == constants.ANVIL_ACCOUNTS[0][1]


def test_configure_ethereum_detects_revert(make_ctx) -> None:
    reverted = json.dumps({"status": "0x0", "transactionHash": "0x" + "cd" * 32})
    ctx = make_ctx(responder=lambda _cmd: reverted, chains=(constants.CHAIN_ETHEREUM,))
    ctx.session.record_deployment(ContractDeployment("gateway", GATEWAY, constants.CHAIN_ETHEREUM))

    with pytest.raises(ChainE2EError, match="reverted"):
        configure_ethereum(ctx, [ConfigureCall("gateway", "pause()")])


def test_configure_cosmos_executes_resolved_messages(make_ctx) -> None:
    ctx = make_ctx(chains=(constants.CHAIN_COSMOS,))
    ctx.session.record_deployment(ContractDeployment("processor", "wasm1processor", constants.CHAIN_COSMOS))
    ctx.session.record_deployment(ContractDeployment("gateway", "wasm1gateway", constants.CHAIN_COSMOS))

    detail = configure_cosmos(ctx, [ConfigureCall("processor", msg={"set_gateway": {"gateway": "{gateway}"}})])

    assert detail == "1 execute call(s) confirmed"
    execute = ctx.tools.calls[0]
    assert execute[1:5] == ["tx", "wasm", "execute", "wasm1processor"]
    assert json.loads(execute[5]) == {"set_gateway": {"gateway": "wasm1gateway"}}
    assert "--from" in execute


def test_simulate_deployment_records_placeholder_without_environment(make_ctx) -> None:
    ctx = make_ctx()
    spec = ContractSpec("gateway", "artifacts/gateway.wasm", env_var="COSMOS_GATEWAY_ADDRESS")

    detail = simulate_deployment(ctx, spec, constants.CHAIN_COSMOS, 1)

    deployment = ctx.session.deployments[0]
    assert deployment.simulated is True
    assert deployment.address == constants.SIMULATED_COSMOS_ADDRESSES[1]
    assert deployment.code_id == "2"
    assert deployment.tx_hash == constants.SIMULATED_TX_HASH
    assert "placeholder" in detail
    assert ctx.tools.calls == []
