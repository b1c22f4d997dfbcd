from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import pytest

from chaine2e.runner import constants
from chaine2e.runner.cleanup import CleanupManager
from chaine2e.runner.config import SessionConfig, build_config
from chaine2e.runner.context import StepContext
from chaine2e.runner.errors import ToolInvocationError
from chaine2e.runner.logging import redact_cmd
from chaine2e.runner.models import Account, ChainEnvironment, Session
from chaine2e.runner.tools import ToolResult

ETH_CONTRACT_ADDRESSES = (
    "0x5FbDB2315678afecb367f032d93F642f64180aa3",
    "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512",
)
WASM_CONTRACT_ADDRESSES = (
    "wasm14hj2tavq8fpesdwxxcu44rty3hh90vhujrvcmstl4zr3txmfvw9s0phg4d",
    "wasm1suhgf5svhu4usrurvxzlgn54ksxmn8gljarjtxqnapv8kjnp4nrss5maay",
)
VALIDATOR_ADDRESS = "wasm1cyyzpxplxdzkeea7kwsydadg87357qnaysj0zm"


class _Log:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def write_line(self, line: str) -> None:
        self.lines.append(line)


class FakeTools:
    """Stand-in for ToolRunner that answers from a responder instead of spawning."""

    def __init__(self, responder: Callable[[list[str]], "str | tuple[str, int]"]) -> None:
        self.responder = responder
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []

    def run(self, cmd, *, timeout=None, input_text=None, cwd=None, env=None, check=True):
        del timeout, cwd, env
        cmd = list(cmd)
        self.calls.append(cmd)
        self.inputs.append(input_text)
        answer = self.responder(cmd)
        output, code = answer if isinstance(answer, tuple) else (answer, 0)
        result = ToolResult(command=cmd, returncode=code, output=output)
        if check and code != 0:
            raise ToolInvocationError(redact_cmd(cmd), code, result.tail())
        return result

    def find(self, *tokens: str) -> list[list[str]]:
        return [call for call in self.calls if all(token in call for token in tokens)]


def _tx(txhash: str, events: list[dict] | None = None, *, code: int = 0, in_logs: bool = False) -> str:
    body: dict = {"height": "12", "txhash": txhash, "code": code, "raw_log": "" if code == 0 else "out of gas"}
    if events is not None:
        if in_logs:
            body["logs"] = [{"msg_index": 0, "events": events}]
        else:
            body["events"] = events
    return json.dumps(body)


def _attr(key: str, value: str) -> dict:
    return {"key": key, "value": value}


def chain_responder(*, state: str = '{"data":{"count":1}}') -> Callable[[list[str]], str]:
    """Script forge/cast/wasmd output for a complete two-chain session."""
    counters = {"forge": 0, "store": 0, "instantiate": 0}

    def _respond(cmd: list[str]) -> str:
        tool = Path(cmd[0]).name
        if tool == "forge":
            index = counters["forge"] % len(ETH_CONTRACT_ADDRESSES)
            counters["forge"] += 1
            return json.dumps(
                {
                    "deployer": "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266",
                    "deployedTo": ETH_CONTRACT_ADDRESSES[index],
                    "transactionHash": "0x" + f"{index + 1:02x}" * 32,
                }
            )
        if tool == "cast":
            return json.dumps({"status": "0x1", "transactionHash": "0x" + "cd" * 32})
        if cmd[1:4] == ["tx", "wasm", "store"]:
            counters["store"] += 1
            return _tx(f"{counters['store']:064X}", [])
        if cmd[1:3] == ["query", "tx"]:
            code_id = str(int(cmd[3], 16))
            return _tx(cmd[3], [{"type": "store_code", "attributes": [_attr("code_id", code_id)]}])
        if cmd[1:4] == ["tx", "wasm", "instantiate"]:
            index = counters["instantiate"] % len(WASM_CONTRACT_ADDRESSES)
            counters["instantiate"] += 1
            events = [
                {
                    "type": "instantiate",
                    "attributes": [
                        _attr("_contract_address", WASM_CONTRACT_ADDRESSES[index]),
                        _attr("code_id", cmd[4]),
                    ],
                }
            ]
            return _tx("E" * 64, events, in_logs=True)
        if cmd[1:4] == ["tx", "wasm", "execute"]:
            return _tx("F" * 64, [{"type": "execute", "attributes": [_attr("_contract_address", cmd[4])]}])
        if cmd[1:5] == ["query", "wasm", "contract-state", "smart"]:
            return state
        raise AssertionError(f"unexpected command: {cmd}")

    return _respond


def ethereum_env(rpc_url: str = "http://127.0.0.1:8545") -> ChainEnvironment:
    env = ChainEnvironment(
        name="ethereum-anvil",
        chain_kind=constants.CHAIN_ETHEREUM,
        node=constants.NODE_ANVIL,
        rpc_url=rpc_url,
        chain_id="31337",
        accounts=tuple(Account(name, address, private_key=key) for name, address, key in constants.ANVIL_ACCOUNTS),
    )
    env.mark_ready()
    return env


def cosmos_env(home: Path, rpc_url: str = "http://127.0.0.1:26657") -> ChainEnvironment:
    env = ChainEnvironment(
        name="cosmos-wasmd",
        chain_kind=constants.CHAIN_COSMOS,
        node=constants.NODE_WASMD,
        rpc_url=rpc_url,
        rest_url="http://127.0.0.1:1317",
        chain_id="wasmd-test",
        accounts=(Account("validator", VALIDATOR_ADDRESS),),
        extra={"home": str(home), "binary": "wasmd"},
    )
    env.mark_ready()
    return env


@pytest.fixture
def make_ctx(tmp_path) -> Callable[..., StepContext]:
    def _make(
        config: SessionConfig | None = None,
        responder: Callable[[list[str]], "str | tuple[str, int]"] | None = None,
        *,
        chains: tuple[str, ...] = (),
    ) -> StepContext:
        work_dir = tmp_path / "work"
        work_dir.mkdir(exist_ok=True)
        session = Session(work_dir=work_dir, cleanup=CleanupManager())
        cfg = config or build_config({})
        cfg.ready_interval = 0.01
        ctx = StepContext(
            session=session,
            config=cfg,
            tools=FakeTools(responder or chain_responder()),
            log=_Log(),
        )
        if constants.CHAIN_ETHEREUM in chains:
            session.add_environment(ethereum_env())
        if constants.CHAIN_COSMOS in chains:
            session.add_environment(cosmos_env(work_dir / "wasmd-home"))
        return ctx

    return _make


@pytest.fixture
def wasm_project(tmp_path) -> Path:
    project = tmp_path / "contracts" / "cosmos"
    (project / "artifacts").mkdir(parents=True)
    for name in ("processor", "gateway"):
        (project / "artifacts" / f"{name}.wasm").write_bytes(b"\x00asm\x01\x00\x00\x00")
    return project


@pytest.fixture
def chain_tools() -> Callable[..., FakeTools]:
    def _make(**kwargs) -> FakeTools:
        return FakeTools(chain_responder(**kwargs))

    return _make
