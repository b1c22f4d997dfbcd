# Where: chaine2e/runner/tests/test_session_e2e.py
# What: Whole-session tests with scripted tools and stubbed node startup.
# Why: Verify planning, execution, exports, reporting and teardown work together.
from __future__ import annotations

import json
import os
import sys

import pytest
import yaml

from chaine2e import run_tests
from chaine2e.runner import constants, nodes, planner
from chaine2e.runner import session as session_mod
from chaine2e.runner.config import load_config
from chaine2e.runner.errors import ReadinessTimeout
from chaine2e.runner.envfile import read_env_file
from chaine2e.runner.events import (
    STATUS_FAILED,
    STATUS_SIMULATED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    VERDICT_PARTIAL,
    VERDICT_SUCCESS,
)
from chaine2e.runner.models import Account, ChainEnvironment
from chaine2e.runner.planner import (
    STEP_COSMOS_NODE,
    STEP_CROSS_CHAIN,
    STEP_ETH_NODE,
    STEP_EXPORT,
    build_plan,
    deploy_step_id,
)
from chaine2e.runner.report import EXIT_PARTIAL, EXIT_SUCCESS, build_report
from chaine2e.runner.scenario import ScenarioRunner
from chaine2e.runner.session import open_session
from chaine2e.runner.ui import PlainReporter


def _start_ethereum(ctx) -> str:
    env = ChainEnvironment(
        name="ethereum-anvil",
        chain_kind=constants.CHAIN_ETHEREUM,
        node=constants.NODE_ANVIL,
        rpc_url="http://127.0.0.1:8545",
        chain_id="31337",
        accounts=tuple(Account(name, address, private_key=key) for name, address, key in constants.ANVIL_ACCOUNTS),
    )
    env.mark_ready()
    ctx.session.add_environment(env)
    return "anvil stub"


def _start_cosmos(ctx) -> str:
    env = ChainEnvironment(
        name="cosmos-wasmd",
        chain_kind=constants.CHAIN_COSMOS,
        node=constants.NODE_WASMD,
        rpc_url="http://127.0.0.1:26657",
        rest_url="http://127.0.0.1:1317",
        chain_id="wasmd-test",
        accounts=(Account("validator", "wasm1cyyzpxplxdzkeea7kwsydadg87357qnaysj0zm"),),
        extra={"home": str(ctx.work_dir / "wasmd-home"), "binary": "wasmd"},
    )
    env.mark_ready()
    ctx.session.add_environment(env)
    return "wasmd stub"


def _cosmos_down(ctx) -> str:
    raise ReadinessTimeout("cosmos node: not ready after 60.0s")


@pytest.fixture
def stubbed_session(monkeypatch, tmp_path, wasm_project, chain_tools):
    monkeypatch.setattr(planner, "start_ethereum_node", _start_ethereum)
    monkeypatch.setattr(planner, "start_cosmos_node", _start_cosmos)
    monkeypatch.setattr(session_mod, "ToolRunner", lambda *args, **kwargs: chain_tools())
    for key in ("ETH_RPC_URL", "COSMOS_RPC_URL", "COSMOS_REST_URL", "DATABASE_URL"):
        monkeypatch.delenv(key, raising=False)

    config = load_config()
    config.work_root = str(tmp_path / "runs")
    config.export_path = str(tmp_path / "out" / constants.EXPORT_ENV_FILE)
    config.ethereum.project_dir = str(tmp_path)
    config.cosmos.project_dir = str(wasm_project)
    config.ready_interval = 0.01
    return config


def _run(config):
    runner = ScenarioRunner(build_plan(config))
    with open_session(config, install_signals=False) as ctx:
        runner.run(ctx)
    return ctx, runner


def test_full_session_succeeds_and_cleans_up(stubbed_session, tmp_path) -> None:
    ctx, runner = _run(stubbed_session)

    report = build_report(ctx.session, cleanup_errors=ctx.session.cleanup.errors)
    statuses = {result.step_id: result.status for result in report.results}
    assert set(statuses.values()) == {STATUS_SUCCESS}, statuses
    assert report.verdict == VERDICT_SUCCESS
    assert report.exit_code == EXIT_SUCCESS
    assert runner.interrupted is False
    assert len(report.deployments) == 4
    assert not any(item.simulated for item in report.deployments)

    exports = read_env_file(tmp_path / "out" / constants.EXPORT_ENV_FILE)
    assert exports["GATEWAY_ADDRESS"].startswith("0x")
    assert exports["COSMOS_GATEWAY_ADDRESS"].startswith("wasm1")
    assert exports["COSMOS_GATEWAY_CODE_ID"] == "2"
    assert exports["ETH_RPC_URL"] == "http://127.0.0.1:8545"
    assert not ctx.session.work_dir.exists()
    assert ctx.session.cleanup.errors == []


def test_cosmos_failure_degrades_to_partial(stubbed_session, monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(planner, "start_cosmos_node", _cosmos_down)

    ctx, _runner = _run(stubbed_session)

    report = build_report(ctx.session)
    statuses = {result.step_id: result.status for result in report.results}
    assert statuses[STEP_COSMOS_NODE] == STATUS_FAILED
    assert statuses[deploy_step_id("ethereum", "gateway")] == STATUS_SUCCESS
    assert statuses[deploy_step_id("cosmos", "gateway")] == STATUS_SKIPPED
    assert statuses[STEP_CROSS_CHAIN] == STATUS_SIMULATED
    assert statuses[STEP_EXPORT] == STATUS_SUCCESS
    assert report.verdict == VERDICT_PARTIAL
    assert report.exit_code == EXIT_PARTIAL

    exports = read_env_file(tmp_path / "out" / constants.EXPORT_ENV_FILE)
    assert "GATEWAY_ADDRESS" in exports
    assert "COSMOS_RPC_URL" not in exports
    assert "COSMOS_GATEWAY_ADDRESS" not in exports


def test_keep_artifacts_preserves_work_dir(stubbed_session) -> None:
    stubbed_session.keep_artifacts = True

    ctx, _runner = _run(stubbed_session)

    assert ctx.session.work_dir.exists()
    assert (ctx.session.log_dir / constants.SESSION_LOG_FILE).exists()
    assert (ctx.session.log_dir / "tools.log").exists()


def test_main_writes_summary_and_exits_with_verdict(stubbed_session, monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.setattr(planner, "start_cosmos_node", _cosmos_down)
    config_path = tmp_path / "session.yaml"
    data = yaml.safe_load(load_config().source.read_text(encoding="utf-8"))
    data["ethereum"]["project_dir"] = stubbed_session.ethereum.project_dir
    data["cosmos"]["project_dir"] = stubbed_session.cosmos.project_dir
    data["session"]["export_path"] = stubbed_session.export_path
    data["session"]["ready_interval"] = 0.01
    config_path.write_text(yaml.safe_dump(data), encoding="utf-8")
    summary_path = tmp_path / "summary.json"

    with pytest.raises(SystemExit) as excinfo:
        run_tests.main(
            [
                "--config",
                str(config_path),
                "--dotenv",
                str(tmp_path / "absent.env"),
                "--work-dir",
                str(tmp_path / "runs"),
                "--summary-json",
                str(summary_path),
                "--no-color",
                "--no-emoji",
            ]
        )

    assert excinfo.value.code == EXIT_PARTIAL
    summary = json.loads(summary_path.read_text(encoding="utf-8"))
    assert summary["verdict"] == VERDICT_PARTIAL
    assert {step["id"]: step["status"] for step in summary["steps"]}[STEP_CROSS_CHAIN] == STATUS_SIMULATED
    out = capsys.readouterr().out
    assert "Verdict: PARTIAL" in out
    assert "[session" in out


def test_main_closes_the_reporter_when_the_session_is_interrupted(stubbed_session, monkeypatch, tmp_path) -> None:
    calls: list[str] = []

    class _TrackingReporter(PlainReporter):
        def start(self) -> None:
            calls.append("start")

        def close(self) -> None:
            calls.append("close")
            super().close()

    def _interrupted(ctx):
        raise KeyboardInterrupt

    monkeypatch.setattr(run_tests, "PlainReporter", _TrackingReporter)
    monkeypatch.setattr(planner, "start_ethereum_node", _interrupted)
    config_path = tmp_path / "session.yaml"
    data = yaml.safe_load(load_config().source.read_text(encoding="utf-8"))
    data["session"]["export_path"] = stubbed_session.export_path
    config_path.write_text(yaml.safe_dump(data), encoding="utf-8")
    argv = ["--config", str(config_path), "--dotenv", str(tmp_path / "absent.env"), "--chain", "ethereum"]

    with pytest.raises(SystemExit) as excinfo:
        run_tests.main([*argv, "--work-dir", str(tmp_path / "runs"), "--no-color"])

    assert excinfo.value.code == run_tests.EXIT_INTERRUPTED
    assert calls == ["start", "close"]


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX only")
def test_interrupt_during_node_startup_stops_the_spawned_node(monkeypatch, tmp_path) -> None:
    config = load_config()
    config.cosmos.enabled = False
    config.cross_chain.enabled = False
    config.work_root = str(tmp_path / "runs")
    config.export_path = str(tmp_path / "out" / constants.EXPORT_ENV_FILE)
    config.ready_interval = 0.01
    config.ready_timeout = 30
    monkeypatch.setattr(nodes, "ethereum_node_args", lambda ctx: ("sleep", ["30"]))
    seen: dict = {"attempts": 0}

    def _never_ready(url):
        def _check():
            seen["attempts"] += 1
            if seen["attempts"] == 3:
                session = seen["ctx"].session
                seen["pid"] = int((session.log_dir / "ethereum-node.pid").read_text(encoding="utf-8"))
                session.cancel_event.set()
            return None

        return _check

    monkeypatch.setattr(nodes, "jsonrpc_probe", _never_ready)
    runner = ScenarioRunner(build_plan(config))

    with open_session(config, install_signals=False) as ctx:
        seen["ctx"] = ctx
        runner.run(ctx)

    statuses = {result.step_id: result.status for result in ctx.session.results}
    assert runner.interrupted is True
    assert statuses[STEP_ETH_NODE] == STATUS_FAILED
    assert "interrupted" in ctx.session.results[0].detail
    assert statuses[STEP_EXPORT] == STATUS_SKIPPED
    assert ctx.session.cleanup.has_run is True
    assert not _pid_alive(seen["pid"])
    assert not ctx.session.work_dir.exists()
