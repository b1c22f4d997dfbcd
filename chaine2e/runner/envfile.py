# Where: chaine2e/runner/envfile.py
# What: Export RPC endpoints and contract addresses for downstream tools.
# Why: The indexer and ad-hoc scripts consume the session through a plain .env file.
from __future__ import annotations

import json
import re
import time
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

from chaine2e.runner import constants
from chaine2e.runner.context import StepContext
from chaine2e.runner.models import Session


def build_exports(session: Session, *, database_url: str | None = None) -> dict[str, str]:
    exports: dict[str, str] = {}
    eth = session.environments.get(constants.CHAIN_ETHEREUM)
    if eth is not None:
        exports[constants.ENV_ETH_RPC_URL] = eth.rpc_url
        exports[constants.ENV_ETH_CHAIN_ID] = eth.chain_id
    cosmos = session.environments.get(constants.CHAIN_COSMOS)
    if cosmos is not None:
        exports[constants.ENV_COSMOS_RPC_URL] = cosmos.rpc_url
        exports[constants.ENV_COSMOS_CHAIN_ID] = cosmos.chain_id
        if cosmos.rest_url:
            exports[constants.ENV_COSMOS_REST_URL] = cosmos.rest_url
    if database_url:
        exports[constants.ENV_DATABASE_URL] = database_url
    for deployment in session.deployments:
        if not deployment.env_var:
            continue
        exports[deployment.env_var] = deployment.address
        if deployment.code_id:
            exports[f"{deployment.env_var.removesuffix('_ADDRESS')}_CODE_ID"] = deployment.code_id
    return exports


_PLAIN_VALUE = re.compile(r"^[A-Za-z0-9_.,:/@%+=-]+$")


def _quote(value: str) -> str:
    # sh and dotenv both read $ and backticks literally inside single quotes.
    if _PLAIN_VALUE.match(value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"


def write_env_file(path: Path, exports: dict[str, str], *, simulated: set[str] | None = None) -> Path:
    simulated = simulated or set()
    lines = [
        "# Generated by chain-e2e; safe to source from a shell.",
        f"# Written at {time.strftime('%Y-%m-%dT%H:%M:%S%z')}",
    ]
    for key, value in exports.items():
        if key in simulated:
            lines.append("# simulated placeholder, not deployed on chain")
        lines.append(f"{key}={_quote(value)}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def read_env_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    return {key: value or "" for key, value in dotenv_values(path, interpolate=False).items()}


def deployment_info(session: Session) -> dict[str, Any]:
    environments: dict[str, Any] = {}
    for kind, env in session.environments.items():
        environments[kind] = {
            "name": env.name,
            "node": env.node,
            "rpc_url": env.rpc_url,
            "rest_url": env.rest_url,
            "chain_id": env.chain_id,
        }
    contracts = [
        {
            "chain": item.chain,
            "name": item.name,
            "address": item.address,
            "tx_hash": item.tx_hash,
            "code_id": item.code_id,
            "simulated": item.simulated,
        }
        for item in session.deployments
    ]
    return {"session_id": session.session_id, "environments": environments, "contracts": contracts}


def write_deployment_info(path: Path, session: Session) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(deployment_info(session), indent=2) + "\n", encoding="utf-8")
    return path


def export_path_for(ctx: StepContext) -> Path:
    if ctx.config.export_path:
        return Path(ctx.config.export_path).expanduser().resolve()
    return Path.cwd() / constants.EXPORT_ENV_FILE


def export_session(ctx: StepContext) -> str:
    session = ctx.session
    exports = build_exports(session, database_url=ctx.config.database_url)
    simulated = {item.env_var for item in session.deployments if item.simulated and item.env_var}
    env_path = write_env_file(export_path_for(ctx), exports, simulated=simulated)
    info_path = write_deployment_info(env_path.parent / constants.DEPLOYMENT_INFO_FILE, session)
    session.exports.update(exports)
    session.artifacts["env_file"] = env_path
    session.artifacts["deployment_info"] = info_path
    return f"{len(exports)} variable(s) written to {env_path}"
