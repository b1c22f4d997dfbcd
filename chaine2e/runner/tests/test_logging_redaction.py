from __future__ import annotations

import threading

import pytest

from chaine2e.runner.errors import SessionInterrupted
from chaine2e.runner.logging import LogSink, redact_cmd, run_and_stream


def test_redact_cmd_masks_private_key_flag() -> None:
    cmd = ["forge", "create", "src/Gateway.sol:Gateway", "--private-key", "0xac0974bec39a17e3", "--broadcast"]

    redacted = redact_cmd(cmd)

    assert redacted == ["forge", "create", "src/Gateway.sol:Gateway", "--private-key", "***", "--broadcast"]


def test_redact_cmd_masks_inline_flag_value() -> None:
    assert redact_cmd(["cast", "send", "--private-key=0xabc"]) == ["cast", "send", "--private-key=***"]


def test_redact_cmd_masks_url_credentials() -> None:
    redacted = redact_cmd(["indexer", "DATABASE_URL=postgres://user:secret@db:5432/index"])

    assert redacted[1] == "DATABASE_URL=postgres://%2A%2A%2A:%2A%2A%2A@db:5432/index"


def test_redact_cmd_masks_secret_env_tokens() -> None:
    assert redact_cmd(["env", "MNEMONIC=word word word"]) == ["env", "MNEMONIC=***"]


def test_redact_cmd_leaves_plain_arguments() -> None:
    cmd = ["wasmd", "query", "wasm", "list-code", "--node", "http://127.0.0.1:26657"]

    assert redact_cmd(cmd) == cmd


def test_run_and_stream_writes_output_to_log(tmp_path) -> None:
    sink = LogSink(tmp_path / "tools.log")
    sink.open()
    seen: list[str] = []
    try:
        code = run_and_stream(
            ["sh", "-c", "echo first; echo second 1>&2; exit 3"],
            cwd=tmp_path,
            env={"PATH": "/usr/bin:/bin"},
            log=sink,
            on_line=seen.append,
        )
    finally:
        sink.close()

    content = (tmp_path / "tools.log").read_text(encoding="utf-8").splitlines()
    assert code == 3
    assert sorted(seen) == ["first", "second"]
    assert content[0].startswith("$ sh -c")


def test_run_and_stream_kills_on_cancel(tmp_path) -> None:
    sink = LogSink(tmp_path / "tools.log")
    sink.open()
    cancel = threading.Event()
    cancel.set()
    try:
        with pytest.raises(SessionInterrupted):
            run_and_stream(["sleep", "30"], cwd=None, env={"PATH": "/usr/bin:/bin"}, log=sink, cancel_event=cancel)
    finally:
        sink.close()

    assert "! interrupted" in (tmp_path / "tools.log").read_text(encoding="utf-8")
