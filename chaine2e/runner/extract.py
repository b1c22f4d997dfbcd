# Where: chaine2e/runner/extract.py
# What: Declarative extraction of addresses, tx hashes and code ids from tool output.
# Why: forge/cast/wasmd print results in several shapes; the tables make the order explicit.
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterable

from chaine2e.runner.errors import ExtractionFailure


@dataclass(frozen=True)
class Pattern:
    name: str
    regex: str
    group: int = 1

    def search(self, output: str) -> str | None:
        match = re.search(self.regex, output, re.MULTILINE)
        if not match:
            return None
        return match.group(self.group)


FORGE_ADDRESS_PATTERNS = (
    Pattern("deployed-to", r"Deployed to:\s*(0x[0-9a-fA-F]{40})"),
    Pattern("contract-address", r"Contract Address:\s*(0x[0-9a-fA-F]{40})"),
    Pattern("deployed-at", r"Deployed at:?\s*(0x[0-9a-fA-F]{40})"),
    Pattern("bare-address", r"(0x[0-9a-fA-F]{40})(?![0-9a-fA-F])"),
)
TX_HASH_PATTERNS = (
    Pattern("transaction-hash", r"Transaction hash:\s*(0x[0-9a-fA-F]{64})"),
    Pattern("transactionHash", r"transactionHash\s*[:=]?\s*\"?(0x[0-9a-fA-F]{64})"),
    Pattern("txhash", r"txhash:\s*([0-9A-Fa-f]{64})"),
)
CODE_ID_PATTERNS = (
    Pattern("code-id-attribute", r"key:\s*code_id\s*\n\s*value:\s*\"?(\d+)\"?"),
    Pattern("code-id-json", r"\"code_id\"\s*,\s*\"value\"\s*:\s*\"(\d+)\""),
    Pattern("code-id-inline", r"code_id[\"']?\s*[:=]\s*[\"']?(\d+)"),
)
CONTRACT_ADDRESS_PATTERNS = (
    Pattern(
        "contract-address-attribute",
        r"key:\s*_contract_address\s*\n\s*value:\s*\"?([a-z]+1[0-9a-z]{38,})\"?",
    ),
    Pattern(
        "contract-address-json",
        r"\"_contract_address\"\s*,\s*\"value\"\s*:\s*\"([a-z]+1[0-9a-z]{38,})\"",
    ),
)

FORGE_ADDRESS_FIELDS = ("deployedTo", "contractAddress")
FORGE_TX_FIELDS = ("transactionHash",)
CAST_TX_FIELDS = ("transactionHash",)
COSMOS_TX_FIELDS = ("txhash",)
CODE_ID_FIELDS = (
    "logs[].events[].attributes[key==code_id].value",
    "events[].attributes[key==code_id].value",
)
CONTRACT_ADDRESS_FIELDS = (
    "logs[].events[].attributes[key==_contract_address].value",
    "events[].attributes[key==_contract_address].value",
)

_TOKEN_RE = re.compile(r"([^.\[\]]+)|\[([^\]]*)\]")


def extract_address(output: str, patterns: Iterable[Pattern] = FORGE_ADDRESS_PATTERNS) -> str:
    """Return the capture of the first pattern (in table order) that matches."""
    tried: list[str] = []
    for pattern in patterns:
        value = pattern.search(output)
        if value is not None:
            return value
        tried.append(pattern.name)
    raise ExtractionFailure(f"no pattern matched (tried: {', '.join(tried)})")


def parse_json_output(output: str) -> Any:
    """Decode the first JSON document in output, skipping any leading noise."""
    stripped = output.strip()
    if not stripped:
        raise ExtractionFailure("empty output")
    decoder = json.JSONDecoder()
    for index, char in enumerate(stripped):
        if char not in "{[":
            continue
        try:
            value, _end = decoder.raw_decode(stripped[index:])
        except json.JSONDecodeError:
            continue
        return value
    raise ExtractionFailure("output contains no JSON document")


def _tokenize(path: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    for name, bracket in _TOKEN_RE.findall(path):
        if name:
            tokens.append(("key", name))
        elif bracket == "":
            tokens.append(("each", ""))
        elif "==" in bracket:
            tokens.append(("filter", bracket))
        elif bracket.lstrip("-").isdigit():
            tokens.append(("index", bracket))
        else:
            raise ValueError(f"invalid path segment [{bracket}] in {path!r}")
    return tokens


def evaluate_path(document: Any, path: str) -> list[Any]:
    """Evaluate a small path expression and return every matching value.

    ``a.b`` walks keys, ``[N]`` indexes, ``[]`` fans out over a list and
    ``[key==value]`` keeps list items whose ``key`` equals ``value``.
    """
    current = [document]
    for kind, arg in _tokenize(path):
        following: list[Any] = []
        for item in current:
            if kind == "key":
                if isinstance(item, dict) and arg in item:
                    following.append(item[arg])
            elif kind == "index":
                if isinstance(item, list):
                    idx = int(arg)
                    if -len(item) <= idx < len(item):
                        following.append(item[idx])
            elif kind == "each":
                if isinstance(item, list):
                    following.extend(item)
            else:
                key, expected = arg.split("==", 1)
                candidates = item if isinstance(item, list) else [item]
                for candidate in candidates:
                    if isinstance(candidate, dict) and str(candidate.get(key)) == expected:
                        following.append(candidate)
        current = following
        if not current:
            break
    return current


def extract_json_field(output: str | Any, path: str) -> Any:
    document = parse_json_output(output) if isinstance(output, str) else output
    values = [value for value in evaluate_path(document, path) if value not in (None, "")]
    if not values:
        raise ExtractionFailure(f"path {path!r} matched nothing")
    return values[0]


def extract_first(
    output: str,
    *,
    fields: Iterable[str] = (),
    patterns: Iterable[Pattern] = (),
) -> str:
    """Try JSON paths first, then the regex table. Raises ExtractionFailure."""
    document: Any = None
    try:
        document = parse_json_output(output)
    except ExtractionFailure:
        document = None
    if document is not None:
        for path in fields:
            try:
                return str(extract_json_field(document, path))
            except ExtractionFailure:
                continue
    return extract_address(output, patterns)
