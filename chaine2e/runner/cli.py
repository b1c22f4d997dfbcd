import argparse

from chaine2e.runner import constants


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}") from exc
    if value < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-chain devnet E2E runner (Ethereum + Cosmos)")
    parser.add_argument(
        "--chain",
        choices=constants.CHAIN_KINDS,
        help="Run a single chain only (default: both, plus the cross-chain scenario)",
    )
    parser.add_argument(
        "--node",
        choices=constants.ETHEREUM_NODES,
        help="Ethereum node implementation (default from config: anvil)",
    )
    parser.add_argument(
        "--build-mode",
        choices=constants.BUILD_MODES,
        help="Run the UFO cosmos node in the given build mode instead of wasmd",
    )
    parser.add_argument(
        "--validators",
        type=_positive_int,
        help="Number of UFO validators (with --build-mode)",
    )
    parser.add_argument(
        "--duration",
        type=str,
        help="How long the indexer must stay up, e.g. 30s, 5m, 1h (default 15m)",
    )
    parser.add_argument("--config", type=str, help="Session config YAML (default: bundled session.yaml)")
    parser.add_argument("--dotenv", type=str, default=".env", help="Env file loaded before config overrides")
    parser.add_argument("--work-dir", type=str, help="Parent directory for the session work dir")
    parser.add_argument("--env-out", type=str, help="Where to write the exported contract-addresses.env")
    parser.add_argument("--summary-json", type=str, help="Write a machine-readable summary to this path")
    parser.add_argument(
        "--keep-artifacts",
        action="store_true",
        help="Keep the session work dir (node logs, PID files, wasmd home) after exit",
    )
    parser.add_argument(
        "--allow-simulated",
        action="store_true",
        help="Record placeholder addresses when a deployment cannot run",
    )
    parser.add_argument(
        "--ethereum-fatal",
        action="store_true",
        help="Abort the whole session when the Ethereum node fails",
    )
    parser.add_argument(
        "--cosmos-fatal",
        action="store_true",
        help="Abort the whole session when the Cosmos node fails",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Stream tool output and step details",
    )
    parser.add_argument(
        "--color",
        dest="color",
        action="store_const",
        const=True,
        help="Force color output",
    )
    parser.add_argument(
        "--no-color",
        dest="color",
        action="store_const",
        const=False,
        help="Disable color output",
    )
    parser.add_argument(
        "--emoji",
        dest="emoji",
        action="store_const",
        const=True,
        help="Force emoji output",
    )
    parser.add_argument(
        "--no-emoji",
        dest="emoji",
        action="store_const",
        const=False,
        help="Disable emoji output",
    )
    parser.set_defaults(color=None, emoji=None)
    return parser


def parse_args(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.validators is not None and not args.build_mode:
        parser.error("--validators requires --build-mode")
    if args.build_mode and args.chain == constants.CHAIN_ETHEREUM:
        parser.error("--build-mode selects a cosmos node and cannot be used with --chain=ethereum")
    return args
