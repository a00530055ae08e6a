import argparse
import os
from functools import lru_cache
from pathlib import Path


@lru_cache
def get_cli_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="txproxy-server",
        description=(
            "Start a transaction proxy.\n\n"
            "The proxy keeps interactive database transactions open on behalf "
            "of clients that can only reach it through independent requests."
        ),
        formatter_class=argparse.RawTextHelpFormatter
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Path to a txproxy configuration file"
    )

    parser.add_argument(
        "-l", "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=(
            "Logging verbosity of the proxy.\n"
            "DEBUG    → every envelope and transaction state change.\n"
            "INFO     → standard operational logs (default).\n"
            "WARNING  → expected engine errors and above.\n"
            "ERROR    → only unexpected failures.\n"
            "CRITICAL → only critical failures.\n"
        ),
    )

    return parser.parse_args()


@lru_cache
def get_configfile() -> Path:
    args = get_cli_args()

    # Priority: CLI > ENV > default file in current working directory
    raw = args.config or os.getenv("TXPROXYCONFIG")

    if raw is None:
        file = Path.cwd() / "txproxy.yaml"
    else:
        file = Path(raw)

    if not file.is_file():
        raise SystemExit(
            f"[config] Configuration file not found: '{file}'.\n"
            "  - Use --config <file.yaml>\n"
            "  - Or set the TXPROXYCONFIG environment variable\n"
            "  - Or place a 'txproxy.yaml' file in the current working directory."
        )

    return file
