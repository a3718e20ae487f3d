"""CLI entry point for zapstats.

Two commands share one set of logging, config and metrics options:

* ``stats`` computes batch statistics for one or more references and prints
  them as JSON (``--watch`` recomputes every ``interval`` seconds instead).
* ``live`` follows one note or live event, printing a JSON summary line
  whenever its totals change, until interrupted.

Examples:
    ```bash
    python -m zapstats stats note1abc... naddr1xyz... --top 10
    python -m zapstats stats --config config/stats.yaml --watch
    python -m zapstats live naddr1xyz... --debounce 2 --log-level DEBUG
    ```
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from zapstats.core import start_metrics_server
from zapstats.core.base_service import BaseService
from zapstats.core.exceptions import ZapStatsError
from zapstats.core.logger import Logger, StructuredFormatter
from zapstats.core.yaml import load_yaml
from zapstats.models.constants import ServiceName
from zapstats.services.live import LiveSession
from zapstats.services.stats import StatsService


CONFIG_BASE = Path("config")

logger = Logger("cli")


_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _print_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, sort_keys=False) + "\n")
    sys.stdout.flush()


def _trap_stop_signals(service: BaseService[Any]) -> Callable[[], None]:
    """Route SIGINT/SIGTERM to ``service.request_shutdown()``; returns the undo callable."""
    loop = asyncio.get_running_loop()

    def on_signal(received: signal.Signals) -> None:
        logger.info("stop_requested", signal=received.name, service=service.SERVICE_NAME)
        service.request_shutdown()

    for signum in _STOP_SIGNALS:
        loop.add_signal_handler(signum, on_signal, signum)

    def restore() -> None:
        for signum in _STOP_SIGNALS:
            loop.remove_signal_handler(signum)

    return restore


async def _run_with_signals(service: BaseService[Any], *, forever: bool) -> int:
    """Drive *service* once (or in its interval loop) and map the outcome to an exit code.

    Returns ``0`` when the service finished or was stopped by a signal and
    ``1`` when it raised. The metrics endpoint lives as long as the service.
    """
    metrics = service.config.metrics
    server = await start_metrics_server(metrics)
    if server.is_running:
        logger.info("metrics_listening", url=f"http://{metrics.host}:{metrics.port}{metrics.path}")
    restore_signals = _trap_stop_signals(service)

    try:
        async with service:
            await (service.run_forever() if forever else service.run())
    except ZapStatsError as e:
        logger.error(f"{service.SERVICE_NAME}_failed", error=str(e), error_type=type(e).__name__)
        return 1
    except Exception as e:  # Intentionally broad: CLI error boundary
        logger.exception(f"{service.SERVICE_NAME}_crashed", error=str(e))
        return 1
    finally:
        restore_signals()
        await server.stop()
    return 0


async def run_stats(args: argparse.Namespace, config_dict: dict[str, Any]) -> int:
    """Compute batch statistics once (or repeatedly with ``--watch``)."""
    if args.refs:
        config_dict["targets"] = list(args.refs)
    if args.top is not None:
        config_dict["top_n"] = args.top
    if args.no_profiles:
        config_dict["fetch_profiles"] = False

    try:
        service = StatsService.from_dict(config_dict)
    except ValueError as e:
        logger.error("invalid_config", error=str(e))
        return 2
    if not service.config.targets:
        logger.error("no_targets", hint="pass references or set 'targets' in the config")
        return 2

    code = await _run_with_signals(service, forever=args.watch)
    if service.latest is not None:
        _print_json(service.latest.to_dict())
    return code


async def run_live(args: argparse.Namespace, config_dict: dict[str, Any]) -> int:
    """Follow one target until interrupted."""
    if args.ref:
        config_dict["target"] = args.ref
    if args.top is not None:
        config_dict["top_n"] = args.top
    if args.debounce is not None:
        config_dict["debounce_seconds"] = args.debounce
    if args.no_profiles:
        config_dict["fetch_profiles"] = False

    try:
        session = LiveSession.from_dict(config_dict, on_summary=_print_json)
    except ValueError as e:
        logger.error("invalid_config", error=str(e))
        return 2
    if not session.config.target:
        logger.error("no_target", hint="pass a reference or set 'target' in the config")
        return 2

    code = await _run_with_signals(session, forever=False)
    _print_json(session.summary())
    return code


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="zapstats",
        description="Zap statistics over Nostr relays",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        help="Config path (default: config/<command>.yaml)",
    )
    common.add_argument(
        "--relay",
        action="append",
        dest="relays",
        metavar="URL",
        help="Relay URL; repeat to build the pool (default: built-in pool)",
    )
    common.add_argument("--top", type=int, help="Length of the ranked lists")
    common.add_argument(
        "--no-profiles",
        action="store_true",
        help="Skip kind 0 profile backfill",
    )
    common.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    common.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    commands = parser.add_subparsers(dest="command", required=True)

    stats = commands.add_parser(
        ServiceName.STATS, parents=[common], help="Batch statistics for many targets"
    )
    stats.add_argument("refs", nargs="*", help="note1/nevent1/naddr1/hex/coordinate references")
    stats.add_argument(
        "--watch",
        action="store_true",
        help="Recompute every interval seconds instead of once",
    )

    live = commands.add_parser(
        ServiceName.LIVE, parents=[common], help="Follow one target in real time"
    )
    live.add_argument("ref", nargs="?", help="Reference of the note or live event")
    live.add_argument("--debounce", type=float, help="Seconds to coalesce summary output")

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Configure the root logger with structured formatting.

    Logs go to stderr so stdout stays machine-readable JSON.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.debug("config_not_found", path=str(path))
        return {}
    return load_yaml(str(path))


def build_config_dict(args: argparse.Namespace) -> dict[str, Any]:
    """Merge the YAML config with the options shared by every command."""
    path = args.config or CONFIG_BASE / f"{args.command}.yaml"
    if args.config is not None and not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    config_dict = _load_yaml_dict(path)
    if args.relays:
        config_dict.setdefault("relays", {})["urls"] = list(args.relays)
    if args.json_logs:
        config_dict["json_logs"] = True
    return config_dict


async def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args, load config, and run the command."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config_dict = build_config_dict(args)
    except (FileNotFoundError, ZapStatsError) as e:
        logger.error("config_load_failed", error=str(e))
        return 2

    try:
        if args.command == ServiceName.STATS:
            return await run_stats(args, config_dict)
        return await run_live(args, config_dict)
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
