import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

import httpx
from pydantic import TypeAdapter, ValidationError
from rich.console import Console

from config.config import Config
from config.logging_config import setup_logging
from config.settings import Settings, load_settings
from contracts.errors import ConfigurationError, MonitorError, ReportWindowError
from core.metrics_manager import MetricsManager
from core.misskey_notifier import MisskeyNotifier
from core.monitor import Monitor
from core.report_runner import ReportRunner, resolve_window
from core.store_factory import StoreFactory

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2
EXIT_RUNTIME_ERROR = 1

TIMESTAMP_ADAPTER = TypeAdapter(datetime)


def parse_timestamp(value: str) -> datetime:
    try:
        parsed = TIMESTAMP_ADAPTER.validate_python(value)
    except ValidationError:
        raise argparse.ArgumentTypeError(f"invalid ISO-8601 timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracekey",
        description="Monitor CDN colocation and latency of a set of endpoints.",
    )
    parser.add_argument("--report", action="store_true", help="generate one report and exit")
    parser.add_argument("--since", type=parse_timestamp, help="report window start (ISO-8601)")
    parser.add_argument("--until", type=parse_timestamp, help="report window end (ISO-8601)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="print the Misskey report to the console instead of posting it",
    )
    parser.add_argument("--config-dir", default=None, help="directory holding base.yaml / local.yaml")
    return parser


def build_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": settings.user_agent},
        timeout=settings.request_timeout_seconds,
        follow_redirects=True,
    )


def build_notifier(settings: Settings, client: httpx.AsyncClient) -> Optional[MisskeyNotifier]:
    if not settings.misskey_enabled:
        logger.info("No misskey_token configured; Misskey notifications are disabled.")
        return None
    return MisskeyNotifier(client, settings.misskey_url, settings.misskey_token)


async def run_report(settings: Settings, args, console: Console) -> int:
    window = resolve_window(settings.reporting.interval, args.since, args.until)
    store = StoreFactory.create_store(settings.output_format, settings.output_path)
    async with build_client(settings) as client:
        notifier = None if args.dry_run else build_notifier(settings, client)
        runner = ReportRunner(settings, store, notifier, console, dry_run=args.dry_run)
        await runner.run_once(window)
    return 0


async def run_monitor(settings: Settings, console: Console) -> int:
    metrics_manager = MetricsManager()
    if Config.METRICS_PORT:
        metrics_manager.serve(Config.METRICS_PORT)

    store = StoreFactory.create_store(settings.output_format, settings.output_path)
    async with build_client(settings) as client:
        monitor = Monitor(
            settings,
            client,
            store,
            notifier=build_notifier(settings, client),
            metrics_manager=metrics_manager,
            console=console,
        )
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, monitor.request_stop)
            except NotImplementedError:
                # not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt
                pass
        await monitor.run()
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    console = Console()

    try:
        settings = load_settings(args.config_dir)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        if args.report:
            return asyncio.run(run_report(settings, args, console))
        return asyncio.run(run_monitor(settings, console))
    except ReportWindowError as e:
        logger.error(f"Invalid report window: {e}")
        return EXIT_CONFIG_ERROR
    except MonitorError as e:
        logger.error(f"Monitoring aborted: {e}")
        return EXIT_RUNTIME_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
