import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import ValidationError
from rich.console import Console

from abstractions.notifier import Notifier
from abstractions.observation_store import ObservationStore
from config.settings import Settings
from contracts.errors import ReportWindowError
from contracts.report import Report, ReportWindow
from reporting.console_renderer import render_report_console
from reporting.markup_renderer import format_report_markup
from reporting.report_engine import generate_report

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_window(
    interval: timedelta,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> ReportWindow:
    """
    Build the window for a one-shot report. ``until`` defaults to now and
    ``since`` to one reporting interval before ``until``.

    Raises:
        ReportWindowError: If since is later than until.
    """
    until = until or now or utc_now()
    since = since or until - interval
    try:
        return ReportWindow(since=since, until=until)
    except ValidationError as e:
        raise ReportWindowError(e.errors()[0]["msg"]) from e


class ReportRunner:
    """
    Reads the observation log for a window, computes the report and sends it
    to the console and/or the notifier.
    """

    def __init__(
        self,
        settings: Settings,
        store: ObservationStore,
        notifier: Optional[Notifier] = None,
        console: Optional[Console] = None,
        dry_run: bool = False,
    ):
        self.settings = settings
        self.store = store
        self.notifier = notifier
        self.console = console or Console()
        self.dry_run = dry_run

    async def run_once(self, window: ReportWindow) -> Optional[Report]:
        try:
            observations = await asyncio.to_thread(self.store.read, window.since, window.until)
        except OSError as e:
            logger.error(f"Could not load check results: {e}. No report will be generated.")
            return None

        if not observations:
            logger.info("No data found for the specified period. No report will be generated.")
            self.console.print("No data found for the specified period. No report will be generated.")
            return None

        report = generate_report(
            observations, [target.id for target in self.settings.targets], window
        )
        reporting = self.settings.reporting

        if reporting.output_to_console:
            render_report_console(report, reporting, self.console)

        if reporting.output_to_misskey:
            text = format_report_markup(report)
            if self.dry_run:
                self.console.print("\n--- Misskey Dry Run ---")
                self.console.print(text, markup=False, highlight=False)
            elif self.notifier is None:
                logger.warning("output_to_misskey is enabled but no misskey_token is configured")
            else:
                logger.info("Posting report to Misskey...")
                if await self.notifier.post(text, reporting.misskey_visibility):
                    logger.info("Report posted to Misskey successfully.")
                else:
                    logger.error("Failed to post report to Misskey.")

        return report


class PeriodicReporter:
    """
    Runs a report every ``interval`` measured from start. Each window covers
    the time since the previous boundary; the first tick only happens one
    full interval after start.
    """

    def __init__(
        self,
        runner: ReportRunner,
        interval: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.runner = runner
        self.interval = interval
        self.clock = clock
        self.reports_run = 0

    async def run(self, stop_event: asyncio.Event):
        loop = asyncio.get_running_loop()
        period = self.interval.total_seconds()
        last_boundary = self.clock()
        next_tick = loop.time() + period
        logger.info(f"Periodic reporting every {self.interval}")

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(next_tick - loop.time(), 0))
                break
            except asyncio.TimeoutError:
                pass
            next_tick += period

            until = self.clock()
            window = ReportWindow(since=last_boundary, until=until)
            last_boundary = until

            logger.info("Generating periodic report...")
            try:
                await self.runner.run_once(window)
            except Exception as e:
                logger.error(f"Failed to generate periodic report: {e!r}")
            self.reports_run += 1
