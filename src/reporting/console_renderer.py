from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.text import Text

from config.settings import ReportingSettings
from contracts.report import Report, TargetStats
from reporting.markup_renderer import NO_DATA, format_local_time, format_ms, format_percent
from reporting.severity import Severity, classify_mean_rtt, classify_p95_rtt, classify_uptime

SEVERITY_STYLES = {
    Severity.NORMAL: "green",
    Severity.WARNING: "yellow",
    Severity.CRITICAL: "red",
    Severity.NO_DATA: "dim",
}

RULE = "-----------------"


def styled(text: str, severity: Severity) -> Text:
    return Text(text, style=SEVERITY_STYLES[severity])


def _render_target(console: Console, stats: TargetStats, settings: ReportingSettings):
    console.print(Text.assemble("URL: ", (stats.url, "bold")))

    uptime = styled(
        format_percent(stats.uptime_percent),
        classify_uptime(stats.uptime_percent, settings),
    )
    if stats.has_data:
        uptime.append(f" ({stats.success_count} / {stats.count} succeeded)")
    console.print(Text.assemble("  Uptime: ", uptime))

    rtt = stats.rtt
    if rtt is None:
        console.print(Text.assemble("  RTT: ", styled(NO_DATA, Severity.NO_DATA)))
    else:
        console.print(
            Text.assemble(
                f"  RTT - Min: {format_ms(rtt.min)}, Max: {format_ms(rtt.max)}, Avg: ",
                styled(format_ms(rtt.mean), classify_mean_rtt(rtt.mean, settings)),
                f" (thr: {settings.rtt_threshold_ms:g}ms), Median: {format_ms(rtt.median)}, P95: ",
                styled(format_ms(rtt.p95), classify_p95_rtt(rtt.p95, settings)),
                f" (thr: {settings.p95_rtt_threshold_ms:g}ms)",
            )
        )

    console.print(f"  Colo Transitions: {len(stats.transitions)}")
    for transition in stats.transitions:
        console.print(
            f"    {format_local_time(transition.timestamp)}  "
            f"{escape(transition.previous_colo)} -> {escape(transition.new_colo)}"
        )
    console.print(f"  Most Frequent Colo: {escape(stats.most_frequent_colo or 'N/A')}")
    console.print(f"  Unique Colos: {escape(', '.join(stats.unique_colos) or 'N/A')}")


def render_report_console(
    report: Report,
    settings: ReportingSettings,
    console: Optional[Console] = None,
):
    """
    Print a report with colour bands driven by the reporting thresholds.
    """
    console = console or Console()
    overall = styled(
        format_percent(report.overall_uptime_percent),
        classify_uptime(report.overall_uptime_percent, settings),
    )

    console.print("📊 Monitoring report")
    console.print(RULE)
    console.print(
        f"Period: {format_local_time(report.window.since)} ～ {format_local_time(report.window.until)}"
    )
    console.print(
        Text.assemble(
            f"Summary: {report.reported_targets} / {report.configured_targets} sites, overall uptime: ",
            overall,
        )
    )
    console.print(RULE)
    for stats in report.target_stats:
        _render_target(console, stats, settings)
