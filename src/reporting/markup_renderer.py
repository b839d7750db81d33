"""
Misskey Flavored Markdown (MFM) for reports and colo change notes.
"""
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from contracts.colo import ChangeEvent
from contracts.report import Report, TargetStats
from reporting.severity import classify_change_rtt

NO_DATA = "no data"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S %Z"


def format_local_time(value: datetime) -> str:
    return value.astimezone().strftime(TIME_FORMAT)


def format_ms(value: Optional[float]) -> str:
    return NO_DATA if value is None else f"{value:.2f}ms"


def format_percent(value: Optional[float]) -> str:
    return NO_DATA if value is None else f"{value:.3f}%"


def format_change_message(event: ChangeEvent) -> str:
    """
    One-line note for a colo change, with a colour-coded RTT badge and a
    link to the target.
    """
    domain = urlparse(event.url).hostname or event.url
    colour = classify_change_rtt(event.rtt_ms)
    if event.rtt_ms is None:
        rtt_text, rtt_unit = "N/A", ""
    else:
        rtt_text, rtt_unit = str(int(round(event.rtt_ms))), "ms"
    return (
        f"<small>`{event.previous_colo}`</small>→`{event.new_colo}` "
        f"$[border.color=0000,radius=10 $[bg.color={colour} $[fg.color=fff  {rtt_text}<small>{rtt_unit}</small> ]]] "
        f"?[{domain}]({event.url})"
    )


def _format_target(stats: TargetStats) -> str:
    lines = [f"**?[{stats.url}]({stats.url})**"]
    if not stats.has_data:
        lines.append(f"- **Uptime:** {NO_DATA}")
        return "\n".join(lines) + "\n"

    lines.append(
        f"- **Uptime:** {format_percent(stats.uptime_percent)} "
        f"({stats.success_count} / {stats.count} succeeded)"
    )
    rtt = stats.rtt
    if rtt is None:
        lines.append(f"- **RTT:** {NO_DATA}")
    else:
        lines.append(
            f"- **RTT:** Min: {format_ms(rtt.min)}, Max: {format_ms(rtt.max)}, "
            f"Avg: {format_ms(rtt.mean)}, Median: {format_ms(rtt.median)}, P95: {format_ms(rtt.p95)}"
        )
    path = " → ".join(
        [stats.transitions[0].previous_colo] + [t.new_colo for t in stats.transitions]
    ) if stats.transitions else ""
    lines.append(
        f"- **Colo:** {len(stats.transitions)} transition(s)"
        + (f" ({path})" if path else "")
        + f", most frequent: {stats.most_frequent_colo or 'N/A'}"
        + f", unique: {', '.join(stats.unique_colos) or 'N/A'}"
    )
    return "\n".join(lines) + "\n"


def format_report_markup(report: Report) -> str:
    parts = [
        "**📊 Monitoring report**\n"
        f"**Period:** {format_local_time(report.window.since)} ～ {format_local_time(report.window.until)}\n\n"
        "**Summary**\n"
        f"- **Targets:** {report.reported_targets} / {report.configured_targets} sites\n"
        f"- **Overall uptime:** {format_percent(report.overall_uptime_percent)}\n"
    ]
    for stats in report.target_stats:
        parts.append(_format_target(stats))
    return "\n".join(parts)
