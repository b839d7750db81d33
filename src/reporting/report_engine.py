"""
Statistics over the persisted observation log.

Everything here is a pure function of the observations passed in, so a
report can be reproduced from the log alone, independently of the live
colo state kept by the monitor.
"""
import logging
import math
from collections import Counter, defaultdict
from statistics import fmean, median
from typing import Dict, Iterable, List, Optional, Sequence

from contracts.observation import Observation
from contracts.report import ColoTransition, Report, ReportWindow, RttStats, TargetStats
from core.profiler import Profiler

logger = logging.getLogger(__name__)


def uptime_percent(success_count: int, count: int) -> Optional[float]:
    """
    100 * success_count / count, or None when there are no samples.
    """
    if count == 0:
        return None
    return 100.0 * success_count / count


def percentile_nearest_rank(sorted_values: Sequence[float], fraction: float) -> Optional[float]:
    """
    Nearest-rank percentile of an ascending sequence.

    The index is ceil(fraction * n) - 1, clamped to [0, n - 1]. Returns None
    for an empty sequence.
    """
    n = len(sorted_values)
    if n == 0:
        return None
    index = math.ceil(fraction * n) - 1
    index = min(max(index, 0), n - 1)
    return sorted_values[index]


def compute_rtt_stats(rtts: Iterable[float]) -> Optional[RttStats]:
    values = sorted(rtts)
    if not values:
        return None
    return RttStats(
        min=values[0],
        max=values[-1],
        mean=fmean(values),
        median=median(values),
        p95=percentile_nearest_rank(values, 0.95),
    )


def colo_transitions(observations: Iterable[Observation]) -> List[ColoTransition]:
    """
    Transitions between consecutive successful samples that carry a colo.
    Observations must belong to one target and be in chronological order.
    """
    transitions = []
    last_colo = None
    for observation in observations:
        if not observation.is_success or observation.colo is None:
            continue
        if last_colo is not None and observation.colo != last_colo:
            transitions.append(
                ColoTransition(
                    timestamp=observation.timestamp,
                    previous_colo=last_colo,
                    new_colo=observation.colo,
                )
            )
        last_colo = observation.colo
    return transitions


def compute_target_stats(url: str, observations: Sequence[Observation]) -> TargetStats:
    # stable sort keeps completion order for equal timestamps
    ordered = sorted(observations, key=lambda o: o.timestamp)
    successes = [o for o in ordered if o.is_success]

    colo_counts = Counter(o.colo for o in successes if o.colo is not None)
    most_frequent = None
    if colo_counts:
        # highest count wins, ties go to the alphabetically last colo
        most_frequent = max(colo_counts.items(), key=lambda item: (item[1], item[0]))[0]

    return TargetStats(
        url=url,
        count=len(ordered),
        success_count=len(successes),
        uptime_percent=uptime_percent(len(successes), len(ordered)),
        rtt=compute_rtt_stats(o.rtt_ms for o in successes),
        transitions=colo_transitions(ordered),
        unique_colos=sorted(colo_counts),
        most_frequent_colo=most_frequent,
    )


@Profiler.profile
def generate_report(
    observations: Iterable[Observation],
    target_urls: Sequence[str],
    window: ReportWindow,
) -> Report:
    """
    Build a report for the observations that fall inside the window.

    Configured targets come first, in configured order, and are listed even
    when they have no samples. Targets found only in the log follow, sorted
    by URL.

    Args:
        observations (Iterable[Observation]): Log records, in any order.
        target_urls (Sequence[str]): Configured target identifiers.
        window (ReportWindow): Half-open [since, until) window.

    Returns:
        Report: The computed report.
    """
    grouped: Dict[str, List[Observation]] = defaultdict(list)
    for observation in observations:
        if window.contains(observation.timestamp):
            grouped[observation.url].append(observation)

    configured = list(dict.fromkeys(target_urls))
    ordered_urls = configured + sorted(set(grouped) - set(configured))

    target_stats = [compute_target_stats(url, grouped.get(url, [])) for url in ordered_urls]

    total = sum(s.count for s in target_stats)
    succeeded = sum(s.success_count for s in target_stats)

    report = Report(
        window=window,
        configured_targets=len(configured),
        reported_targets=sum(1 for s in target_stats if s.has_data),
        overall_uptime_percent=uptime_percent(succeeded, total),
        target_stats=target_stats,
    )
    logger.info(
        f"Generated report for {window.since.isoformat()} - {window.until.isoformat()}: "
        f"{report.reported_targets}/{report.configured_targets} targets with data, {total} samples"
    )
    return report
