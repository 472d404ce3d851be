from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .models import Counters, RunSummary, TargetStats
from .resources import server_metrics
from .thresholds import Band, Thresholds, failure_points, recommendations

RULE = "=" * 60
THIN_RULE = "-" * 60


@dataclass(frozen=True)
class Report:
    text: str
    data: Dict[str, Any]


def _ms(value: Optional[float]) -> str:
    return "N/A" if value is None else f"{value:.1f}ms"


def _pct(value: Optional[float]) -> str:
    return "N/A" if value is None else f"{value * 100:.1f}%"


def format_size(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    if value < 1024:
        return f"{value:.0f} B"
    if value < 1024 * 1024:
        return f"{value / 1024:.1f} KB"
    return f"{value / (1024 * 1024):.1f} MB"


def _histogram(stats: Counters) -> str:
    return " ".join(f"{code}:{count}" for code, count in stats.sorted_status_counts()) or "-"


def overall_band(summary: RunSummary, thresholds: Thresholds) -> Optional[Band]:
    return thresholds.api.classify(summary.avg_duration_ms)


def slow_targets(target_stats: Dict[str, TargetStats], thresholds: Thresholds) -> List[TargetStats]:
    slow = [
        s for s in target_stats.values()
        if s.avg_duration_ms is not None and s.avg_duration_ms > thresholds.slow_ms
    ]
    return sorted(slow, key=lambda s: (-s.avg_duration_ms, s.key))


def failing_targets(target_stats: Dict[str, TargetStats]) -> List[TargetStats]:
    failing = [s for s in target_stats.values() if s.failures]
    return sorted(failing, key=lambda s: (-s.failure_rate, s.key))


def has_critical(target_stats: Dict[str, TargetStats], thresholds: Thresholds) -> bool:
    return any(thresholds.classify(s) == Band.CRITICAL for s in target_stats.values())


def render_table(rows: List[List[str]], headers: List[str]) -> List[str]:
    widths = [max(len(str(r[i])) for r in [headers] + rows) for i in range(len(headers))]

    def line(cells):
        return " | ".join(str(c).ljust(w) for c, w in zip(cells, widths)).rstrip()

    out = [line(headers), "-+-".join("-" * w for w in widths)]
    out.extend(line(r) for r in rows)
    return out


def render_bands(thresholds: Thresholds) -> List[str]:
    lines = []
    for title, ceilings in (("API Response", thresholds.api), ("Page Load", thresholds.page)):
        lines.append(f"{title} Time Thresholds:")
        lines.append(f"  - Optimal: up to {ceilings.optimal:g}ms")
        lines.append(f"  - Acceptable: up to {ceilings.acceptable:g}ms")
        lines.append(f"  - Degraded: up to {ceilings.degraded:g}ms")
        lines.append(f"  - Critical/Failing: over {ceilings.degraded:g}ms (ceiling {ceilings.critical:g}ms)")
    lines.append(f"Slow flag: average above {thresholds.slow_ms:g}ms")
    return lines


def _endpoint_data(stats: TargetStats, thresholds: Thresholds) -> Dict[str, Any]:
    band = thresholds.classify(stats)
    return {**stats.to_dict(), "performance_category": band.value if band else None}


def _numbered(items: List[str], empty: str) -> List[str]:
    if not items:
        return [f"  {empty}"]
    return [f"  {i}. {item}" for i, item in enumerate(items, 1)]


def render_report(
    summary: RunSummary,
    target_stats: Dict[str, TargetStats],
    thresholds: Thresholds,
    client_metrics: Optional[Dict[str, Any]] = None,
) -> Report:
    """Format a finished run. Reads the statistics only; same input, same output."""
    server = server_metrics(summary, thresholds)
    points = failure_points(target_stats, thresholds, server, client_metrics)
    recs = recommendations(target_stats, thresholds, server, client_metrics, summary)
    band = overall_band(summary, thresholds)
    slow = slow_targets(target_stats, thresholds)
    failing = failing_targets(target_stats)

    lines = [RULE, "PERFORMANCE TEST REPORT", RULE]
    if summary.cancelled:
        lines.append("(run cancelled before the queue was drained)")
    lines += [
        f"Total Requests: {summary.requests}",
        f"Successful: {summary.successes} ({_pct(summary.success_rate)})",
        f"Failed: {summary.failures} ({_pct(summary.failure_rate)})",
        f"Timeouts: {summary.timeouts}",
        f"Data Transferred: {format_size(summary.total_bytes)}",
        f"Total Test Duration: {summary.elapsed_s or 0.0:.2f} seconds",
        "Throughput: "
        + ("N/A" if summary.throughput is None else f"{summary.throughput:.2f} requests/second"),
        f"Average Response Time: {_ms(summary.avg_duration_ms)}",
        f"Min Response Time: {_ms(summary.min_ms)}",
        f"Max Response Time: {_ms(summary.max_ms)}",
        f"Overall Performance: {band.value if band else 'N/A'}",
        "",
        "ENDPOINT PERFORMANCE:",
        THIN_RULE,
    ]

    rows = []
    for s in target_stats.values():
        b = thresholds.classify(s)
        rows.append([
            s.key,
            s.target.name if s.target else s.key,
            str(s.requests),
            _pct(s.success_rate),
            _ms(s.avg_duration_ms),
            _ms(s.min_ms),
            _ms(s.max_ms),
            format_size(s.avg_bytes),
            b.value if b else "N/A",
            _histogram(s),
        ])
    lines += render_table(
        rows,
        ["Endpoint", "Name", "Requests", "Success", "Avg", "Min", "Max", "Avg Size", "Band", "Status Codes"],
    )

    lines += ["", f"SLOW ENDPOINTS (avg > {thresholds.slow_ms:g}ms):"]
    lines += [f"  {s.key}: {_ms(s.avg_duration_ms)}" for s in slow] or ["  none"]
    lines += ["", "FAILING ENDPOINTS:"]
    lines += [
        f"  {s.key}: {_pct(s.failure_rate)} failed ({s.failures}/{s.requests}, {s.timeouts} timeouts)"
        for s in failing
    ] or ["  none"]

    if client_metrics:
        lines += [
            "",
            "CLIENT RESOURCES:",
            THIN_RULE,
            f"JS Bundle Size: {client_metrics['total_js_bundle_size_kb']}KB "
            f"(Threshold: {thresholds.bundle_size_kb:g}KB)",
            f"Largest JS File: {client_metrics['largest_js_file'] or '-'} "
            f"({client_metrics['largest_js_file_kb']}KB)",
        ]

    users = server["estimated_concurrent_users"]
    lines += [
        "",
        "SERVER CAPACITY:",
        THIN_RULE,
        f"Estimated Concurrent Users: {'N/A' if users is None else users} "
        f"(Target: {thresholds.max_concurrent_users})",
        "",
        "PERFORMANCE THRESHOLDS AND FAILURE POINTS:",
        THIN_RULE,
    ]
    lines += render_bands(thresholds)
    lines += ["", "Potential Failure Points:"]
    lines += _numbered(points, "No critical failure points detected")
    lines += ["", "PERFORMANCE RECOMMENDATIONS:", THIN_RULE]
    lines += _numbered(recs, "Application is performing within acceptable thresholds")
    lines.append(RULE)

    data: Dict[str, Any] = {
        "summary": {**summary.to_dict(), "performance_category": band.value if band else None},
        "endpoints": {key: _endpoint_data(s, thresholds) for key, s in target_stats.items()},
        "serverMetrics": server,
        "thresholds": thresholds.to_dict(),
        "failurePoints": points,
        "recommendations": recs,
        "timestamp": summary.completed_at.isoformat() if summary.completed_at else None,
    }
    if client_metrics is not None:
        data["clientMetrics"] = client_metrics

    return Report(text="\n".join(lines), data=data)
