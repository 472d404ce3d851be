import json
import logging
import os
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_REPORT_FILE = "performance-report.json"


class ReportStore:
    def __init__(self, report_file: str = DEFAULT_REPORT_FILE):
        self.report_file = report_file

    def save(self, data: Dict[str, Any]) -> bool:
        """Write the JSON report. Failures are logged, never raised."""
        try:
            with open(self.report_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            logger.info(f"Report saved to {self.report_file}")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save report to {self.report_file}: {e}")
            return False

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.report_file):
            logger.info(f"No report found at {self.report_file}.")
            return None
        try:
            with open(self.report_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load report {self.report_file}: {e}")
            return None


def diff_reports(previous: Dict[str, Any], current: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Per-endpoint changes in average latency and success rate between two reports."""
    before = previous.get("endpoints", {})
    after = current.get("endpoints", {})
    rows = []
    for key, now_ep in after.items():
        prev_ep = before.get(key)
        if prev_ep is None:
            continue
        row = {"endpoint": key}
        for field in ("avg_duration_ms", "success_rate"):
            old, new = prev_ep.get(field), now_ep.get(field)
            row[field] = {
                "previous": old,
                "current": new,
                "delta": None if old is None or new is None else new - old,
            }
        rows.append(row)
    return rows


def render_diff(rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return "No endpoints in common with the previous report."
    lines = ["CHANGES SINCE PREVIOUS REPORT:"]
    for row in rows:
        lat = row["avg_duration_ms"]
        rate = row["success_rate"]
        lat_txt = "N/A" if lat["delta"] is None else f"{lat['delta']:+.1f}ms"
        rate_txt = "N/A" if rate["delta"] is None else f"{rate['delta'] * 100:+.1f}pp"
        lines.append(f"  {row['endpoint']}: avg {lat_txt}, success {rate_txt}")
    return "\n".join(lines)
