import logging
import math
import os
from typing import Any, Optional

from .models import RunSummary
from .thresholds import Thresholds

logger = logging.getLogger(__name__)


def estimate_concurrent_users(avg_ms: Optional[float], thresholds: Thresholds) -> Optional[int]:
    """
    Rough capacity estimate: the target user count scaled down by how far the
    average latency sits above the API "acceptable" ceiling.
    """
    if avg_ms is None:
        return None
    factor = max(1.0, avg_ms / thresholds.api.acceptable)
    return math.floor(thresholds.max_concurrent_users / factor)


def server_metrics(summary: RunSummary, thresholds: Thresholds) -> dict[str, Any]:
    users = estimate_concurrent_users(summary.avg_duration_ms, thresholds)
    if users is None:
        status = "UNKNOWN"
    elif users < thresholds.max_concurrent_users:
        status = "WARNING"
    else:
        status = "OK"
    return {"estimated_concurrent_users": users, "capacity_status": status}


def analyze_bundle(dist_dir: str, thresholds: Thresholds) -> Optional[dict[str, Any]]:
    """Sum the size of every .js file under a production build directory."""
    if not os.path.isdir(dist_dir):
        logger.warning(f"No build directory at {dist_dir}. Skipping bundle analysis.")
        return None

    total = 0
    largest_name, largest_size = "", 0
    for root, _, filenames in os.walk(dist_dir):
        for filename in filenames:
            if not filename.endswith(".js"):
                continue
            size = os.path.getsize(os.path.join(root, filename))
            total += size
            if size > largest_size:
                largest_name, largest_size = filename, size

    total_kb = total / 1024
    metrics = {
        "total_js_bundle_size_kb": round(total_kb, 2),
        "largest_js_file": largest_name,
        "largest_js_file_kb": round(largest_size / 1024, 2),
        "bundle_status": "OK" if total_kb < thresholds.bundle_size_kb else "WARNING",
    }
    logger.info(
        f"Bundle analysis: {metrics['total_js_bundle_size_kb']}KB total, "
        f"largest {largest_name or '-'} ({metrics['largest_js_file_kb']}KB)"
    )
    return metrics
