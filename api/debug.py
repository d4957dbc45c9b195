"""
api/debug.py — Debug and observability endpoints.

Provides:
- /debug/metrics - Access-check, transition and latency metrics
- /debug/config - Configuration inspection
"""

import time
from typing import Any, Dict

from fastapi import APIRouter

from config import get_debug_config
from core.metrics import get_access_metrics, get_all_metrics, get_histogram_stats

router = APIRouter(prefix="/debug", tags=["debug"])


@router.get("/metrics")
def get_metrics() -> Dict[str, Any]:
    """
    Get access-control metrics plus the raw metric dump.

    Returns:
    - access: allowed/denied checks, audit denials, transitions by outcome
    - performance: transition and upload latency (p50, p95)
    - all_metrics: every counter, gauge and histogram
    """
    return {
        "timestamp": time.time(),
        "access": get_access_metrics(),
        "performance": {
            "transition": get_histogram_stats("transition_latency_ms"),
            "media_upload": get_histogram_stats("media_upload_latency_ms"),
        },
        "all_metrics": get_all_metrics(),
    }


@router.get("/config")
def get_config() -> Dict[str, Any]:
    """Sanitized configuration (secret-looking keys removed)."""
    return get_debug_config()
