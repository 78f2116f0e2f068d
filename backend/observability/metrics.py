"""
Timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit one METRIC_TIMER event per measurement via observability.logger
- Never aggregate

Used by the bridge for upstream setup latency (socket open -> setupComplete)
and total session duration.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from observability.logger import log_event


# -----------------------------------------------------------------------------
# Internal timer storage
# -----------------------------------------------------------------------------
# timer_id -> (metric_name, start_time_ns)
_active_timers: dict[str, tuple[str, int]] = {}


def start_timer(name: str) -> str:
    """
    Start a monotonic timer.

    Returns:
        timer_id (str): Opaque ID required to stop the timer later.
    """
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = (name, time.monotonic_ns())
    return timer_id


def stop_timer(
    timer_id: str | None,
    *,
    session_id: str | None = None,
    state: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Stop a previously started timer and emit a metric event.

    Stopping an unknown (or already stopped) timer is a no-op, so callers
    can stop on every exit path without tracking whether they already did.

    Returns:
        duration_ms if the timer existed, else None
    """
    if timer_id is None:
        return None

    entry = _active_timers.pop(timer_id, None)
    if entry is None:
        return None

    name, start_ns = entry
    duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000

    log_event({
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "session_id": session_id,
        "state": state,
        "details": details or {},
    })

    return duration_ms


def active_timer_count() -> int:
    """Number of timers started but not yet stopped (leak checks in tests)."""
    return len(_active_timers)
