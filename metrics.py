"""
Prometheus metrics instrumentation for the dialogue scene engine.

This module tracks:
- Sessions started and scenes completed (by ending)
- Player picks by option quality
- Scene documents rejected by validation
- Speech completions discarded because a newer utterance superseded them
- Errors by type
- Active websocket sessions

Usage:
    from metrics import track_pick, track_error

    track_pick("awkward")
    track_error("invalid_choice")
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# === COUNTERS ===

sessions_started_total = Counter(
    "dialogue_sessions_started_total",
    "Total number of scene sessions started (including restarts)",
    ["scene"],
)

picks_total = Counter(
    "dialogue_picks_total",
    "Total number of player choices by option quality",
    ["quality"],
)

scenes_completed_total = Counter(
    "dialogue_scenes_completed_total",
    "Total number of sessions that reached an end node",
    ["ending"],
)

validation_failures_total = Counter(
    "dialogue_validation_failures_total",
    "Total number of scene documents rejected by the validator",
)

speech_completions_discarded_total = Counter(
    "dialogue_speech_completions_discarded_total",
    "Speech completions ignored because their generation token was stale",
)

errors_total = Counter(
    "dialogue_errors_total",
    "Total number of errors encountered",
    ["error_type"],
)

# === GAUGES ===

active_sessions_gauge = Gauge(
    "dialogue_active_sessions",
    "Current number of connected scene sessions",
)


def track_session_started(scene: str) -> None:
    sessions_started_total.labels(scene=scene).inc()


def track_pick(quality: str) -> None:
    picks_total.labels(quality=quality).inc()


def track_scene_completed(ending: str) -> None:
    scenes_completed_total.labels(ending=ending or "unknown").inc()


def track_validation_failure() -> None:
    validation_failures_total.inc()


def track_discarded_completion() -> None:
    speech_completions_discarded_total.inc()


def track_error(error_type: str) -> None:
    """
    Track an error occurrence.

    Args:
        error_type: e.g. "invalid_choice", "invalid_transition", "schema_error"
    """
    errors_total.labels(error_type=error_type).inc()


def update_active_sessions(count: int) -> None:
    active_sessions_gauge.set(count)
