"""
Engine events.

The engine publishes these to an EventBus; presentation layers subscribe and
render them. Listeners only observe: they never mutate session state.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional, Union

from sessions.recap import RecapSummary
from sessions.session_recorder import PickRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeEntered:
    node_id: str
    kind: str
    quality_hint: Optional[str] = None  # Quality of the choice that led here

    type = "node_entered"


@dataclass(frozen=True)
class OptionChosen:
    """
    A choice was recorded.

    Attributes:
        record: The appended PickRecord
        reaction_cues: Reaction face/gaze/beat (neutral when the option had none)
        reaction_line: Narration of how the NPC takes the line
        followup_node: Node the engine moved to
    """

    record: PickRecord
    reaction_cues: dict[str, str]
    reaction_line: str
    followup_node: str

    type = "option_chosen"


@dataclass(frozen=True)
class SceneEnded:
    node_id: str
    ending: str

    type = "scene_ended"


@dataclass(frozen=True)
class RecapReady:
    summary: RecapSummary

    type = "recap_ready"


@dataclass(frozen=True)
class PresentationChanged:
    language: str
    explain: bool
    audio_enabled: bool

    type = "presentation_changed"


@dataclass(frozen=True)
class SessionHalted:
    """A transition target did not resolve; the session stops until restart."""

    node_id: str
    message: str

    type = "session_halted"


EngineEvent = Union[
    NodeEntered, OptionChosen, SceneEnded, RecapReady, PresentationChanged, SessionHalted
]
Listener = Callable[[EngineEvent], None]


def event_to_dict(event: EngineEvent) -> dict[str, Any]:
    """JSON-ready payload: ``{"type": ..., **fields}``."""
    return {"type": event.type, **asdict(event)}


class EventBus:
    """
    Synchronous fan-out to subscribed listeners.

    A failing listener is logged and skipped; it never blocks the engine or
    the other listeners.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: EngineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("[EventBus] Listener failed on %s: %s", event.type, e, exc_info=True)
