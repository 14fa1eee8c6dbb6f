"""
Session Orchestrator Module

Builds a playable session from a scene document and routes named commands
to the DialogueEngine:

    load document → SceneGraph → validate → DialogueEngine → commands

Load-time failures (SchemaError) and validation failures surface before the
session starts; per-command errors surface per command and leave the session
running.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from config import load_scene_document
from constants import SCENE_PATH
from exceptions import InvalidTransition
from logging_config import get_session_logger
from scene_validator import format_report
from scenes.graph import SceneGraph
from sessions.dialogue_engine import DialogueEngine
from sessions.events import Listener
from speech_port import SpeechPort, SyntheticSpeechPort

logger = logging.getLogger(__name__)


class SceneSession:
    """
    One player's session over one scene.

    Usage:
        session = SceneSession.from_path("config/scenes/office_pantry_01.json")
        session.subscribe(print)
        await session.open()
        await session.handle_command("choose", {"option_id": "o2"})
    """

    def __init__(
        self,
        graph: SceneGraph,
        *,
        speech: Optional[SpeechPort] = None,
        live_speech: Optional[SpeechPort] = None,
        audio_enabled: bool = False,
        session_id: Optional[str] = None,
    ) -> None:
        """
        Initialize the session.

        Args:
            graph: Parsed scene graph
            speech: Port for audio-off play (SyntheticSpeechPort by default)
            live_speech: Port for audio-on play; audio stays off without one
            audio_enabled: Start with the live port active
            session_id: Session id; generated when omitted
        """
        self.session_id = session_id or secrets.token_urlsafe(32)
        self.graph = graph
        self.logger = get_session_logger(__name__, self.session_id, graph.scene_id)
        self._ports = [p for p in (speech, live_speech) if p is not None]
        self.engine = DialogueEngine(
            graph,
            speech or SyntheticSpeechPort(),
            live_speech,
            session_id=self.session_id,
        )
        self._audio_requested = audio_enabled and live_speech is not None

        self._handlers: dict[str, Callable[[Mapping[str, Any]], Any]] = {
            "start": lambda p: self.engine.start(),
            "restart": lambda p: self.engine.restart(),
            "advance": lambda p: self.engine.advance(),
            "choose": self._choose,
            "toggle_language": lambda p: self.engine.toggle_language(),
            "toggle_explain": lambda p: self.engine.toggle_explain(),
            "replay": lambda p: self.engine.replay(),
            "enable_audio": lambda p: self.engine.set_audio_enabled(True),
            "disable_audio": lambda p: self.engine.set_audio_enabled(False),
        }
        self.logger.info_event("session_created", "Scene session created", valid=self.is_valid)

    @classmethod
    def from_document(cls, document: Any, source: Optional[str] = None, **kwargs: Any) -> "SceneSession":
        """Build a session from an already-loaded document. Raises SchemaError."""
        return cls(SceneGraph.from_document(document, source), **kwargs)

    @classmethod
    def from_path(cls, path: str | Path | None = None, **kwargs: Any) -> "SceneSession":
        """Load and build a session. Raises SchemaError."""
        scene_path = str(path or SCENE_PATH)
        return cls.from_document(load_scene_document(scene_path), source=scene_path, **kwargs)

    @property
    def is_valid(self) -> bool:
        return not self.engine.validation_errors

    @property
    def validation_report(self) -> list[str]:
        return format_report(self.engine.validation_errors)

    @property
    def commands(self) -> list[str]:
        return sorted([*self._handlers, "transfer_check"])

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.engine.subscribe(listener)

    async def open(self) -> None:
        """Apply the initial audio setting and start. Raises ValidationError."""
        if self._audio_requested:
            await self.engine.set_audio_enabled(True)
        await self.engine.start()

    async def handle_command(self, command: str, payload: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """
        Run one named command.

        Returns:
            Snapshot of the session after the command (plus ``correct`` for
            a transfer check)
        """
        payload = payload or {}
        if command == "transfer_check":
            correct = await self.engine.answer_transfer_check(str(payload.get("choice_id", "")))
            return {**self.snapshot(), "correct": correct}

        handler = self._handlers.get(command)
        if handler is None:
            raise InvalidTransition(command, self.engine.phase.value, "unknown command")
        await handler(payload)
        return self.snapshot()

    async def _choose(self, payload: Mapping[str, Any]) -> None:
        pick_node_id = payload.get("pick_node_id") or self.engine.state.current_node_id or ""
        await self.engine.choose(str(pick_node_id), str(payload.get("option_id", "")))

    def snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "scene_id": self.graph.scene_id,
            **self.engine.state.to_dict(),
        }

    async def close(self) -> None:
        await self.engine.aclose()
        for port in self._ports:
            await port.aclose()
        self.logger.info_event("session_closed", "Scene session closed")
