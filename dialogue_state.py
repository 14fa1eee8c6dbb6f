"""
Dialogue session state.

Holds the engine phase, the current node pointer, the pick history and the
player's presentation preferences. A SessionState is owned by exactly one
DialogueEngine and is replaced wholesale on restart; only the presentation
preferences (subtitle language, explain mode, audio) carry over.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from constants import NO_QUALITY_YET
from scenes.graph import NodeKind
from sessions.session_recorder import PickRecord, SessionRecorder


class EnginePhase(str, Enum):
    """
    Engine states.

    UNSTARTED → AT_NPC / AT_PICK / AT_END, driven by the kind of the current
    node. AT_END is terminal: only restart leaves it.
    """
    UNSTARTED = "unstarted"
    AT_NPC = "at_npc"
    AT_PICK = "at_pick"
    AT_END = "at_end"


PHASE_BY_KIND = {
    NodeKind.NPC: EnginePhase.AT_NPC,
    NodeKind.PICK: EnginePhase.AT_PICK,
    NodeKind.END: EnginePhase.AT_END,
}


class SubtitleLanguage(str, Enum):
    """Support subtitle shown under the English line. Cycles off → zh → ja → off."""
    OFF = "off"
    ZH = "zh"
    JA = "ja"

    def next(self) -> "SubtitleLanguage":
        order = list(SubtitleLanguage)
        return order[(order.index(self) + 1) % len(order)]


@dataclass(frozen=True)
class SpokenLine:
    """Last utterance handed to the speech port, kept for replay."""

    role: str
    text: str
    node_id: Optional[str] = None


@dataclass
class SessionState:
    """
    Mutable per-session state.

    Attributes:
        phase: Current engine phase
        current_node_id: Node the player is at (None before start)
        recorder: Append-only pick history
        language: Active subtitle language
        explain: Explain-mode flag (presentation only)
        audio_enabled: Whether the live speech port is in use
        last_spoken: Last utterance, for replay
        last_npc_speaker: Speaker of the most recent NPC line
        last_quality: Quality of the most recent choice ("-" before any)
        ending: Ending tag once an end node is reached
        halted: Set after a RuntimeInvariantViolation
    """

    phase: EnginePhase = EnginePhase.UNSTARTED
    current_node_id: Optional[str] = None
    recorder: SessionRecorder = field(default_factory=SessionRecorder)
    language: SubtitleLanguage = SubtitleLanguage.OFF
    explain: bool = False
    audio_enabled: bool = False
    last_spoken: Optional[SpokenLine] = None
    last_npc_speaker: Optional[str] = None
    last_quality: str = NO_QUALITY_YET
    ending: Optional[str] = None
    halted: bool = False

    @classmethod
    def carry_over(cls, previous: Optional["SessionState"]) -> "SessionState":
        """Fresh state that keeps only the presentation preferences of ``previous``."""
        if previous is None:
            return cls()
        return cls(
            language=previous.language,
            explain=previous.explain,
            audio_enabled=previous.audio_enabled,
        )

    @property
    def picks(self) -> tuple[PickRecord, ...]:
        return self.recorder.records

    def to_dict(self) -> dict[str, Any]:
        return {
            'phase': self.phase.value,
            'current_node_id': self.current_node_id,
            'pick_count': len(self.recorder),
            'language': self.language.value,
            'explain': self.explain,
            'audio_enabled': self.audio_enabled,
            'last_quality': self.last_quality,
            'ending': self.ending,
            'halted': self.halted,
        }
