"""
Speech port: speak an utterance, get told when it finishes, cancel it.

Every call to ``speak`` is stamped with a new generation token. A completion
whose token is no longer current is discarded, so a superseded utterance
(rapid replay, node change) can never drive a transition. Cancelling a handle
suppresses its completion entirely; it does not have to cut audio mid-stream.

Implementations:
- SyntheticSpeechPort: completes after a reading delay (audio disabled)
- tts_elevenlabs.ElevenLabsSpeechPort: completes when device playback ends
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from constants import READING_FLOOR_SECONDS, READING_SECONDS_PER_CHAR
from metrics import track_discarded_completion

logger = logging.getLogger(__name__)


class SpeechRole(str, Enum):
    NPC = "npc"
    PLAYER = "player"


CompletionCallback = Callable[["SpeechHandle"], None]


@dataclass(eq=False)
class SpeechHandle:
    """
    One utterance handed to a SpeechPort.

    Attributes:
        token: Generation token assigned by the port
        text: The spoken text
        role: Voice role ("npc" or "player")
        on_complete: Called once when the utterance finishes while still current
        cancelled: Set by cancel(); completion is then never delivered
        completed: Set when the port received the finish signal
    """

    token: int
    text: str
    role: SpeechRole
    on_complete: Optional[CompletionCallback] = None
    cancelled: bool = False
    completed: bool = False
    driver: Any = field(default=None, repr=False)  # timer/task owned by the port

    @property
    def settled(self) -> bool:
        return self.cancelled or self.completed


def reading_delay_seconds(text: str) -> float:
    """Minimum reading time for ``text`` when no audio is played."""
    return max(READING_FLOOR_SECONDS, READING_SECONDS_PER_CHAR * len(text))


class SpeechPort(ABC):
    """
    Base class holding the generation-token contract.

    Subclasses start playback in ``_begin``, stop it in ``_halt`` and call
    ``_deliver(handle)`` when the underlying utterance has finished.
    """

    name = "speech"

    def __init__(self) -> None:
        self._generation = 0
        self._current: Optional[SpeechHandle] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def current(self) -> Optional[SpeechHandle]:
        return self._current

    def is_current(self, handle: SpeechHandle) -> bool:
        return handle.token == self._generation and not handle.cancelled

    def speak(
        self,
        text: str,
        role: SpeechRole | str,
        on_complete: Optional[CompletionCallback] = None,
    ) -> SpeechHandle:
        """
        Start an utterance. Any earlier utterance stops being current.

        Args:
            text: Text to speak
            role: "npc" or "player"
            on_complete: Optional one-shot callback, fired only if this
                         utterance is still the current one when it ends
        """
        self._generation += 1
        handle = SpeechHandle(self._generation, text, SpeechRole(role), on_complete)
        self._current = handle
        logger.debug("[%s] speak #%d (%s): %.40s", self.name, handle.token, handle.role.value, text)
        self._begin(handle)
        return handle

    def cancel(self, handle: Optional[SpeechHandle] = None) -> None:
        """Cancel ``handle`` (default: the current utterance). Idempotent."""
        target = handle or self._current
        if target is None or target.settled:
            return
        target.cancelled = True
        logger.debug("[%s] cancel #%d", self.name, target.token)
        self._halt(target)

    def _deliver(self, handle: SpeechHandle) -> None:
        if handle.settled:
            return
        handle.completed = True
        if handle.token != self._generation:
            logger.debug(
                "[%s] discarding stale completion #%d (current #%d)",
                self.name, handle.token, self._generation,
            )
            track_discarded_completion()
            return
        if handle.on_complete is not None:
            handle.on_complete(handle)

    @abstractmethod
    def _begin(self, handle: SpeechHandle) -> None:
        """Start producing the utterance."""

    @abstractmethod
    def _halt(self, handle: SpeechHandle) -> None:
        """Best-effort stop of a cancelled utterance."""

    async def aclose(self) -> None:
        self.cancel()


class SyntheticSpeechPort(SpeechPort):
    """
    Timer-based port used when audio is disabled.

    Completes after ``max(floor, per_char * len(text))`` seconds, which
    models the minimum time a player needs to read the line.
    """

    name = "synthetic"

    def __init__(
        self,
        floor_seconds: float = READING_FLOOR_SECONDS,
        seconds_per_char: float = READING_SECONDS_PER_CHAR,
    ) -> None:
        super().__init__()
        self.floor_seconds = floor_seconds
        self.seconds_per_char = seconds_per_char

    def delay_for(self, text: str) -> float:
        return max(self.floor_seconds, self.seconds_per_char * len(text))

    def _begin(self, handle: SpeechHandle) -> None:
        loop = asyncio.get_running_loop()
        handle.driver = loop.call_later(self.delay_for(handle.text), self._deliver, handle)

    def _halt(self, handle: SpeechHandle) -> None:
        if handle.driver is not None:
            handle.driver.cancel()
