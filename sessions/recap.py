"""
Recap Generator Module

Builds the end-of-scene summary from the session's pick history:
- Panel summaries of the last three choices with a quality badge
- One improvement suggestion (latest awkward pick, else latest pick)
- A fixed transfer check: three stock lines, one of them natural
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional

from constants import (
    QUALITY_AWKWARD,
    QUALITY_BADGES,
    QUALITY_NATURAL,
    RECAP_FALLBACK_SUGGESTION,
    RECAP_PANEL_COUNT,
)
from exceptions import InvalidChoice
from sessions.session_recorder import SessionRecorder

logger = logging.getLogger(__name__)

TRANSFER_CHECK_ID = "transfer_check"


@dataclass(frozen=True)
class TransferChoice:
    id: str
    text: str
    quality: str


TRANSFER_CHECK_QUESTION = "Elevator, barely-known coworker: what’s the best line to keep it light?"

# Same three lines for every scene: a generalization probe, not scene content.
TRANSFER_CHECK: tuple[TransferChoice, ...] = (
    TransferChoice("a", "Long time no see. We should totally hang out this weekend.", QUALITY_AWKWARD),
    TransferChoice("b", "Hey. How’s it going? Busy day?", QUALITY_NATURAL),
    TransferChoice("c", "I am proceeding efficiently according to plan.", QUALITY_AWKWARD),
)


@dataclass(frozen=True)
class PanelSummary:
    index: int
    pick_node_id: str
    prompt: str
    chosen_text: str
    quality: str
    badge: str
    natural_alternative: str
    chosen_is_exit: bool


@dataclass(frozen=True)
class Suggestion:
    """
    Improvement suggestion.

    Attributes:
        text: Natural alternative to try (verbatim), or the generic fallback
        pick_node_id: Pick the suggestion comes from; None for the fallback
        chosen_text: What the player actually said there
        is_fallback: True when no picks were made
    """

    text: str
    pick_node_id: Optional[str] = None
    chosen_text: Optional[str] = None
    is_fallback: bool = False


@dataclass(frozen=True)
class RecapSummary:
    scene_id: str
    ending: Optional[str]
    panels: tuple[PanelSummary, ...]
    suggestion: Suggestion
    transfer_check: tuple[TransferChoice, ...]
    transfer_question: str
    quality_counts: dict[str, int]
    pick_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def badge_for(quality: str) -> str:
    """natural → ok, awkward → bad, anything else → warn."""
    return QUALITY_BADGES.get(quality, "warn")


def transfer_choice(choice_id: str) -> TransferChoice:
    """Look up a transfer check line; raises InvalidChoice for unknown ids."""
    for choice in TRANSFER_CHECK:
        if choice.id == choice_id:
            return choice
    raise InvalidChoice(TRANSFER_CHECK_ID, choice_id)


def grade_transfer_choice(choice_id: str) -> bool:
    """True when the player picked the natural line of the transfer check."""
    return transfer_choice(choice_id).quality == QUALITY_NATURAL


class RecapGenerator:
    """Derives a RecapSummary from a SessionRecorder."""

    def __init__(self, panel_count: int = RECAP_PANEL_COUNT) -> None:
        self.panel_count = panel_count

    def generate(
        self,
        recorder: SessionRecorder,
        ending: Optional[str] = None,
        scene_id: str = "",
    ) -> RecapSummary:
        recent = recorder.last(self.panel_count)
        panels = tuple(
            PanelSummary(
                index=i + 1,
                pick_node_id=r.pick_node_id,
                prompt=r.prompt,
                chosen_text=r.chosen_text,
                quality=r.chosen_quality,
                badge=badge_for(r.chosen_quality),
                natural_alternative=r.natural_alternative,
                chosen_is_exit=r.chosen_is_exit,
            )
            for i, r in enumerate(recent)
        )

        summary = RecapSummary(
            scene_id=scene_id,
            ending=ending,
            panels=panels,
            suggestion=self._suggest(recorder),
            transfer_check=TRANSFER_CHECK,
            transfer_question=TRANSFER_CHECK_QUESTION,
            quality_counts=recorder.quality_counts(),
            pick_count=len(recorder),
        )
        logger.debug(
            "[Recap] %d panel(s), suggestion from %s",
            len(panels), summary.suggestion.pick_node_id or "fallback",
        )
        return summary

    def _suggest(self, recorder: SessionRecorder) -> Suggestion:
        record = recorder.latest(QUALITY_AWKWARD) or recorder.latest()
        if record is None:
            return Suggestion(text=RECAP_FALLBACK_SUGGESTION, is_fallback=True)
        return Suggestion(
            text=record.natural_alternative,
            pick_node_id=record.pick_node_id,
            chosen_text=record.chosen_text,
        )
