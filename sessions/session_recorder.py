"""
Session Recorder Module

Append-only history of the player's choices in one session. Records are
immutable once appended; nothing is ever removed or rewritten.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Any, Iterator, Optional

from constants import VALID_QUALITIES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PickRecord:
    """
    One player choice.

    Attributes:
        pick_node_id: The pick node the choice was made at
        prompt: English prompt of the pick
        chosen_option_id: Id of the chosen option
        chosen_text: English text of the chosen option
        chosen_quality: Quality of the chosen option
        natural_alternative: English text of the pick's natural alternative
        chosen_is_exit: Whether the chosen option was a graceful exit
    """

    pick_node_id: str
    prompt: str
    chosen_option_id: str
    chosen_text: str
    chosen_quality: str
    natural_alternative: str
    chosen_is_exit: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SessionRecorder:
    """Ordered, append-only list of PickRecords."""

    def __init__(self) -> None:
        self._records: list[PickRecord] = []

    def append(self, record: PickRecord) -> None:
        self._records.append(record)
        logger.debug(
            "[SessionRecorder] #%d %s -> %s (%s)",
            len(self._records), record.pick_node_id, record.chosen_option_id, record.chosen_quality,
        )

    @property
    def records(self) -> tuple[PickRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[PickRecord]:
        return iter(tuple(self._records))

    def last(self, count: int) -> tuple[PickRecord, ...]:
        """The most recent ``count`` records, oldest first."""
        if count <= 0:
            return ()
        return tuple(self._records[-count:])

    def latest(self, quality: Optional[str] = None) -> Optional[PickRecord]:
        """Most recent record, optionally restricted to one quality."""
        for record in reversed(self._records):
            if quality is None or record.chosen_quality == quality:
                return record
        return None

    def quality_counts(self) -> dict[str, int]:
        counts = Counter(r.chosen_quality for r in self._records)
        return {q: counts.get(q, 0) for q in VALID_QUALITIES}
