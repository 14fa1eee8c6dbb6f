"""
Dialogue Engine Module

Drives one player session through a validated scene graph.

The engine owns the SessionState and is the only thing that changes it. All
commands are coroutines serialized by one asyncio.Lock, so at most one
transition is in flight; speech completions resume as tracked tasks that take
the same lock and re-check that their utterance is still the current one.

Speech sequencing:
- Entering an NPC node speaks its line. If the next node is a pick, the end
  of that utterance moves on automatically; otherwise the engine waits for
  advance().
- choose() moves to the followup node at once and speaks the player's line;
  the followup node's own line is spoken when the player's line ends.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Callable, Coroutine, Optional

from constants import EXIT_INTENT, QUALITY_AWKWARD, QUALITY_NATURAL, QUALITY_OFF
from dialogue_state import PHASE_BY_KIND, EnginePhase, SessionState, SpokenLine, SubtitleLanguage
from exceptions import InvalidChoice, InvalidTransition, RuntimeInvariantViolation, ValidationError
from logging_config import get_session_logger
from metrics import (
    track_error,
    track_pick,
    track_scene_completed,
    track_session_started,
    track_validation_failure,
)
from scene_validator import ValidationIssue, validate_scene
from scenes.graph import EndNode, Node, NonverbalCues, NpcNode, Option, PickNode, SceneGraph, UnknownNode
from sessions.events import (
    EventBus,
    Listener,
    NodeEntered,
    OptionChosen,
    PresentationChanged,
    RecapReady,
    SceneEnded,
    SessionHalted,
)
from sessions.recap import RecapGenerator, RecapSummary, transfer_choice
from sessions.session_recorder import PickRecord
from speech_port import SpeechHandle, SpeechPort, SpeechRole

logger = logging.getLogger(__name__)


def natural_alternative(pick: PickNode) -> Optional[Option]:
    """
    The option shown in the recap as what a natural speaker would say.

    Prefers a natural option that is not a leave-taking line, then any
    natural option, then the first option in declaration order.
    """
    for opt in pick.options:
        if opt.quality == QUALITY_NATURAL and opt.intent != EXIT_INTENT:
            return opt
    for opt in pick.options:
        if opt.quality == QUALITY_NATURAL:
            return opt
    return pick.options[0] if pick.options else None


def describe_reaction(speaker_name: str, cues: NonverbalCues, quality: str, is_exit: bool) -> str:
    """One-line narration of how the NPC takes the player's line."""
    if is_exit:
        return f"{speaker_name} receives it warmly and gives you space."
    if quality == QUALITY_AWKWARD:
        face = cues.face or "neutral"
        beat = cues.beat or "neutral"
        return f"There is a noticeable pause. {speaker_name}’s {face} shows it. ({beat})"
    if quality == QUALITY_OFF:
        return f"{speaker_name} keeps it going, but the vibe dips slightly."
    return f"{speaker_name} reacts smoothly and stays playful."


class DialogueEngine:
    """State machine over a SceneGraph: Unstarted → AtNpc / AtPick / AtEnd."""

    def __init__(
        self,
        graph: SceneGraph,
        speech: SpeechPort,
        live_speech: Optional[SpeechPort] = None,
        *,
        recap_generator: Optional[RecapGenerator] = None,
        event_bus: Optional[EventBus] = None,
        session_id: Optional[str] = None,
    ) -> None:
        """
        Initialize the engine and validate its graph.

        Args:
            graph: Scene graph to play
            speech: Port used while audio is disabled (usually synthetic)
            live_speech: Port used while audio is enabled (optional)
            recap_generator: Recap builder, defaults to RecapGenerator()
            event_bus: Bus to publish engine events on
            session_id: Id used in log context; generated when omitted
        """
        self.graph = graph
        self.session_id = session_id or secrets.token_urlsafe(16)
        self.logger = get_session_logger(__name__, self.session_id, graph.scene_id)
        self.events = event_bus or EventBus()
        self.recap = recap_generator or RecapGenerator()

        self._synthetic_port = speech
        self._live_port = live_speech

        self.state = SessionState()
        self.last_recap: Optional[RecapSummary] = None
        self.halt_error: Optional[RuntimeInvariantViolation] = None

        self._lock = asyncio.Lock()
        self._background_tasks: set[asyncio.Task] = set()
        # Node whose line waits for the player's utterance to finish
        self._pending_line_node: Optional[str] = None

        self.validation_errors: list[ValidationIssue] = validate_scene(graph)
        if self.validation_errors:
            track_validation_failure()
            self.logger.warning_event(
                "validation_failed",
                "Scene failed validation",
                error_count=len(self.validation_errors),
            )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def phase(self) -> EnginePhase:
        return self.state.phase

    @property
    def speech(self) -> SpeechPort:
        """The port matching the current audio setting."""
        if self.state.audio_enabled and self._live_port is not None:
            return self._live_port
        return self._synthetic_port

    @property
    def current_node(self) -> Optional[Node]:
        if self.state.current_node_id is None:
            return None
        return self.graph.get(self.state.current_node_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.events.subscribe(listener)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Enter the start node. Refused while the graph has validation errors."""
        async with self._lock:
            if self.state.phase is not EnginePhase.UNSTARTED:
                raise InvalidTransition("start", self.state.phase.value, "session already started; use restart")
            self._start_locked()

    async def restart(self) -> None:
        """Replace the session state (keeping presentation preferences) and start again."""
        async with self._lock:
            self.speech.cancel()
            self.state = SessionState.carry_over(self.state)
            self.last_recap = None
            self.halt_error = None
            self._pending_line_node = None
            self.logger.info_event("session_restarted", "Session restarted")
            self._start_locked()

    async def advance(self) -> None:
        """Continue from the current NPC line to its next node."""
        async with self._lock:
            node = self._require_node("advance")
            if not isinstance(node, NpcNode):
                track_error("invalid_transition")
                raise InvalidTransition("advance", self.state.phase.value, "advance is only valid at an NPC line")
            self.speech.cancel()
            self._enter(node.next, source=node.id)

    async def choose(self, pick_node_id: str, option_id: str) -> PickRecord:
        """
        Choose an option at the current pick.

        Returns:
            The PickRecord appended for this choice

        Raises:
            InvalidTransition: not at a pick, or ``pick_node_id`` is not the current node
            InvalidChoice: ``option_id`` is not one of the pick's options
            RuntimeInvariantViolation: the option's followup node does not resolve
        """
        async with self._lock:
            node = self._require_node("choose")
            if not isinstance(node, PickNode):
                track_error("invalid_transition")
                raise InvalidTransition("choose", self.state.phase.value, "no pick is active")
            if pick_node_id != node.id:
                track_error("invalid_transition")
                raise InvalidTransition(
                    "choose", self.state.phase.value,
                    f"pick {pick_node_id!r} is not the current node {node.id!r}",
                )
            option = node.option(option_id)
            if option is None:
                track_error("invalid_choice")
                raise InvalidChoice(node.id, option_id)

            target = option.followup_node
            source = f"{node.id}/{option.id}"
            if target not in self.graph:
                self._halt(target, source)

            alternative = natural_alternative(node)
            record = PickRecord(
                pick_node_id=node.id,
                prompt=node.prompt.en,
                chosen_option_id=option.id,
                chosen_text=option.text.en,
                chosen_quality=option.quality,
                natural_alternative=alternative.text.en if alternative else "",
                chosen_is_exit=option.is_graceful_exit,
            )
            self.state.recorder.append(record)
            self.state.last_quality = option.quality
            track_pick(option.quality)

            cues = option.reaction.nonverbal if option.reaction and option.reaction.nonverbal else None
            cues = cues or NonverbalCues.neutral()
            speaker = self.graph.meta.display_name(self.state.last_npc_speaker or "")
            self.logger.info_event(
                "option_chosen",
                "Player chose an option",
                node_id=node.id,
                option_id=option.id,
                quality=option.quality,
                graceful_exit=option.is_graceful_exit,
            )
            self.events.emit(OptionChosen(
                record=record,
                reaction_cues=cues.to_dict(),
                reaction_line=describe_reaction(speaker, cues, option.quality, option.is_graceful_exit),
                followup_node=target,
            ))

            self._pending_line_node = target
            self._speak(
                option.text.en, SpeechRole.PLAYER, node.id,
                on_complete=self._resume_after_player_line(target),
            )
            self._enter(target, quality_hint=option.quality, speak_line=False, source=source)
            return record

    async def replay(self) -> Optional[SpeechHandle]:
        """Speak the last utterance again, re-arming any transition it carried."""
        async with self._lock:
            last = self.state.last_spoken
            if last is None:
                return None
            node = self.current_node
            if last.role == SpeechRole.NPC.value and node is not None and last.node_id == node.id:
                return self._speak_node_line(node)
            on_complete = None
            if last.role == SpeechRole.PLAYER.value and self._pending_line_node == self.state.current_node_id:
                on_complete = self._resume_after_player_line(self._pending_line_node)
            return self._speak(last.text, last.role, last.node_id, on_complete=on_complete)

    async def toggle_language(self) -> SubtitleLanguage:
        """Cycle the subtitle language off → zh → ja → off."""
        async with self._lock:
            self.state.language = self.state.language.next()
            self._restart_speech(self.speech)
            self._emit_presentation()
            return self.state.language

    async def answer_transfer_check(self, choice_id: str) -> bool:
        """
        Grade a transfer check line; once the scene has ended, speak it in the player voice.

        Raises:
            InvalidChoice: ``choice_id`` is not one of the transfer check lines
        """
        async with self._lock:
            choice = transfer_choice(choice_id)
            correct = choice.quality == QUALITY_NATURAL
            self.logger.info_event("transfer_check", "Transfer check answered", choice_id=choice.id, correct=correct)
            # Mid-scene the current line keeps the speech port
            if self.state.phase is EnginePhase.AT_END:
                self._speak(choice.text, SpeechRole.PLAYER, None)
            return correct

    async def toggle_explain(self) -> bool:
        """Flip explain mode. Presentation only; transitions are unaffected."""
        async with self._lock:
            self.state.explain = not self.state.explain
            self._emit_presentation()
            return self.state.explain

    async def set_audio_enabled(self, enabled: bool) -> None:
        """Switch between the live and the synthetic speech port."""
        async with self._lock:
            if self.state.audio_enabled == enabled:
                return
            previous = self.speech
            self.state.audio_enabled = enabled
            self._restart_speech(previous)
            self._emit_presentation()

    async def aclose(self) -> None:
        """Cancel speech and background tasks."""
        self.speech.cancel()
        for task in list(self._background_tasks):
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

    # ------------------------------------------------------------------
    # Transitions (lock held)
    # ------------------------------------------------------------------

    def _start_locked(self) -> None:
        if self.validation_errors:
            track_error("validation_error")
            raise ValidationError(self.validation_errors)
        track_session_started(self.graph.scene_id)
        self.logger.info_event("session_started", "Session started", start_node=self.graph.start_node_id)
        self._enter(self.graph.start_node_id, source="start")

    def _require_node(self, action: str) -> Node:
        if self.state.halted:
            raise InvalidTransition(action, "halted", "session halted; restart required")
        node = self.current_node
        if node is None:
            track_error("invalid_transition")
            raise InvalidTransition(action, self.state.phase.value)
        if isinstance(node, EndNode):
            track_error("invalid_transition")
            raise InvalidTransition(action, self.state.phase.value, "scene has ended")
        return node

    def _enter(
        self,
        node_id: str,
        quality_hint: Optional[str] = None,
        speak_line: bool = True,
        source: Optional[str] = None,
    ) -> None:
        node = self.graph.get(node_id)
        if node is None or isinstance(node, UnknownNode):
            self._halt(node_id, source)

        self.state.current_node_id = node.id
        self.state.phase = PHASE_BY_KIND[node.kind]
        if self._pending_line_node != node.id:
            self._pending_line_node = None

        self.logger.debug_event("node_entered", "Entered node", node_id=node.id, kind=node.kind.value)
        self.events.emit(NodeEntered(node.id, node.kind.value, quality_hint))

        if isinstance(node, NpcNode):
            self.state.last_npc_speaker = node.speaker
        elif isinstance(node, EndNode):
            self._finish(node)

        if speak_line:
            self._speak_node_line(node)

    def _finish(self, node: EndNode) -> None:
        self.state.ending = node.ending
        summary = self.recap.generate(self.state.recorder, ending=node.ending, scene_id=self.graph.scene_id)
        self.last_recap = summary
        track_scene_completed(node.ending)
        self.logger.info_event(
            "scene_ended", "Scene ended", node_id=node.id, ending=node.ending,
            pick_count=summary.pick_count,
        )
        self.events.emit(SceneEnded(node.id, node.ending))
        self.events.emit(RecapReady(summary))

    def _halt(self, node_id: str, source: Optional[str]) -> None:
        error = RuntimeInvariantViolation(node_id, source)
        self.speech.cancel()
        self.state.halted = True
        self.halt_error = error
        self._pending_line_node = None
        track_error("runtime_invariant_violation")
        self.logger.error_event(
            "runtime_invariant_violation", str(error), node_id=node_id, source=source,
        )
        self.events.emit(SessionHalted(node_id, str(error)))
        raise error

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    def _speak(
        self,
        text: str,
        role: SpeechRole | str,
        node_id: Optional[str],
        on_complete: Optional[Callable[[SpeechHandle], None]] = None,
    ) -> SpeechHandle:
        role_value = SpeechRole(role).value
        self.state.last_spoken = SpokenLine(role_value, text, node_id)
        return self.speech.speak(text, role_value, on_complete)

    def _speak_node_line(self, node: Node) -> Optional[SpeechHandle]:
        if self._pending_line_node == node.id:
            self._pending_line_node = None
        if isinstance(node, NpcNode):
            on_complete = None
            if isinstance(self.graph.get(node.next), PickNode):
                on_complete = self._resume_after_npc_line(node.id)
            return self._speak(node.line.en, SpeechRole.NPC, node.id, on_complete=on_complete)
        if isinstance(node, EndNode):
            return self._speak(node.line.en, SpeechRole.NPC, node.id)
        return None

    def _restart_speech(self, port: SpeechPort) -> None:
        """Cancel in-flight speech on ``port`` and re-speak what the player is waiting for."""
        pending = self._pending_line_node
        port.cancel()
        node = self.current_node
        if self.state.halted or node is None:
            return
        if isinstance(node, NpcNode) or node.id == pending:
            self._speak_node_line(node)

    def _still_current(self, handle: SpeechHandle) -> bool:
        port = self.speech
        return port.current is handle and port.is_current(handle)

    def _resume_after_npc_line(self, node_id: str) -> Callable[[SpeechHandle], None]:
        def _on_complete(handle: SpeechHandle) -> None:
            self._create_tracked_task(self._auto_advance(handle, node_id), name=f"auto_advance:{node_id}")
        return _on_complete

    def _resume_after_player_line(self, node_id: str) -> Callable[[SpeechHandle], None]:
        def _on_complete(handle: SpeechHandle) -> None:
            self._create_tracked_task(self._speak_followup(handle, node_id), name=f"followup_line:{node_id}")
        return _on_complete

    async def _auto_advance(self, handle: SpeechHandle, node_id: str) -> None:
        async with self._lock:
            if not self._still_current(handle) or self.state.halted:
                return
            node = self.current_node
            if not isinstance(node, NpcNode) or node.id != node_id:
                return
            self._enter(node.next, source=node.id)

    async def _speak_followup(self, handle: SpeechHandle, node_id: str) -> None:
        async with self._lock:
            if not self._still_current(handle) or self.state.halted:
                return
            node = self.current_node
            if node is None or node.id != node_id or self._pending_line_node != node_id:
                return
            self._speak_node_line(node)

    def _create_tracked_task(self, coro: Coroutine[Any, Any, None], name: str = "unknown") -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)

        def _task_done_callback(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            try:
                t.result()
            except asyncio.CancelledError:
                logger.debug("Task '%s' was cancelled", name)
            except RuntimeInvariantViolation:
                pass  # Already logged and published by _halt
            except Exception as e:
                logger.error("Task '%s' failed: %s", name, e, exc_info=True)

        task.add_done_callback(_task_done_callback)
        return task

    def _emit_presentation(self) -> None:
        self.events.emit(PresentationChanged(
            language=self.state.language.value,
            explain=self.state.explain,
            audio_enabled=self.state.audio_enabled,
        ))
