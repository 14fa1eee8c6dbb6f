"""
Tests for the speech port contract: generation tokens, cancellation and the
synthetic reading timer.
"""

import asyncio

import pytest
from prometheus_client import REGISTRY

from speech_port import SpeechRole, SyntheticSpeechPort, reading_delay_seconds


def discarded_count() -> float:
    return REGISTRY.get_sample_value("dialogue_speech_completions_discarded_total") or 0.0


class TestReadingDelay:

    def test_short_text_uses_floor(self):
        assert reading_delay_seconds("Hi") == 1.5
        assert reading_delay_seconds("") == 1.5

    def test_long_text_scales_per_character(self):
        assert reading_delay_seconds("x" * 100) == pytest.approx(3.5)

    def test_synthetic_port_delay(self):
        port = SyntheticSpeechPort(floor_seconds=0.2, seconds_per_char=0.01)
        assert port.delay_for("abc") == 0.2
        assert port.delay_for("x" * 50) == pytest.approx(0.5)


class TestGenerationTokens:

    def test_tokens_increase(self, speech):
        first = speech.speak("a", "npc")
        second = speech.speak("b", SpeechRole.PLAYER)
        assert second.token == first.token + 1
        assert speech.current is second
        assert second.role is SpeechRole.PLAYER
        assert speech.is_current(second)
        assert not speech.is_current(first)

    def test_only_latest_completion_fires(self, speech):
        fired = []
        first = speech.speak("a", "npc", lambda h: fired.append(h.text))
        second = speech.speak("b", "npc", lambda h: fired.append(h.text))

        before = discarded_count()
        speech.finish(first)
        assert fired == []
        assert discarded_count() == before + 1

        speech.finish(second)
        assert fired == ["b"]

    def test_completion_is_one_shot(self, speech):
        fired = []
        handle = speech.speak("a", "npc", lambda h: fired.append(h.token))
        speech.finish(handle)
        speech.finish(handle)
        assert fired == [handle.token]
        assert handle.completed

    def test_cancel_suppresses_completion(self, speech):
        fired = []
        handle = speech.speak("a", "npc", lambda h: fired.append(h))
        speech.cancel()
        speech.finish(handle)
        assert fired == []
        assert handle.cancelled
        assert speech.halted == [handle]

    def test_cancel_is_idempotent(self, speech):
        handle = speech.speak("a", "npc")
        speech.cancel(handle)
        speech.cancel(handle)
        assert speech.halted == [handle]

    def test_cancel_without_speech(self, speech):
        speech.cancel()
        assert speech.halted == []

    def test_cancel_after_completion_is_noop(self, speech):
        handle = speech.speak("a", "npc")
        speech.finish(handle)
        speech.cancel(handle)
        assert not handle.cancelled

    def test_unknown_role_rejected(self, speech):
        with pytest.raises(ValueError):
            speech.speak("a", "narrator")


class TestSyntheticSpeechPort:

    async def test_completes_after_delay(self):
        port = SyntheticSpeechPort(floor_seconds=0.01, seconds_per_char=0)
        done = asyncio.Event()
        port.speak("hello", "npc", lambda h: done.set())
        await asyncio.wait_for(done.wait(), timeout=1)

    async def test_superseded_utterance_never_fires(self):
        port = SyntheticSpeechPort(floor_seconds=0.01, seconds_per_char=0)
        fired = []
        port.speak("a", "npc", lambda h: fired.append("a"))
        port.speak("b", "npc", lambda h: fired.append("b"))
        await asyncio.sleep(0.05)
        assert fired == ["b"]

    async def test_cancel_stops_timer(self):
        port = SyntheticSpeechPort(floor_seconds=0.01, seconds_per_char=0)
        fired = []
        handle = port.speak("a", "npc", lambda h: fired.append(h))
        port.cancel(handle)
        await asyncio.sleep(0.05)
        assert fired == []
        assert handle.driver.cancelled()

    async def test_aclose_cancels_current(self):
        port = SyntheticSpeechPort(floor_seconds=0.01, seconds_per_char=0)
        fired = []
        port.speak("a", "npc", lambda h: fired.append(h))
        await port.aclose()
        await asyncio.sleep(0.05)
        assert fired == []
