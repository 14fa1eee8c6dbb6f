"""
ElevenLabs Text-to-Speech Integration

Live SpeechPort: synthesizes each utterance with ElevenLabs and plays it
through pydub. The completion signal is delivered when playback finishes.
Device quirks (settle delay before speaking, stopping the previous utterance)
stay inside this module.
"""

from __future__ import annotations

import asyncio
import logging
import re
from io import BytesIO
from typing import Any, Callable, Optional

from elevenlabs import VoiceSettings
from elevenlabs.client import ElevenLabs
from pydub import AudioSegment
from pydub.playback import play

from constants import (
    ELEVENLABS_API_KEY,
    ELEVENLABS_MODEL_ID,
    ELEVENLABS_OUTPUT_FORMAT,
    LIVE_SPEECH_SETTLE_SECONDS,
    VOICE_IDS,
)
from metrics import track_error
from speech_port import SpeechHandle, SpeechPort, reading_delay_seconds

logger = logging.getLogger(__name__)

# Voice settings per role
VOICE_SETTINGS = {
    "npc": {
        "stability": 0.45,  # A little looser for playful delivery
        "similarity_boost": 0.75,
        "style": 0.15,
        "use_speaker_boost": True,
    },
    "player": {
        "stability": 0.6,
        "similarity_boost": 0.7,
        "style": 0.0,
        "use_speaker_boost": True,
    },
}


def _api_key_configured(api_key: str) -> bool:
    return bool(api_key) and api_key != "your-elevenlabs-api-key-here"


class TTSManager:
    """Synthesizes utterances to MP3 bytes using ElevenLabs."""

    def __init__(self, api_key: str = ELEVENLABS_API_KEY, client: Any = None):
        self.client = client
        if self.client is None and _api_key_configured(api_key):
            try:
                self.client = ElevenLabs(api_key=api_key)
                logger.info("TTSManager initialized with ElevenLabs")
            except Exception as e:
                logger.error("Failed to initialize ElevenLabs client: %s", e)
        if self.client is None:
            logger.info("ElevenLabs TTS disabled (no API key configured)")

    def is_enabled(self) -> bool:
        return self.client is not None

    def get_voice_id(self, role: str) -> str:
        return VOICE_IDS.get(role, VOICE_IDS["npc"])

    def clean_text_for_tts(self, text: str) -> str:
        """Drop bracketed stage directions and collapse whitespace."""
        text = re.sub(r'\[[^\]]+\]', '', text)
        text = re.sub(r'\.{4,}', '...', text)
        return re.sub(r'\s+', ' ', text).strip()

    async def synthesize_speech(self, text: str, role: str = "npc") -> bytes | None:
        """
        Synthesize speech for one utterance.

        Returns:
            MP3 bytes, or None if TTS is disabled, the text is empty after
            cleaning, or synthesis failed
        """
        if not self.is_enabled():
            return None

        cleaned = self.clean_text_for_tts(text)
        if len(cleaned) < 2:
            logger.debug("Text too short for TTS after cleaning: '%s'", text)
            return None

        settings = VOICE_SETTINGS.get(role, VOICE_SETTINGS["npc"])
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(
                None, self._sync_synthesize, cleaned, self.get_voice_id(role), settings
            )
        except Exception as e:
            logger.error("TTS synthesis failed: %s", e)
            track_error("tts_synthesis")
            return None

    def _sync_synthesize(self, text: str, voice_id: str, settings: dict[str, Any]) -> bytes:
        """Synchronous synthesis (run in thread pool)."""
        response = self.client.text_to_speech.convert(
            text=text,
            voice_id=voice_id,
            model_id=ELEVENLABS_MODEL_ID,
            output_format=ELEVENLABS_OUTPUT_FORMAT,
            voice_settings=VoiceSettings(**settings),
        )

        audio_buffer = BytesIO()
        for chunk in response:
            if chunk:
                audio_buffer.write(chunk)
        return audio_buffer.getvalue()


def play_mp3(audio: bytes) -> None:
    """Blocking playback of MP3 bytes on the default output device."""
    play(AudioSegment.from_file(BytesIO(audio), format="mp3"))


class ElevenLabsSpeechPort(SpeechPort):
    """
    SpeechPort backed by ElevenLabs synthesis and local playback.

    When synthesis is unavailable or playback fails, the utterance falls back
    to the reading delay so the completion signal still arrives.
    """

    name = "elevenlabs"

    def __init__(
        self,
        tts_manager: Optional[TTSManager] = None,
        player: Callable[[bytes], None] = play_mp3,
        settle_seconds: float = LIVE_SPEECH_SETTLE_SECONDS,
    ) -> None:
        super().__init__()
        self.tts = tts_manager or get_tts_manager()
        self.player = player
        self.settle_seconds = settle_seconds
        self._background_tasks: set[asyncio.Task] = set()

    def _begin(self, handle: SpeechHandle) -> None:
        # Stop the previous utterance before starting a new one.
        for task in list(self._background_tasks):
            task.cancel()
        task = asyncio.get_running_loop().create_task(self._run(handle))
        handle.driver = task
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _halt(self, handle: SpeechHandle) -> None:
        if handle.driver is not None and not handle.driver.done():
            handle.driver.cancel()

    async def _run(self, handle: SpeechHandle) -> None:
        # Give the output device a moment to settle after a cancel.
        await asyncio.sleep(self.settle_seconds)
        audio = await self.tts.synthesize_speech(handle.text, handle.role.value)
        played = False
        if audio:
            try:
                await asyncio.get_running_loop().run_in_executor(None, self.player, audio)
                played = True
            except Exception as e:
                logger.error("Audio playback failed: %s", e)
                track_error("tts_playback")
        if not played:
            await asyncio.sleep(reading_delay_seconds(handle.text))
        self._deliver(handle)

    async def aclose(self) -> None:
        self.cancel()
        for task in list(self._background_tasks):
            task.cancel()
        await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()


# Global TTS manager instance
_tts_manager: TTSManager | None = None


def get_tts_manager() -> TTSManager:
    """Get the global TTS manager instance."""
    global _tts_manager
    if _tts_manager is None:
        _tts_manager = TTSManager()
    return _tts_manager
