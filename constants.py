"""
Project-wide constants.

Centralizes timing values, defaults and environment-driven settings.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final

from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# Scene Documents
# =============================================================================
BUNDLED_SCENES_DIR: Final[Path] = Path(__file__).parent / "config" / "scenes"
DEFAULT_SCENE_ID: Final[str] = "office_pantry_01"
SCENE_PATH: Final[str] = os.getenv(
    "SCENE_PATH", str(BUNDLED_SCENES_DIR / f"{DEFAULT_SCENE_ID}.json")
)
DEFAULT_START_NODE_ID: Final[str] = "n001"  # Used when scene.startNode is absent
OPTIONS_PER_PICK: Final[int] = 3

# =============================================================================
# Option Quality
# =============================================================================
QUALITY_NATURAL: Final[str] = "natural"
QUALITY_OFF: Final[str] = "off"
QUALITY_AWKWARD: Final[str] = "awkward"
VALID_QUALITIES: Final[tuple[str, ...]] = (QUALITY_NATURAL, QUALITY_OFF, QUALITY_AWKWARD)
EXIT_INTENT: Final[str] = "exit"

# Recap badge per chosen quality
QUALITY_BADGES: Final[dict[str, str]] = {
    QUALITY_NATURAL: "ok",
    QUALITY_AWKWARD: "bad",
    QUALITY_OFF: "warn",
}
RECAP_PANEL_COUNT: Final[int] = 3
RECAP_FALLBACK_SUGGESTION: Final[str] = "Try a softer, playful line that keeps it light."
NO_QUALITY_YET: Final[str] = "-"

# Reaction cues used when an option declares none
NEUTRAL_CUE: Final[str] = "neutral"

# =============================================================================
# Speech Timing
# =============================================================================
READING_FLOOR_SECONDS: Final[float] = 1.5  # Minimum reading time without audio
READING_SECONDS_PER_CHAR: Final[float] = 0.035
LIVE_SPEECH_SETTLE_SECONDS: Final[float] = 0.05  # Pause between cancel and next utterance

# =============================================================================
# Voices
# =============================================================================
ELEVENLABS_API_KEY: Final[str] = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_MODEL_ID: Final[str] = os.getenv("ELEVENLABS_MODEL_ID", "eleven_turbo_v2_5")
ELEVENLABS_OUTPUT_FORMAT: Final[str] = "mp3_44100_128"
VOICE_IDS: Final[dict[str, str]] = {
    # Rachel - calm female voice for the NPC
    "npc": os.getenv("ELEVENLABS_VOICE_NPC", "21m00Tcm4TlvDq8ikWAM"),
    # Adam - neutral male voice for the player
    "player": os.getenv("ELEVENLABS_VOICE_PLAYER", "pNInz6obpgDQGcFmaJgB"),
}

# =============================================================================
# Server Configuration
# =============================================================================
DEFAULT_SERVER_HOST: Final[str] = os.getenv("SERVER_HOST", "0.0.0.0")
DEFAULT_SERVER_PORT: Final[int] = int(os.getenv("SERVER_PORT", "8080"))

# =============================================================================
# Logging Configuration
# =============================================================================
LOG_LEVEL_PRODUCTION: Final[str] = "INFO"
LOG_LEVEL_DEVELOPMENT: Final[str] = "DEBUG"
LOG_FORMAT_JSON: Final[bool] = True  # Set to False for development readable format
