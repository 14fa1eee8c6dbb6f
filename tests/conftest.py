"""
Shared fixtures for the dialogue scene tests.

ManualSpeechPort stands in for real speech: utterances only finish when a
test calls ``finish()``, so speech sequencing can be stepped deterministically.
"""

import sys
import os

# Add parent directory to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import copy
from typing import Optional

import pytest

from scenes.graph import SceneGraph
from speech_port import SpeechHandle, SpeechPort


class ManualSpeechPort(SpeechPort):
    """SpeechPort whose utterances complete only when the test says so."""

    name = "manual"

    def __init__(self):
        super().__init__()
        self.spoken: list[SpeechHandle] = []
        self.halted: list[SpeechHandle] = []

    def _begin(self, handle):
        self.spoken.append(handle)

    def _halt(self, handle):
        self.halted.append(handle)

    def finish(self, handle: Optional[SpeechHandle] = None) -> None:
        """Signal completion of ``handle`` (default: the current utterance)."""
        self._deliver(handle or self.current)

    @property
    def texts(self) -> list[str]:
        return [h.text for h in self.spoken]


SCENE_DOC = {
    "scene": {
        "id": "test_scene",
        "title": {"en": "Test Scene", "zh": "测试场景"},
        "context": {"location": "pantry", "time": "morning", "vibe": ["light"]},
        "characters": {"npc": {"id": "maya", "displayName": "Maya"}},
    },
    "nodes": [
        {"id": "n001", "type": "npc", "speaker": "maya",
         "line": {"en": "Hi there.", "zh": "你好。"}, "next": "n002"},
        {"id": "n002", "type": "npc", "speaker": "maya",
         "line": {"en": "Coffee?"}, "nonverbal": {"face": "smile", "gaze": "direct", "beat": "quick"},
         "next": "n003"},
        {"id": "n003", "type": "pick", "prompt": {"en": "Answer Maya."}, "options": [
            {"id": "a", "en": "Sure, thanks!", "quality": "natural", "intent": "accept",
             "isGracefulExit": False,
             "npcReaction": {"followupNode": "n004",
                             "nonverbal": {"face": "smile", "gaze": "direct", "beat": "quick"}},
             "explain": {"en": "Accepting keeps things easy."}},
            {"id": "b", "en": "Coffee is a drug.", "quality": "awkward", "intent": "lecture",
             "isGracefulExit": False,
             "npcReaction": {"followupNode": "n005",
                             "nonverbal": {"face": "pause", "gaze": "avoid", "beat": "awkward"}}},
            {"id": "c", "en": "Maybe later.", "quality": "off", "intent": "deflect",
             "isGracefulExit": False, "npcReaction": {"followupNode": "n005"}},
        ]},
        {"id": "n004", "type": "npc", "speaker": "maya", "line": {"en": "Here you go."}, "next": "n006"},
        {"id": "n005", "type": "npc", "speaker": "maya", "line": {"en": "Oh. Okay."}, "next": "n006"},
        {"id": "n006", "type": "pick", "isTeasingBeat": True, "prompt": {"en": "Maya teases you."}, "options": [
            {"id": "a", "en": "Ha, fair.", "quality": "natural", "intent": "laugh",
             "isGracefulExit": False, "npcReaction": {"followupNode": "n007"}},
            {"id": "b", "en": "I should get back to work. See you!", "quality": "natural", "intent": "exit",
             "isGracefulExit": True, "npcReaction": {"followupNode": "n008"}},
            {"id": "c", "en": "That's not funny.", "quality": "awkward", "intent": "defend",
             "isGracefulExit": False, "npcReaction": {"followupNode": "n007"}},
        ]},
        {"id": "n007", "type": "end", "ending": "warm", "line": {"en": "Maya grins."}},
        {"id": "n008", "type": "end", "ending": "soft", "line": {"en": "See you later!"}},
    ],
}


# npc -> pick (one graceful exit) -> end, every option leading to the end
EXIT_SCENE_DOC = {
    "scene": {"id": "exit_scene", "title": {"en": "Exit Scene"}},
    "nodes": [
        {"id": "n001", "type": "npc", "speaker": "sam", "line": {"en": "Long day, huh?"}, "next": "n002"},
        {"id": "n002", "type": "pick", "prompt": {"en": "Respond."}, "options": [
            {"id": "o1", "en": "Yeah, brutal.", "quality": "natural", "intent": "agree",
             "isGracefulExit": False, "npcReaction": {"followupNode": "n003"}},
            {"id": "o2", "en": "Totally. I'm heading out, see you tomorrow!", "quality": "natural",
             "intent": "exit", "isGracefulExit": True, "npcReaction": {"followupNode": "n003"}},
            {"id": "o3", "en": "Days are 24 hours.", "quality": "awkward", "intent": "literal",
             "isGracefulExit": False, "npcReaction": {"followupNode": "n003"}},
        ]},
        {"id": "n003", "type": "end", "ending": "soft", "line": {"en": "See you!"}},
    ],
}


@pytest.fixture
def scene_doc():
    """A fresh, valid scene document the test may mutate."""
    return copy.deepcopy(SCENE_DOC)


@pytest.fixture
def exit_scene_doc():
    return copy.deepcopy(EXIT_SCENE_DOC)


@pytest.fixture
def scene_graph(scene_doc):
    return SceneGraph.from_document(scene_doc)


@pytest.fixture
def speech():
    return ManualSpeechPort()


@pytest.fixture
def live_speech():
    return ManualSpeechPort()


@pytest.fixture
def settle():
    """Let tracked completion tasks run."""
    async def _settle(rounds: int = 5):
        for _ in range(rounds):
            await asyncio.sleep(0)
    return _settle


def find_node(doc, node_id):
    for node in doc["nodes"]:
        if node.get("id") == node_id:
            return node
    raise KeyError(node_id)


@pytest.fixture
def node_in():
    """Look up a raw node dict in a document by id."""
    return find_node
