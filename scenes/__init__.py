"""
Scene graph types and loading.

Each scene is a declarative graph of NPC lines, three-option picks and
endings, read from a JSON document.
"""

from pathlib import Path

from config import load_scene_document
from scenes.graph import (
    EndNode,
    LocalizedText,
    Node,
    NodeKind,
    NonverbalCues,
    NpcNode,
    NpcReaction,
    Option,
    PickNode,
    SceneContext,
    SceneGraph,
    SceneMeta,
    UnknownNode,
)


def load_scene(path: str | Path) -> SceneGraph:
    """Load and parse a scene document. Raises SchemaError."""
    return SceneGraph.from_document(load_scene_document(path), source=str(path))


__all__ = [
    "EndNode",
    "LocalizedText",
    "Node",
    "NodeKind",
    "NonverbalCues",
    "NpcNode",
    "NpcReaction",
    "Option",
    "PickNode",
    "SceneContext",
    "SceneGraph",
    "SceneMeta",
    "UnknownNode",
    "load_scene",
]
