"""
Scene graph types.

A scene document is parsed once into an immutable SceneGraph: scene metadata
plus an ordered tuple of nodes and an id -> node index. Nodes are a tagged
union (npc / pick / end); anything else is kept as an UnknownNode so the
validator can report it instead of the parser failing on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from constants import DEFAULT_START_NODE_ID, NEUTRAL_CUE
from exceptions import SchemaError


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class LocalizedText:
    """
    A line of text with an English master and optional subtitles.

    Attributes:
        en: English text (mandatory in a valid scene)
        zh: Chinese subtitle (optional)
        ja: Japanese subtitle (optional)
    """

    en: str = ""
    zh: str = ""
    ja: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> "LocalizedText":
        if isinstance(raw, str):
            return cls(en=raw)
        if not isinstance(raw, Mapping):
            return cls()
        return cls(en=_text(raw.get("en")), zh=_text(raw.get("zh")), ja=_text(raw.get("ja")))

    def subtitle(self, language: Any) -> str:
        """Subtitle for the active support language, or "" when off or missing."""
        code = getattr(language, "value", language)
        if code == "zh":
            return self.zh
        if code == "ja":
            return self.ja
        return ""

    def to_dict(self) -> Dict[str, str]:
        out = {"en": self.en}
        if self.zh:
            out["zh"] = self.zh
        if self.ja:
            out["ja"] = self.ja
        return out


@dataclass(frozen=True)
class NonverbalCues:
    """
    Free-text presentation cues attached to a line or a reaction.

    Attributes:
        face: Facial expression tag (e.g. "smirk", "pause")
        gaze: Gaze direction tag (e.g. "side", "avoid")
        beat: Timing beat tag (e.g. "quick", "release")
    """

    face: str = ""
    gaze: str = ""
    beat: str = ""

    @classmethod
    def neutral(cls) -> "NonverbalCues":
        return cls(face=NEUTRAL_CUE, gaze=NEUTRAL_CUE, beat=NEUTRAL_CUE)

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["NonverbalCues"]:
        if not isinstance(raw, Mapping):
            return None
        return cls(face=_text(raw.get("face")), gaze=_text(raw.get("gaze")), beat=_text(raw.get("beat")))

    def to_dict(self) -> Dict[str, str]:
        return {"face": self.face, "gaze": self.gaze, "beat": self.beat}


@dataclass(frozen=True)
class NpcReaction:
    """Outgoing edge of an option plus the NPC's optional reaction cues."""

    followup_node: str = ""
    nonverbal: Optional[NonverbalCues] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["NpcReaction"]:
        if not isinstance(raw, Mapping):
            return None
        return cls(
            followup_node=_text(raw.get("followupNode")),
            nonverbal=NonverbalCues.from_raw(raw.get("nonverbal")),
        )


@dataclass(frozen=True)
class Option:
    """
    One selectable player line in a pick.

    Attributes:
        id: Option id, unique within its pick
        text: Localized option text (English mandatory)
        quality: "natural", "off" or "awkward"
        intent: Free-text intent tag ("exit" marks a leave-taking line)
        tone: Optional tone tags
        is_graceful_exit: Whether this option ends the interaction cleanly
        reaction: NPC reaction with the followup node id
        explain: Optional localized explanation shown in explain mode
    """

    id: str
    text: LocalizedText
    quality: str = ""
    intent: str = ""
    tone: Tuple[str, ...] = ()
    is_graceful_exit: bool = False
    reaction: Optional[NpcReaction] = None
    explain: Optional[LocalizedText] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "Option":
        if not isinstance(raw, Mapping):
            raise SchemaError("Option entry is not an object")
        tone = raw.get("tone")
        explain = raw.get("explain")
        return cls(
            id=_text(raw.get("id")),
            text=LocalizedText.from_raw(raw),
            quality=_text(raw.get("quality")),
            intent=_text(raw.get("intent")),
            tone=tuple(t for t in tone if isinstance(t, str)) if isinstance(tone, list) else (),
            is_graceful_exit=raw.get("isGracefulExit") is True,
            reaction=NpcReaction.from_raw(raw.get("npcReaction")),
            explain=LocalizedText.from_raw(explain) if explain is not None else None,
        )

    @property
    def followup_node(self) -> str:
        return self.reaction.followup_node if self.reaction else ""


class NodeKind(str, Enum):
    NPC = "npc"
    PICK = "pick"
    END = "end"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NpcNode:
    id: str
    speaker: str = ""
    line: LocalizedText = field(default_factory=LocalizedText)
    next: str = ""
    nonverbal: Optional[NonverbalCues] = None

    kind: ClassVar[NodeKind] = NodeKind.NPC


@dataclass(frozen=True)
class PickNode:
    id: str
    prompt: LocalizedText = field(default_factory=LocalizedText)
    options: Tuple[Option, ...] = ()
    is_teasing_beat: bool = False

    kind: ClassVar[NodeKind] = NodeKind.PICK

    def option(self, option_id: str) -> Optional[Option]:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None


@dataclass(frozen=True)
class EndNode:
    id: str
    ending: str = ""
    line: LocalizedText = field(default_factory=LocalizedText)

    kind: ClassVar[NodeKind] = NodeKind.END


@dataclass(frozen=True)
class UnknownNode:
    """A node whose type is missing or unrecognised. Never valid."""

    id: str
    type: str = ""

    kind: ClassVar[NodeKind] = NodeKind.UNKNOWN


Node = Union[NpcNode, PickNode, EndNode, UnknownNode]


def parse_node(raw: Any) -> Node:
    """Build the node variant named by ``raw["type"]``."""
    if not isinstance(raw, Mapping):
        raise SchemaError("Node entry is not an object")

    node_id = _text(raw.get("id"))
    node_type = raw.get("type")

    if node_type == NodeKind.NPC.value:
        return NpcNode(
            id=node_id,
            speaker=_text(raw.get("speaker")),
            line=LocalizedText.from_raw(raw.get("line")),
            next=_text(raw.get("next")),
            nonverbal=NonverbalCues.from_raw(raw.get("nonverbal")),
        )
    if node_type == NodeKind.PICK.value:
        options = raw.get("options")
        return PickNode(
            id=node_id,
            prompt=LocalizedText.from_raw(raw.get("prompt")),
            options=tuple(Option.from_raw(o) for o in options) if isinstance(options, list) else (),
            is_teasing_beat=raw.get("isTeasingBeat") is True,
        )
    if node_type == NodeKind.END.value:
        return EndNode(
            id=node_id,
            ending=_text(raw.get("ending")),
            line=LocalizedText.from_raw(raw.get("line")),
        )
    return UnknownNode(id=node_id, type=_text(node_type))


@dataclass(frozen=True)
class SceneContext:
    location: str = ""
    time: str = ""
    relationship: str = ""
    vibe: Tuple[str, ...] = ()

    def tags(self) -> List[str]:
        """Context pills in display order, empty entries dropped."""
        return [t for t in (self.location, self.time, self.relationship, *self.vibe) if t]


@dataclass(frozen=True)
class SceneMeta:
    """
    Scene-level metadata.

    Attributes:
        id: Scene id
        title: Localized scene title
        context: Optional location/time/relationship/vibe tags
        characters: Raw character table keyed by role
        start_node: Designated start node id
    """

    id: str = ""
    title: LocalizedText = field(default_factory=LocalizedText)
    context: SceneContext = field(default_factory=SceneContext)
    characters: Mapping[str, Any] = field(default_factory=dict)
    start_node: str = DEFAULT_START_NODE_ID

    @classmethod
    def from_raw(cls, raw: Any) -> "SceneMeta":
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise SchemaError("Scene metadata is not an object")
        ctx = raw.get("context") if isinstance(raw.get("context"), Mapping) else {}
        vibe = ctx.get("vibe")
        characters = raw.get("characters")
        return cls(
            id=_text(raw.get("id")),
            title=LocalizedText.from_raw(raw.get("title")),
            context=SceneContext(
                location=_text(ctx.get("location")),
                time=_text(ctx.get("time")),
                relationship=_text(ctx.get("relationship")),
                vibe=tuple(v for v in vibe if isinstance(v, str)) if isinstance(vibe, list) else (),
            ),
            characters=dict(characters) if isinstance(characters, Mapping) else {},
            start_node=_text(raw.get("startNode")) or DEFAULT_START_NODE_ID,
        )

    def display_name(self, speaker_id: str) -> str:
        for entry in self.characters.values():
            if isinstance(entry, Mapping) and entry.get("id") == speaker_id and entry.get("displayName"):
                return str(entry["displayName"])
        return speaker_id or "NPC"


class SceneGraph:
    """
    Immutable scene document plus an id -> node lookup.

    Usage:
        graph = SceneGraph.from_document(json.load(fh))
        node = graph.get(graph.start_node_id)
    """

    def __init__(self, meta: SceneMeta, nodes: Tuple[Node, ...], nodes_declared: bool = True) -> None:
        self._meta = meta
        self._nodes = tuple(nodes)
        self._nodes_declared = nodes_declared
        index: Dict[str, Node] = {}
        for node in self._nodes:
            # First declaration wins; duplicates are a validation error.
            if node.id and node.id not in index:
                index[node.id] = node
        self._index = index

    @classmethod
    def from_document(cls, document: Any, source: Optional[str] = None) -> "SceneGraph":
        """
        Parse a loaded scene document.

        Missing fields are tolerated (the validator reports them); a document
        whose shape cannot be read at all raises SchemaError.
        """
        if not isinstance(document, Mapping):
            raise SchemaError("Scene document must be a JSON object", source)
        raw_nodes = document.get("nodes")
        if raw_nodes is not None and not isinstance(raw_nodes, list):
            raise SchemaError("Scene document 'nodes' must be a list", source)
        try:
            meta = SceneMeta.from_raw(document.get("scene"))
            nodes = tuple(parse_node(n) for n in raw_nodes or [])
        except SchemaError as e:
            raise SchemaError(str(e), source) from e
        return cls(meta, nodes, nodes_declared=raw_nodes is not None)

    @property
    def meta(self) -> SceneMeta:
        return self._meta

    @property
    def scene_id(self) -> str:
        return self._meta.id

    @property
    def nodes(self) -> Tuple[Node, ...]:
        return self._nodes

    @property
    def nodes_declared(self) -> bool:
        return self._nodes_declared

    @property
    def start_node_id(self) -> str:
        return self._meta.start_node

    def get(self, node_id: str) -> Optional[Node]:
        return self._index.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)
