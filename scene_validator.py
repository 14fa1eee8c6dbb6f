"""
Scene graph validation.

Runs every structural rule over a SceneGraph and collects all violations, so
an author sees the full defect list in one pass. The validator never raises;
a session may only start when it returns an empty list.

Rules:
- Scene metadata has an id and an English title
- The node list is present and non-empty
- Node ids are present and unique, node types are npc/pick/end
- Each node kind carries its required fields
- Every edge (npc next, option followupNode) resolves
- Pick nodes have exactly three options with known qualities
- Teasing beats have exactly one graceful exit
- Graceful exits are natural with intent "exit"
- The designated start node exists
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from constants import EXIT_INTENT, OPTIONS_PER_PICK, QUALITY_NATURAL, VALID_QUALITIES
from scenes.graph import EndNode, NpcNode, Option, PickNode, SceneGraph, UnknownNode

logger = logging.getLogger(__name__)


class ValidationRule(str, Enum):
    SCENE_META = "scene_meta"
    NODES_EMPTY = "nodes_empty"
    NODE_ID_MISSING = "node_id_missing"
    DUPLICATE_NODE_ID = "duplicate_node_id"
    NODE_TYPE = "node_type"
    REQUIRED_FIELD = "required_field"
    DANGLING_EDGE = "dangling_edge"
    OPTION_ARITY = "option_arity"
    INVALID_QUALITY = "invalid_quality"
    TEASING_EXIT_COUNT = "teasing_exit_count"
    GRACEFUL_EXIT_QUALITY = "graceful_exit_quality"
    GRACEFUL_EXIT_INTENT = "graceful_exit_intent"
    START_NODE_MISSING = "start_node_missing"


@dataclass(frozen=True)
class ValidationIssue:
    """
    One rule violation.

    Attributes:
        rule: The rule that was broken
        message: Human-readable line naming the node/option and the rule
        node_id: Offending node id, when the violation is node-scoped
        option_id: Offending option id, when the violation is option-scoped
    """

    rule: ValidationRule
    message: str
    node_id: Optional[str] = None
    option_id: Optional[str] = None

    def __str__(self) -> str:
        return self.message


class _Collector:
    def __init__(self) -> None:
        self.issues: List[ValidationIssue] = []

    def add(self, rule: ValidationRule, message: str, node_id: Optional[str] = None,
            option_id: Optional[str] = None) -> None:
        self.issues.append(ValidationIssue(rule, f"[{rule.value}] {message}", node_id, option_id))


def validate_scene(graph: SceneGraph) -> List[ValidationIssue]:
    """
    Check a scene graph against every structural rule.

    Args:
        graph: Parsed scene graph

    Returns:
        All violations in rule order; empty when the scene is playable
    """
    out = _Collector()

    _check_meta(graph, out)

    if not graph.nodes_declared:
        out.add(ValidationRule.NODES_EMPTY, "Scene nodes missing")
    elif not graph.nodes:
        out.add(ValidationRule.NODES_EMPTY, "Scene nodes empty")

    _check_identity(graph, out)

    for node in graph:
        label = node.id or "?"
        if isinstance(node, NpcNode):
            _check_npc(node, label, graph, out)
        elif isinstance(node, PickNode):
            _check_pick(node, label, graph, out)
        elif isinstance(node, EndNode):
            _check_end(node, label, out)
        elif isinstance(node, UnknownNode):
            pass  # Reported by the identity pass

    if graph.start_node_id not in graph:
        out.add(
            ValidationRule.START_NODE_MISSING,
            f'Missing start node "{graph.start_node_id}"',
            node_id=graph.start_node_id,
        )

    if out.issues:
        logger.info("[Validator] Scene %r: %d issue(s)", graph.scene_id, len(out.issues))
    return out.issues


def format_report(issues: List[ValidationIssue]) -> List[str]:
    """Validation report as the ordered list of error strings."""
    return [issue.message for issue in issues]


def _check_meta(graph: SceneGraph, out: _Collector) -> None:
    if not graph.meta.id:
        out.add(ValidationRule.SCENE_META, "Scene meta missing: scene.id")
    if not graph.meta.title.en:
        out.add(ValidationRule.SCENE_META, "Scene meta missing: title.en")


def _check_identity(graph: SceneGraph, out: _Collector) -> None:
    counts = Counter(node.id for node in graph if node.id)
    reported = set()
    for node in graph:
        if not node.id:
            out.add(ValidationRule.NODE_ID_MISSING, "Node missing id")
        elif counts[node.id] > 1 and node.id not in reported:
            reported.add(node.id)
            out.add(
                ValidationRule.DUPLICATE_NODE_ID,
                f"Duplicate node id: {node.id} (declared {counts[node.id]} times)",
                node_id=node.id,
            )
        if isinstance(node, UnknownNode):
            what = f"unknown type {node.type!r}" if node.type else "missing type"
            out.add(ValidationRule.NODE_TYPE, f"Node {node.id or '?'} has {what}", node_id=node.id or None)


def _check_edge(target: str, graph: SceneGraph, out: _Collector, message: str,
                node_id: str, option_id: Optional[str] = None) -> None:
    if target and target not in graph:
        out.add(ValidationRule.DANGLING_EDGE, message, node_id=node_id, option_id=option_id)


def _check_npc(node: NpcNode, label: str, graph: SceneGraph, out: _Collector) -> None:
    if not node.speaker:
        out.add(ValidationRule.REQUIRED_FIELD, f"NPC node {label} missing speaker", node_id=node.id)
    if not node.line.en:
        out.add(ValidationRule.REQUIRED_FIELD, f"NPC node {label} missing line.en", node_id=node.id)
    if not node.next:
        out.add(ValidationRule.REQUIRED_FIELD, f"NPC node {label} missing next", node_id=node.id)
    _check_edge(node.next, graph, out, f"NPC node {label} next invalid: {node.next}", node.id)


def _check_pick(node: PickNode, label: str, graph: SceneGraph, out: _Collector) -> None:
    if not node.prompt.en:
        out.add(ValidationRule.REQUIRED_FIELD, f"Pick node {label} missing prompt.en", node_id=node.id)

    if len(node.options) != OPTIONS_PER_PICK:
        out.add(
            ValidationRule.OPTION_ARITY,
            f"Pick node {label} must have exactly {OPTIONS_PER_PICK} options. Found: {len(node.options)}",
            node_id=node.id,
        )

    for option in node.options:
        _check_option(node, label, option, graph, out)

    if node.is_teasing_beat:
        graceful = sum(1 for o in node.options if o.is_graceful_exit)
        if graceful != 1:
            out.add(
                ValidationRule.TEASING_EXIT_COUNT,
                f"Teasing pick node {label} must have exactly 1 graceful exit option. Found: {graceful}",
                node_id=node.id,
            )


def _check_option(node: PickNode, label: str, option: Option, graph: SceneGraph, out: _Collector) -> None:
    opt_label = option.id or "?"
    where = f"Pick node {label} option {opt_label}"

    def missing(field_name: str) -> None:
        out.add(ValidationRule.REQUIRED_FIELD, f"{where} missing {field_name}",
                node_id=node.id, option_id=option.id or None)

    if not option.id:
        missing("id")
    if not option.text.en:
        missing("en")
    if not option.quality:
        missing("quality")
    elif option.quality not in VALID_QUALITIES:
        out.add(
            ValidationRule.INVALID_QUALITY,
            f"{where} has invalid quality {option.quality!r} (expected one of {', '.join(VALID_QUALITIES)})",
            node_id=node.id, option_id=option.id or None,
        )
    if not option.intent:
        missing("intent")
    if not option.followup_node:
        missing("npcReaction.followupNode")
    _check_edge(option.followup_node, graph, out,
                f"{where} followupNode invalid: {option.followup_node}", node.id, option.id or None)

    if option.is_graceful_exit:
        if option.quality != QUALITY_NATURAL:
            out.add(
                ValidationRule.GRACEFUL_EXIT_QUALITY,
                f"Graceful exit option must be quality natural. Node {label} option {opt_label}",
                node_id=node.id, option_id=option.id or None,
            )
        if option.intent != EXIT_INTENT:
            out.add(
                ValidationRule.GRACEFUL_EXIT_INTENT,
                f"Graceful exit option must have intent exit. Node {label} option {opt_label}",
                node_id=node.id, option_id=option.id or None,
            )


def _check_end(node: EndNode, label: str, out: _Collector) -> None:
    if not node.line.en:
        out.add(ValidationRule.REQUIRED_FIELD, f"End node {label} missing line.en", node_id=node.id)
    if not node.ending:
        out.add(ValidationRule.REQUIRED_FIELD, f"End node {label} missing ending", node_id=node.id)
