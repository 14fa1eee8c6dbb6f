"""
Custom exceptions for the dialogue scene engine.

Provides one exception type per failure kind so callers can tell load-time
problems apart from per-action rejections.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from scene_validator import ValidationIssue


class DialogueSceneError(Exception):
    """Base exception for all dialogue scene errors."""

    pass


class SchemaError(DialogueSceneError):
    """Raised when the scene document is missing or structurally unparseable."""

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        if source:
            message = f"{message} ({source})"
        super().__init__(message)


class ValidationError(DialogueSceneError):
    """Raised when a scene graph breaks one or more structural rules."""

    def __init__(self, issues: Sequence[ValidationIssue]) -> None:
        self.issues = list(issues)
        count = len(self.issues)
        super().__init__(
            f"Scene failed validation with {count} error{'s' if count != 1 else ''}"
        )

    @property
    def report(self) -> list[str]:
        """Human-readable error lines, in validator order."""
        return [issue.message for issue in self.issues]


class InvalidChoice(DialogueSceneError):
    """Raised when an option id does not belong to the current pick node."""

    def __init__(self, node_id: str, option_id: str) -> None:
        self.node_id = node_id
        self.option_id = option_id
        super().__init__(f"Option {option_id!r} is not an option of pick node {node_id!r}")


class InvalidTransition(DialogueSceneError):
    """Raised when an action does not fit the engine's current state."""

    def __init__(self, action: str, phase: str, reason: str = "") -> None:
        self.action = action
        self.phase = phase
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot {action} while {phase}{detail}")


class RuntimeInvariantViolation(DialogueSceneError):
    """Raised when a transition target does not resolve. Fatal for the session."""

    def __init__(self, node_id: str, source: str | None = None) -> None:
        self.node_id = node_id
        self.source = source
        origin = f" (from {source})" if source else ""
        super().__init__(f"Transition target does not resolve: {node_id!r}{origin}")
