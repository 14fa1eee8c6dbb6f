"""
Sessions Package

Components that run one player session over a scene graph.

Components:
- DialogueEngine: State machine over the scene graph; owns SessionState
- SessionRecorder: Append-only history of the player's picks
- RecapGenerator: End-of-scene summary derived from the pick history
- EventBus: Engine events for presentation layers
- SceneSession: Loads, validates and wires a session; dispatches commands

Usage:
    from sessions.dialogue_engine import DialogueEngine
    from sessions.session_orchestrator import SceneSession

Note: Import directly from submodules to avoid circular import issues.
"""

__all__ = [
    "DialogueEngine",
    "EventBus",
    "RecapGenerator",
    "SceneSession",
    "SessionRecorder",
]
