"""
Web server for the dialogue scene player.

This server:
- Runs one SceneSession per WebSocket connection on /ws
- Forwards engine events to the client as JSON messages
- Accepts JSON commands ({"command": "choose", "option_id": "o2"})
- Exposes /health, the bundled scene list and Prometheus /metrics
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from typing import Any, Callable, Optional

import aiohttp
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from config import bundled_scene_path, get_bundled_scene_ids
from constants import DEFAULT_SCENE_ID, DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT, SCENE_PATH
from exceptions import (
    DialogueSceneError,
    InvalidChoice,
    InvalidTransition,
    RuntimeInvariantViolation,
    SchemaError,
    ValidationError,
)
from logging_config import setup_logging
from metrics import track_error, update_active_sessions
from scenes.graph import EndNode, Node, NpcNode, PickNode
from sessions.events import EngineEvent, NodeEntered, PresentationChanged, event_to_dict
from sessions.recap import TRANSFER_CHECK, TRANSFER_CHECK_QUESTION
from sessions.session_orchestrator import SceneSession
from speech_port import SpeechPort
from tts_elevenlabs import ElevenLabsSpeechPort, get_tts_manager

logger = logging.getLogger(__name__)

LiveSpeechFactory = Callable[[], Optional[SpeechPort]]

SCENE_PATH_KEY = web.AppKey("scene_path", str)
LIVE_SPEECH_KEY = web.AppKey("live_speech_factory", object)
WEBSOCKETS_KEY = web.AppKey("websockets", weakref.WeakSet)

ERROR_KINDS: dict[type[DialogueSceneError], str] = {
    SchemaError: "schema_error",
    ValidationError: "validation_error",
    InvalidChoice: "invalid_choice",
    InvalidTransition: "invalid_transition",
    RuntimeInvariantViolation: "runtime_invariant_violation",
}


def error_kind(error: DialogueSceneError) -> str:
    for cls in type(error).__mro__:
        if cls in ERROR_KINDS:
            return ERROR_KINDS[cls]
    return "dialogue_error"


# =============================================================================
# Payload rendering
# =============================================================================

def render_node(session: SceneSession, node: Node) -> dict[str, Any]:
    """
    Client-facing view of a node in the session's current presentation mode.

    English text is always present; ``subtitle`` follows the active support
    language. Option quality/intent/tone and explanations are only included
    while explain mode is on.
    """
    state = session.engine.state
    language = state.language

    if isinstance(node, NpcNode):
        return {
            'kind': node.kind.value,
            'node_id': node.id,
            'speaker': node.speaker,
            'speaker_name': session.graph.meta.display_name(node.speaker),
            'text': node.line.en,
            'subtitle': node.line.subtitle(language),
            'nonverbal': node.nonverbal.to_dict() if node.nonverbal else None,
        }

    if isinstance(node, PickNode):
        options = []
        for opt in node.options:
            item: dict[str, Any] = {
                'id': opt.id,
                'text': opt.text.en,
                'subtitle': opt.text.subtitle(language),
            }
            if state.explain:
                item.update(
                    quality=opt.quality,
                    intent=opt.intent,
                    tone=list(opt.tone),
                    explain=opt.explain.en if opt.explain else "",
                    explain_subtitle=opt.explain.subtitle(language) if opt.explain else "",
                )
            options.append(item)
        return {
            'kind': node.kind.value,
            'node_id': node.id,
            'prompt': node.prompt.en,
            'subtitle': node.prompt.subtitle(language),
            'teasing': node.is_teasing_beat,
            'options': options,
        }

    if isinstance(node, EndNode):
        return {
            'kind': node.kind.value,
            'node_id': node.id,
            'ending': node.ending,
            'text': node.line.en,
            'subtitle': node.line.subtitle(language),
        }

    return {'kind': node.kind.value, 'node_id': node.id}


def render_event(session: SceneSession, event: EngineEvent) -> dict[str, Any]:
    payload = event_to_dict(event)
    if isinstance(event, NodeEntered):
        node = session.graph.get(event.node_id)
        if node is not None:
            payload['node'] = render_node(session, node)
    elif isinstance(event, PresentationChanged):
        # Subtitles and explain tags change how the current node reads
        node = session.engine.current_node
        if node is not None:
            payload['node'] = render_node(session, node)
    return payload


def scene_payload(session: SceneSession) -> dict[str, Any]:
    meta = session.graph.meta
    return {
        'type': 'scene',
        'session_id': session.session_id,
        'scene_id': meta.id,
        'title': meta.title.to_dict(),
        'context': meta.context.tags(),
        'commands': session.commands,
        'transfer_check': {
            'question': TRANSFER_CHECK_QUESTION,
            'choices': [{'id': c.id, 'text': c.text} for c in TRANSFER_CHECK],
        },
    }


def error_payload(kind: str, message: str, **extra: Any) -> dict[str, Any]:
    return {'type': 'error', 'error': kind, 'message': message, **extra}


# =============================================================================
# WebSocket session
# =============================================================================

class SocketSession:
    """
    Binds a SceneSession to one WebSocket.

    Every outgoing message goes through one queue and one writer task, so
    engine events and command replies reach the client in the order they
    were produced.
    """

    def __init__(self, ws: web.WebSocketResponse, session: SceneSession) -> None:
        self.ws = ws
        self.session = session
        self._outbox: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._unsubscribe = session.subscribe(self._on_event)

    def send(self, payload: dict[str, Any]) -> None:
        self._outbox.put_nowait(payload)

    def _on_event(self, event: EngineEvent) -> None:
        self.send(render_event(self.session, event))

    async def _write_loop(self) -> None:
        while True:
            payload = await self._outbox.get()
            if payload is None:
                return
            if self.ws.closed:
                continue
            try:
                await self.ws.send_json(payload)
            except ConnectionResetError as e:
                logger.warning("[WS] Client went away while sending %s: %s", payload.get('type'), e)

    async def open(self) -> None:
        self._writer = asyncio.create_task(self._write_loop())
        self.send(scene_payload(self.session))
        await self.session.open()

    async def handle_text(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("[WS] Invalid JSON received: %s", e)
            self.send(error_payload('invalid_json', 'Message is not valid JSON'))
            return

        if not isinstance(data, dict) or not isinstance(data.get('command'), str):
            self.send(error_payload('invalid_message', 'Expected an object with a "command" field'))
            return

        command = data['command']
        try:
            snapshot = await self.session.handle_command(command, data)
        except DialogueSceneError as e:
            kind = error_kind(e)
            if isinstance(e, RuntimeInvariantViolation):
                logger.error("[WS] Session %s halted: %s", self.session.session_id, e)
            else:
                logger.info("[WS] Rejected %s: %s", command, e)
            self.send(error_payload(kind, str(e), command=command))
            return

        self.send({'type': 'state', 'command': command, **snapshot})

    async def close(self) -> None:
        self._unsubscribe()
        await self.session.close()
        self._outbox.put_nowait(None)
        if self._writer is not None:
            await self._writer


def _resolve_scene_path(request: web.Request) -> str:
    scene_id = request.query.get('scene')
    if scene_id:
        return str(bundled_scene_path(scene_id))
    return request.app[SCENE_PATH_KEY]


def _build_session(request: web.Request) -> SceneSession:
    factory = request.app[LIVE_SPEECH_KEY]
    live_speech = factory() if factory is not None else None
    audio = request.query.get('audio', '').lower() in ('1', 'true', 'on')
    return SceneSession.from_path(
        _resolve_scene_path(request),
        live_speech=live_speech,
        audio_enabled=audio,
    )


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    """Handle one player's WebSocket connection."""
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    logger.info("[WS] Client connected")

    try:
        session = _build_session(request)
    except SchemaError as e:
        track_error("schema_error")
        logger.error("[WS] Scene failed to load: %s", e)
        await ws.send_json(error_payload('schema_error', str(e)))
        await ws.close()
        return ws

    if not session.is_valid:
        logger.warning("[WS] Scene %s is invalid, refusing to start", session.graph.scene_id)
        await ws.send_json({
            'type': 'validation_report',
            'scene_id': session.graph.scene_id,
            'errors': session.validation_report,
        })
        await session.close()
        await ws.close()
        return ws

    sockets = request.app[WEBSOCKETS_KEY]
    sockets.add(ws)
    update_active_sessions(len(sockets))

    bound = SocketSession(ws, session)
    try:
        await bound.open()

        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await bound.handle_text(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("[WS] WebSocket error: %s", ws.exception())

    finally:
        await bound.close()
        sockets.discard(ws)
        update_active_sessions(len(sockets))
        logger.info("[WS] Client disconnected")

    return ws


# =============================================================================
# HTTP endpoints
# =============================================================================

async def health_handler(request: web.Request) -> web.Response:
    return web.json_response({
        'status': 'ok',
        'active_sessions': len(request.app[WEBSOCKETS_KEY]),
    })


async def scenes_handler(request: web.Request) -> web.Response:
    """Bundled scene ids, selectable with /ws?scene=<id>."""
    return web.json_response({
        'scenes': get_bundled_scene_ids(),
        'default': DEFAULT_SCENE_ID,
    })


async def metrics_handler(request: web.Request) -> web.Response:
    response = web.Response(body=generate_latest())
    response.content_type = CONTENT_TYPE_LATEST.split(';')[0]
    response.charset = 'utf-8'
    return response


async def _close_websockets(app: web.Application) -> None:
    for ws in set(app[WEBSOCKETS_KEY]):
        await ws.close(code=aiohttp.WSCloseCode.GOING_AWAY, message=b'Server shutdown')


def create_app(
    scene_path: Optional[str] = None,
    live_speech_factory: Optional[LiveSpeechFactory] = None,
) -> web.Application:
    """
    Create and configure the web application.

    Args:
        scene_path: Scene document served on /ws (defaults to SCENE_PATH)
        live_speech_factory: Builds the live SpeechPort for each session;
                             without one, enabling audio keeps the reading timer
    """
    app = web.Application()
    app[SCENE_PATH_KEY] = str(scene_path or SCENE_PATH)
    app[LIVE_SPEECH_KEY] = live_speech_factory
    app[WEBSOCKETS_KEY] = weakref.WeakSet()
    app.on_shutdown.append(_close_websockets)

    app.router.add_get('/health', health_handler)
    app.router.add_get('/metrics', metrics_handler)
    app.router.add_get('/api/scenes', scenes_handler)
    app.router.add_get('/ws', websocket_handler)

    return app


def main() -> None:
    """Start the web server."""
    setup_logging()

    factory: Optional[LiveSpeechFactory] = None
    if get_tts_manager().is_enabled():
        factory = ElevenLabsSpeechPort
    else:
        logger.info("Live speech unavailable; audio stays on the reading timer")

    logger.info("Dialogue scene server on http://%s:%d (scene: %s)", DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT, SCENE_PATH)
    web.run_app(create_app(live_speech_factory=factory), host=DEFAULT_SERVER_HOST, port=DEFAULT_SERVER_PORT)


if __name__ == '__main__':
    main()
