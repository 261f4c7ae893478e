"""Starlette app — HTTP command routes + WebSocket queue feed."""
import asyncio
import contextlib
import functools
import json
import logging
import uuid
from typing import Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from ..config import ALLOWED_ORIGINS, APP_VERSION
from ..engine import QueueEngine
from ..errors import (
    DeviceUnavailable,
    NotAuthorized,
    NotConfigured,
    ProviderError,
    QueueError,
    ValidationError,
    format_error,
)
from ..models import QueueItem, Track
from ..spotify import SpotifyClient
from ..store import QueueStore
from .state import QUEUE_UPDATE, QueueBroadcaster

logger = logging.getLogger(__name__)


def _engine(request) -> QueueEngine:
    return request.app.state.engine


async def _body(request) -> dict:
    try:
        data = await request.json()
    except (json.JSONDecodeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _error(status: int, message: str, code: Optional[str] = None) -> JSONResponse:
    payload = {"error": message}
    if code:
        payload["code"] = code
    return JSONResponse(payload, status_code=status)


def action(stage: str):
    """Map domain errors to HTTP responses for one route.

    Client errors and auth/device conditions keep their own status; any
    other Spotify failure is logged and answered generically.
    """
    def wrap(handler):
        @functools.wraps(handler)
        async def inner(request):
            try:
                return await handler(request)
            except QueueError as e:
                return _error(e.status_code, str(e), e.code)
            except (NotAuthorized, NotConfigured, DeviceUnavailable) as e:
                return _error(e.status_code, str(e), e.code)
            except ProviderError as e:
                return _error(500, format_error(stage, str(e)), e.code)
        return inner
    return wrap


# ── Health ───────────────────────────────────────────────────────────────────

async def health(request):
    return JSONResponse({
        "ok": True,
        "version": APP_VERSION,
        "clients": request.app.state.broadcaster.client_count,
    })


# ── Search / queue ───────────────────────────────────────────────────────────

@action("search")
async def search(request):
    tracks = await _engine(request).search(request.query_params.get("q", ""))
    return JSONResponse({"items": [t.to_dict() for t in tracks]})


async def get_queue(request):
    return JSONResponse(_engine(request).snapshot())


@action("queue_add")
async def add_to_queue(request):
    body = await _body(request)
    raw = body.get("track")
    track = Track.from_payload(raw) if isinstance(raw, dict) and raw else None
    item = await _engine(request).add(track, body.get("requestedBy"))
    return JSONResponse({"ok": True, "item": item.to_dict()}, status_code=201)


@action("queue_remove")
async def remove_from_queue(request):
    body = await _body(request)
    await _engine(request).remove(body.get("id"), body.get("spotifyUri"))
    return JSONResponse({"ok": True})


@action("queue_reorder")
async def reorder_queue(request):
    body = await _body(request)
    state, synced = await _engine(request).reorder(body.get("uris"))
    return JSONResponse({"ok": True, "queue": state.to_dict()["queue"], "synced": synced})


async def clear_queue(request):
    await _engine(request).clear_queue()
    return JSONResponse({"ok": True})


@action("queue_next")
async def advance(request):
    now_playing = await _engine(request).advance()
    return JSONResponse({"ok": True, "nowPlaying": now_playing.to_dict() if now_playing else None})


@action("now_playing")
async def set_now_playing(request):
    body = await _body(request)
    raw = body.get("item")
    if not isinstance(raw, dict) or not raw:
        raise ValidationError("Missing item")
    item = await _engine(request).set_now_playing(QueueItem.from_payload(raw))
    return JSONResponse({"ok": True, "nowPlaying": item.to_dict()})


async def force_sync(request):
    engine = _engine(request)
    outcome = await engine.sync()
    if outcome.error:
        logger.warning("Manual sync %s (%s): %s", outcome.status, outcome.error_kind, outcome.error)
    return JSONResponse({"ok": True, "status": outcome.status, **engine.snapshot()})


@action("playlist_clear")
async def clear_playlist(request):
    if not await _engine(request).clear_playlist():
        raise NotAuthorized()
    return JSONResponse({"ok": True})


# ── Player ───────────────────────────────────────────────────────────────────

@action("player_play")
async def player_play(request):
    await _engine(request).play()
    return JSONResponse({"ok": True})


@action("player_pause")
async def player_pause(request):
    await _engine(request).pause()
    return JSONResponse({"ok": True})


@action("player_next")
async def player_next(request):
    await _engine(request).skip_forward()
    return JSONResponse({"ok": True})


@action("player_previous")
async def player_previous(request):
    await _engine(request).skip_backward()
    return JSONResponse({"ok": True})


@action("player_play_playlist")
async def player_play_playlist(request):
    await _engine(request).play_playlist()
    return JSONResponse({"ok": True})


@action("player_play_track")
async def player_play_track(request):
    body = await _body(request)
    state = await _engine(request).play_track(body.get("spotifyUri"))
    return JSONResponse({"ok": True, **state.to_dict()})


@action("player_devices")
async def player_devices(request):
    devices = await _engine(request).devices()
    return JSONResponse({"devices": devices})


@action("player_transfer")
async def player_transfer(request):
    body = await _body(request)
    await _engine(request).transfer(body.get("deviceId"), body.get("play") is not False)
    return JSONResponse({"ok": True})


# ── Auth ─────────────────────────────────────────────────────────────────────

async def auth_login(request):
    return RedirectResponse(_engine(request).login_url())


async def auth_callback(request):
    code = request.query_params.get("code", "")
    if not code:
        return PlainTextResponse("Missing code", status_code=400)
    try:
        await _engine(request).authorize(code)
    except ProviderError as e:
        format_error("auth_callback", str(e))
        return PlainTextResponse("Authorization failed", status_code=500)
    return PlainTextResponse("Authorized. You can close this tab.")


async def auth_status(request):
    return JSONResponse(await _engine(request).auth_status())


# ── WebSocket ────────────────────────────────────────────────────────────────

async def websocket_endpoint(websocket: WebSocket):
    engine: QueueEngine = websocket.app.state.engine
    broadcaster: QueueBroadcaster = websocket.app.state.broadcaster

    await websocket.accept()
    client_id = str(uuid.uuid4())
    queue = broadcaster.subscribe(client_id)
    logger.info("WS connected: %s", client_id)

    # Full snapshot on every (re)connect — no replay
    await websocket.send_json({"type": QUEUE_UPDATE, "data": engine.snapshot()})

    # Two tasks: one reads from client, one writes from queue
    async def _reader():
        try:
            while True:
                data = await websocket.receive_json()
                await _handle_ws_message(engine, data)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error("WS reader error: %s", e)

    async def _writer():
        try:
            while True:
                event, data = await queue.get()
                await websocket.send_json({"type": event, "data": data})
        except Exception:
            pass

    reader_task = asyncio.create_task(_reader())
    writer_task = asyncio.create_task(_writer())

    try:
        done, pending = await asyncio.wait(
            [reader_task, writer_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
    finally:
        broadcaster.unsubscribe(client_id)
        logger.info("WS disconnected: %s", client_id)


async def _handle_ws_message(engine: QueueEngine, data: dict):
    msg_type = data.get("type", "") if isinstance(data, dict) else ""

    if msg_type == "sync":
        await engine.sync()

    else:
        logger.warning("Unknown WS message type: %s", msg_type)


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(engine: Optional[QueueEngine] = None, start_sync: bool = True) -> Starlette:
    if engine is None:
        engine = QueueEngine(QueueStore(), SpotifyClient(), QueueBroadcaster())

    routes = [
        Route("/health", health),
        Route("/api/search", search),
        Route("/api/queue", get_queue, methods=["GET"]),
        Route("/api/queue", add_to_queue, methods=["POST"]),
        Route("/api/queue/remove", remove_from_queue, methods=["POST"]),
        Route("/api/queue/reorder", reorder_queue, methods=["POST"]),
        Route("/api/queue/clear", clear_queue, methods=["POST"]),
        Route("/api/next", advance, methods=["POST"]),
        Route("/api/now-playing", set_now_playing, methods=["POST"]),
        Route("/api/sync", force_sync, methods=["POST"]),
        Route("/api/playlist/clear", clear_playlist, methods=["POST"]),
        Route("/api/player/play", player_play, methods=["POST"]),
        Route("/api/player/pause", player_pause, methods=["POST"]),
        Route("/api/player/next", player_next, methods=["POST"]),
        Route("/api/player/previous", player_previous, methods=["POST"]),
        Route("/api/player/play-playlist", player_play_playlist, methods=["POST"]),
        Route("/api/player/play-track", player_play_track, methods=["POST"]),
        Route("/api/player/devices", player_devices),
        Route("/api/player/transfer", player_transfer, methods=["POST"]),
        Route("/auth/login", auth_login),
        Route("/auth/callback", auth_callback),
        Route("/auth/status", auth_status),
        WebSocketRoute("/ws", websocket_endpoint),
    ]

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        ),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app):
        if start_sync:
            engine.start()
        try:
            yield
        finally:
            await engine.stop()
            logger.info("Queue engine stopped")

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.engine = engine
    app.state.broadcaster = engine.broadcaster
    return app
