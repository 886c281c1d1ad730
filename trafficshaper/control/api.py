"""aiohttp control surface for the run supervisor.

Exposes the routes the existing web client uses:

=============  ==================  =====================================
Method         Path                Operation
=============  ==================  =====================================
GET            ``/api/config``     Last applied configuration
POST           ``/api/config``     Merge and store a configuration
POST           ``/api/start``      Start a run (optional config body)
POST           ``/api/stop``       Stop the run (idempotent)
GET            ``/api/status``     ``{isRunning, state, config, metrics}``
GET            ``/ws``             Telemetry stream + config updates
=============  ==================  =====================================

Supervisor calls are short and lock-bounded, so handlers call them inline.
Each WebSocket drains its ``Subscription`` on the event loop, woken through
``call_soon_threadsafe``, so a slow client never touches the emission thread
and no executor thread is held per subscriber.  Open sockets are closed with
``GOING_AWAY`` on shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import weakref
from typing import Any

from aiohttp import WSCloseCode, WSMsgType, web

from ..core.config import RunConfiguration
from ..core.exceptions import (
    ConfigurationError,
    ConflictError,
    InternalSchedulingFault,
    TrafficShaperError,
)
from .supervisor import RunSupervisor

logger = logging.getLogger(__name__)

SUPERVISOR_KEY: web.AppKey[RunSupervisor] = web.AppKey("supervisor", RunSupervisor)
WEBSOCKETS_KEY: web.AppKey[weakref.WeakSet[web.WebSocketResponse]] = web.AppKey(
    "websockets", weakref.WeakSet
)

_STATUS_BY_ERROR: dict[type[TrafficShaperError], int] = {
    ConfigurationError: 400,
    ConflictError: 409,
    InternalSchedulingFault: 500,
}


def _error_response(exc: TrafficShaperError) -> web.Response:
    status = _STATUS_BY_ERROR.get(type(exc), 500)
    return web.json_response(exc.to_dict(), status=status)


async def _read_json(request: web.Request) -> dict[str, Any] | None:
    """Return the decoded JSON body, or ``None`` when the body is empty."""
    if not request.can_read_body:
        return None
    text = await request.text()
    if not text.strip():
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("Request body is not valid JSON", details={"error": str(exc)}) from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("Request body must be a JSON object")
    return payload


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def get_config(request: web.Request) -> web.Response:
    supervisor = request.app[SUPERVISOR_KEY]
    return web.json_response(supervisor.configuration.to_dict())


async def update_config(request: web.Request) -> web.Response:
    supervisor = request.app[SUPERVISOR_KEY]
    try:
        payload = await _read_json(request) or {}
        config = supervisor.update_configuration(payload)
    except TrafficShaperError as exc:
        return _error_response(exc)
    return web.json_response(config.to_dict())


async def start_run(request: web.Request) -> web.Response:
    """Start a run, optionally with a configuration merged onto the stored one."""
    supervisor = request.app[SUPERVISOR_KEY]
    try:
        payload = await _read_json(request)
        override = None
        if payload:
            override = RunConfiguration.from_dict(payload, base=supervisor.configuration)
        config = supervisor.start(override)
    except TrafficShaperError as exc:
        return _error_response(exc)
    return web.json_response({"isRunning": True, "config": config.to_dict()})


async def stop_run(request: web.Request) -> web.Response:
    supervisor = request.app[SUPERVISOR_KEY]
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, supervisor.stop)
    return web.json_response(supervisor.status().to_dict())


async def get_status(request: web.Request) -> web.Response:
    supervisor = request.app[SUPERVISOR_KEY]
    return web.json_response(supervisor.status().to_dict())


async def telemetry_stream(request: web.Request) -> web.WebSocketResponse:
    """Stream state and metrics messages; accept config updates from the client."""
    supervisor = request.app[SUPERVISOR_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    request.app[WEBSOCKETS_KEY].add(ws)

    loop = asyncio.get_running_loop()
    ready = asyncio.Event()

    def wake() -> None:
        # Called from the emission thread; the loop may already be closed.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(ready.set)

    subscription = supervisor.subscribe(on_offer=wake)
    logger.info("Telemetry subscriber connected from %s", request.remote)

    async def pump() -> None:
        while True:
            await ready.wait()
            ready.clear()
            for message in subscription.drain():
                if ws.closed:
                    return
                try:
                    await ws.send_json(message)
                except ConnectionResetError:
                    return
            if subscription.closed:
                return

    writer = asyncio.create_task(pump())
    try:
        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                continue
            try:
                payload = json.loads(msg.data)
                supervisor.update_configuration(payload)
            except json.JSONDecodeError as exc:
                await ws.send_json({"type": "error", "error": f"Invalid JSON: {exc}", "field": None})
            except TrafficShaperError as exc:
                await ws.send_json({"type": "error", **exc.to_dict()})
    finally:
        request.app[WEBSOCKETS_KEY].discard(ws)
        subscription.close()
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
        logger.info("Telemetry subscriber disconnected")
    return ws


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


async def _close_websockets(app: web.Application) -> None:
    for ws in set(app[WEBSOCKETS_KEY]):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


async def _stop_on_shutdown(app: web.Application) -> None:
    supervisor = app[SUPERVISOR_KEY]
    await asyncio.get_running_loop().run_in_executor(None, supervisor.stop)
    supervisor.broadcaster.close()


def create_app(supervisor: RunSupervisor) -> web.Application:
    """Build the aiohttp application around a supervisor."""
    app = web.Application()
    app[SUPERVISOR_KEY] = supervisor
    app[WEBSOCKETS_KEY] = weakref.WeakSet()
    app.router.add_get("/api/config", get_config)
    app.router.add_post("/api/config", update_config)
    app.router.add_post("/api/start", start_run)
    app.router.add_post("/api/stop", stop_run)
    app.router.add_get("/api/status", get_status)
    app.router.add_get("/ws", telemetry_stream)
    app.on_shutdown.append(_close_websockets)
    app.on_shutdown.append(_stop_on_shutdown)
    return app
