"""Web dashboard bridge: health check, session listing and a websocket channel.

Exposes:
  GET /health        -> "OK"
  GET /api/sessions  -> JSON list of sessions
  GET /ws            -> websocket; clients send {"type": ...} requests and
                        only see, stop and get frames for sessions they started
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING, Any

from aiohttp import WSMsgType, web

from gateway.bridges.pairing import qr_data_url
from gateway.errors import GatewayError
from gateway.session.state import Origin, Session

if TYPE_CHECKING:
    from gateway.manager import SessionManager

log = logging.getLogger("bridges.dashboard")


class DashboardBridge:
    name = "dashboard"

    def __init__(self, manager: "SessionManager"):
        self.manager = manager
        self.clients: dict[str, web.WebSocketResponse] = {}
        self.runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health)
        app.router.add_get("/api/sessions", self._sessions)
        app.router.add_get("/ws", self._ws)
        return app

    async def start(self, host: str, port: int) -> web.AppRunner:
        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, host=host, port=port)
        await site.start()
        self.runner = runner
        log.info("Dashboard listening on http://%s:%d", host, port)
        return runner

    async def stop(self) -> None:
        for ws in list(self.clients.values()):
            await ws.close()
        self.clients.clear()
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    async def _health(self, _request: web.Request) -> web.Response:
        return web.Response(text="OK")

    async def _sessions(self, _request: web.Request) -> web.Response:
        return web.json_response(self.manager.list_sessions())

    async def _ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)
        client_id = uuid.uuid4().hex
        self.clients[client_id] = ws
        log.info("Dashboard client connected: %s", client_id)
        try:
            await self._send_list(client_id, ws)
            async for message in ws:
                if message.type == WSMsgType.TEXT:
                    await self._on_frame(client_id, ws, message.data)
                elif message.type == WSMsgType.ERROR:
                    log.warning("Websocket error: %s", ws.exception())
        finally:
            self.clients.pop(client_id, None)
            log.info("Dashboard client disconnected: %s", client_id)
        return ws

    async def _on_frame(self, client_id: str, ws: web.WebSocketResponse, data: str) -> None:
        try:
            frame = json.loads(data)
        except ValueError:
            await ws.send_json({"type": "error", "message": "Invalid JSON"})
            return
        if not isinstance(frame, dict):
            await ws.send_json({"type": "error", "message": "Expected an object"})
            return

        kind = frame.get("type")
        if kind == "start_session":
            label = frame.get("label")
            try:
                session = await self.manager.create_session(
                    origin=Origin(self.name, client_id),
                    label=str(label) if label else None,
                )
            except GatewayError as e:
                log.error("Session creation failed: %s", e)
                await ws.send_json(
                    {"type": "error", "message": "Failed to start session", "detail": str(e)}
                )
                return
            await ws.send_json(
                {
                    "type": "session_started",
                    "sessionId": session.session_id,
                    "folderName": session.folder_name,
                }
            )
        elif kind == "stop_session":
            ref = str(frame.get("sessionId") or frame.get("folderName") or "")
            stopped = False
            if ref:
                stopped = await self.manager.stop_session(
                    ref, purge=True, requester=Origin(self.name, client_id)
                )
            if not stopped:
                await ws.send_json({"type": "error", "message": f"No session {ref!r}"})
            await self._send_list(client_id, ws)
        elif kind == "list_sessions":
            await self._send_list(client_id, ws)
        else:
            await ws.send_json({"type": "error", "message": f"Unknown request {kind!r}"})

    async def _send_list(self, client_id: str, ws: web.WebSocketResponse) -> None:
        sessions = self.manager.list_sessions(origin=Origin(self.name, client_id))
        await ws.send_json({"type": "sessions_list", "sessions": sessions})

    # -------------------------------------------------------------------------
    # Manager events
    # -------------------------------------------------------------------------

    async def _push(self, session: Session, frame: dict[str, Any]) -> None:
        ws = self.clients.get(session.origin.target) if session.origin else None
        if ws is None or ws.closed:
            log.debug("Client for %s is gone; dropping %s", session.folder_name, frame["type"])
            return
        await ws.send_json(frame)

    async def pairing_ready(self, session: Session, artifact: str) -> None:
        await self._push(
            session,
            {
                "type": "qr",
                "sessionId": session.session_id,
                "folderName": session.folder_name,
                "qr": artifact,
                "qrDataUrl": qr_data_url(artifact),
            },
        )

    async def session_connected(self, session: Session) -> None:
        await self._push(
            session,
            {
                "type": "connected",
                "sessionId": session.session_id,
                "folderName": session.folder_name,
                "owner": session.owner_identity,
            },
        )

    async def session_disconnected(self, session: Session, reason: int | None) -> None:
        await self._push(
            session,
            {
                "type": "disconnected",
                "sessionId": session.session_id,
                "folderName": session.folder_name,
                "reason": reason,
            },
        )

    async def notice(self, session: Session, text: str) -> None:
        await self._push(
            session, {"type": "notice", "sessionId": session.session_id, "text": text}
        )
