"""Ports for supervisory bridges.

A bridge is an outside control channel (chat bot, dashboard) that asks the
manager for sessions and receives their lifecycle events. The manager routes
each event only to the bridge named in the session's ``Origin``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from gateway.session.state import Session


class SupervisorPort(Protocol):
    name: str

    async def pairing_ready(self, session: "Session", artifact: str) -> None: ...

    async def session_connected(self, session: "Session") -> None: ...

    async def session_disconnected(self, session: "Session", reason: int | None) -> None: ...

    async def notice(self, session: "Session", text: str) -> None: ...
