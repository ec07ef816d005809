"""In-process loopback transport.

Behaves like a real transport from the manager's point of view (pairing,
open, close with a reason code, inbound messages, group roster changes) but
never touches the network. Used for local runs and by the test suite, which
drives it through ``pair()``, ``disconnect()``, ``deliver()`` and ``roster()``.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

from gateway.credentials import CredentialState
from gateway.transport.ports import (
    ConnectionUpdate,
    CredsUpdated,
    DisconnectReason,
    EventSink,
    GroupMetadata,
    GroupParticipantsUpdate,
    MessageKey,
    MessagesUpsert,
    OutboundContent,
    Participant,
)


class LoopbackConnection:
    def __init__(
        self,
        transport: "LoopbackTransport",
        credentials: CredentialState,
        events: EventSink,
        log: logging.Logger,
    ):
        self._transport = transport
        self.credentials = credentials
        self._events = events
        self.log = log
        self._user_id: str | None = None
        self.pairing_codes: list[str] = []
        self.sent: list[tuple[str, OutboundContent]] = []
        self.deleted: list[MessageKey] = []
        self.participant_updates: list[tuple[str, list[str], str]] = []
        self.open = False
        self.closed = False
        self.logged_out = False

    @property
    def user_id(self) -> str | None:
        return self._user_id

    # -------------------------------------------------------------------------
    # Driving the connection
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        await self._events(ConnectionUpdate("connecting"))
        if self.credentials.registered:
            await self._open()
            return
        code = f"{secrets.token_urlsafe(12)},{self.credentials.creds.get('advSecretKey', '')}"
        self.pairing_codes.append(code)
        await self._events(ConnectionUpdate("pairing", pairing=code))

    async def pair(self, phone: str = "15550001111") -> None:
        """Complete pairing as if the code had been scanned by ``phone``."""
        creds = dict(self.credentials.creds)
        creds["registered"] = True
        creds["me"] = {"id": f"{phone}:1@s.whatsapp.net"}
        self.credentials = CredentialState(creds=creds, keys=dict(self.credentials.keys))
        await self._events(CredsUpdated(self.credentials))
        await self._open()

    async def _open(self) -> None:
        me = self.credentials.creds.get("me") or {}
        self._user_id = me.get("id") if isinstance(me, dict) else None
        self.open = True
        await self._events(ConnectionUpdate("open"))

    async def disconnect(self, reason: int = DisconnectReason.CONNECTION_LOST) -> None:
        self.open = False
        self.closed = True
        await self._events(ConnectionUpdate("close", reason=int(reason)))

    async def deliver(self, raw: dict[str, Any]) -> None:
        await self._events(MessagesUpsert([raw]))

    async def roster(self, group_id: str, participants: list[str], action: str = "add") -> None:
        await self._events(GroupParticipantsUpdate(group_id, tuple(participants), action))

    # -------------------------------------------------------------------------
    # Connection port
    # -------------------------------------------------------------------------

    def _check_open(self) -> None:
        if self.closed or not self.open:
            raise ConnectionError("loopback connection is not open")

    async def send(self, conversation_id: str, content: OutboundContent) -> MessageKey:
        self._check_open()
        self.sent.append((conversation_id, content))
        return MessageKey(conversation_id, secrets.token_hex(8).upper(), from_me=True)

    async def query_group_metadata(self, conversation_id: str) -> GroupMetadata:
        self._check_open()
        meta = self._transport.groups.get(conversation_id)
        if meta is None:
            raise LookupError(f"unknown group {conversation_id}")
        return meta

    async def update_group_participants(
        self, conversation_id: str, ids: list[str], action: str
    ) -> None:
        self._check_open()
        self.participant_updates.append((conversation_id, list(ids), action))

    async def group_invite_code(self, conversation_id: str) -> str | None:
        meta = await self.query_group_metadata(conversation_id)
        return meta.invite_code

    async def delete_message(self, key: MessageKey) -> None:
        self._check_open()
        self.deleted.append(key)

    async def logout(self) -> None:
        self.logged_out = True
        self.open = False
        self.closed = True

    async def close(self) -> None:
        self.open = False
        self.closed = True


class LoopbackTransport:
    """Factory for loopback connections; keeps every connection it opened."""

    def __init__(self, *, fail_open: bool = False):
        self.fail_open = fail_open
        self.groups: dict[str, GroupMetadata] = {}
        self.connections: list[LoopbackConnection] = []

    def add_group(
        self,
        group_id: str,
        subject: str = "",
        participants: dict[str, str | None] | None = None,
        invite_code: str | None = None,
    ) -> GroupMetadata:
        meta = GroupMetadata(
            id=group_id,
            subject=subject,
            participants=tuple(
                Participant(jid, role) for jid, role in (participants or {}).items()
            ),
            invite_code=invite_code,
        )
        self.groups[group_id] = meta
        return meta

    @property
    def latest(self) -> LoopbackConnection:
        return self.connections[-1]

    async def open(
        self,
        credentials: CredentialState,
        *,
        events: EventSink,
        log: logging.Logger,
    ) -> LoopbackConnection:
        if self.fail_open:
            raise ConnectionError("loopback transport refused to open")
        conn = LoopbackConnection(self, credentials, events, log)
        self.connections.append(conn)
        await conn.start()
        return conn
