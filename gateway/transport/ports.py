"""Ports (interfaces) for transport implementations.

The manager, session handlers and commands depend on these contracts, never on
a concrete messaging library. A transport wraps one authenticated socket per
session and reports everything that happens on it through an ``EventSink``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Awaitable, Callable, Protocol

from gateway.credentials import CredentialState
from gateway.utils import bare_jid


class DisconnectReason(IntEnum):
    """Close status codes reported with a ``close`` connection update."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    TIMED_OUT = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


@dataclass(frozen=True)
class MessageKey:
    remote_jid: str
    id: str
    from_me: bool = False
    participant: str | None = None


@dataclass(frozen=True)
class Participant:
    id: str
    role: str | None = None  # None | "admin" | "superadmin"

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "superadmin")


@dataclass(frozen=True)
class GroupMetadata:
    id: str
    subject: str = ""
    participants: tuple[Participant, ...] = ()
    invite_code: str | None = None

    def participant(self, jid: str) -> Participant | None:
        """Look up a member by address, ignoring any device suffix."""
        want = bare_jid(jid)
        for p in self.participants:
            if bare_jid(p.id) == want:
                return p
        return None


# -----------------
# Outbound content
# -----------------


@dataclass(frozen=True)
class TextContent:
    text: str
    mentions: tuple[str, ...] = ()
    quoted: MessageKey | None = None


@dataclass(frozen=True)
class ContactContent:
    display_name: str
    vcard: str


OutboundContent = TextContent | ContactContent


# -----------------
# Event boundary
# -----------------


@dataclass(frozen=True)
class CredsUpdated:
    state: CredentialState


@dataclass(frozen=True)
class ConnectionUpdate:
    state: str  # connecting|pairing|open|close
    pairing: str | None = None
    reason: int | None = None


@dataclass(frozen=True)
class MessagesUpsert:
    messages: list[dict[str, Any]] = field(default_factory=list)
    kind: str = "notify"


@dataclass(frozen=True)
class GroupParticipantsUpdate:
    group_id: str
    participants: tuple[str, ...] = ()
    action: str = "add"  # add|remove|promote|demote


TransportEvent = CredsUpdated | ConnectionUpdate | MessagesUpsert | GroupParticipantsUpdate

EventSink = Callable[[TransportEvent], Awaitable[None]]


class Connection(Protocol):
    """One live socket for one session."""

    @property
    def user_id(self) -> str | None: ...

    async def send(self, conversation_id: str, content: OutboundContent) -> MessageKey: ...

    async def query_group_metadata(self, conversation_id: str) -> GroupMetadata: ...

    async def update_group_participants(
        self, conversation_id: str, ids: list[str], action: str
    ) -> None: ...

    async def group_invite_code(self, conversation_id: str) -> str | None: ...

    async def delete_message(self, key: MessageKey) -> None: ...

    async def logout(self) -> None: ...

    async def close(self) -> None: ...


class TransportFactory(Protocol):
    """Builds connections from stored credentials.

    ``open`` must return promptly; connection progress is reported through
    ``events`` (pairing artifact, open, close with a reason code).
    """

    async def open(
        self,
        credentials: CredentialState,
        *,
        events: EventSink,
        log: logging.Logger,
    ) -> Connection: ...
