"""Session entity and its lifecycle state machine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from gateway.errors import InvalidTransition
from gateway.session.ghost import GhostLoop
from gateway.transport.ports import Connection


class LifecycleState(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.INITIALIZING: frozenset(
        {
            LifecycleState.AWAITING_PAIRING,
            LifecycleState.CONNECTED,
            LifecycleState.RECONNECTING,
            LifecycleState.TERMINATED,
        }
    ),
    # Pairing codes rotate while waiting, hence the self-loop.
    LifecycleState.AWAITING_PAIRING: frozenset(
        {
            LifecycleState.AWAITING_PAIRING,
            LifecycleState.CONNECTED,
            LifecycleState.RECONNECTING,
            LifecycleState.TERMINATED,
        }
    ),
    LifecycleState.CONNECTED: frozenset(
        {LifecycleState.RECONNECTING, LifecycleState.TERMINATED}
    ),
    LifecycleState.RECONNECTING: frozenset({LifecycleState.TERMINATED}),
    LifecycleState.TERMINATED: frozenset(),
}


class LinkMode(str, Enum):
    OFF = "off"
    EXCEPT_ADMINS = "exceptAdmins"
    ALL = "all"


class ReplyMode(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class Origin:
    """The supervisory bridge (and its chat/client) that asked for a session."""

    bridge: str
    target: str

    def to_dict(self) -> dict[str, str]:
        return {"bridge": self.bridge, "target": self.target}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Origin | None":
        if not data or not data.get("bridge"):
            return None
        return cls(bridge=str(data["bridge"]), target=str(data.get("target") or ""))


@dataclass
class ConversationFlags:
    link_mode: LinkMode = LinkMode.OFF
    welcome: bool = False
    banned: bool = False
    ghost: GhostLoop | None = None

    @property
    def ghost_active(self) -> bool:
        return self.ghost is not None and self.ghost.active


@dataclass(eq=False)
class Session:
    """One linked device and its connection lifecycle.

    ``moderation`` is shared with the sessions that replace this one after a
    reconnect; ghost loops are not, they die with the session.
    """

    session_id: str
    folder_name: str
    label: str
    origin: Origin | None = None
    connection: Connection | None = None
    owner_identity: str | None = None
    moderation: dict[str, ConversationFlags] = field(default_factory=dict)
    reply_mode: ReplyMode = ReplyMode.PUBLIC
    state: LifecycleState = LifecycleState.INITIALIZING
    restart_attempt: int = 0
    created_at: float = field(default_factory=time.time)
    pairing_artifact: str | None = None
    log: logging.Logger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.log = logging.getLogger(f"session.{self.folder_name}")

    @property
    def terminated(self) -> bool:
        return self.state is LifecycleState.TERMINATED

    def transition(self, target: LifecycleState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(self.session_id, self.state.value, target.value)
        if target is not self.state:
            self.log.info("%s -> %s", self.state.value, target.value)
        self.state = target

    def flags(self, conversation_id: str) -> ConversationFlags:
        flags = self.moderation.get(conversation_id)
        if flags is None:
            flags = ConversationFlags()
            self.moderation[conversation_id] = flags
        return flags

    def toggle_ghost(
        self,
        conversation_id: str,
        *,
        send: Callable[[], Awaitable[object]],
        interval_s: float,
    ) -> bool:
        """Start the conversation's ghost loop, or stop it if running.

        Returns True when the loop is now active.
        """
        flags = self.flags(conversation_id)
        if flags.ghost_active:
            assert flags.ghost is not None
            flags.ghost.stop()
            flags.ghost = None
            return False
        loop = GhostLoop(conversation_id, send=send, interval_s=interval_s, log=self.log)
        flags.ghost = loop
        loop.start()
        return True

    def cancel_background(self) -> int:
        """Cancel every recurring task this session owns."""
        cancelled = 0
        for flags in self.moderation.values():
            if flags.ghost is not None:
                if flags.ghost.active:
                    cancelled += 1
                flags.ghost.stop()
                flags.ghost = None
        return cancelled

    def summary(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "folderName": self.folder_name,
            "state": self.state.value,
            "label": self.label,
            "owner": self.owner_identity,
        }
