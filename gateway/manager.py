"""Session manager - owns every session, its event pump and the registry."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from gateway.config import GatewayConfig
from gateway.credentials import CredentialStore, PersistFn, SessionMeta
from gateway.errors import CredentialLoadError, TransportConstructError
from gateway.lifecycle.sessions import PendingRecreation, handle_close
from gateway.lifecycle.sessions import create_session as lifecycle_create_session
from gateway.lifecycle.sessions import stop_session as lifecycle_stop_session
from gateway.registry import SessionRegistry
from gateway.session.handler import SessionHandler
from gateway.session.state import LifecycleState, Origin, Session
from gateway.transport.ports import (
    ConnectionUpdate,
    CredsUpdated,
    GroupParticipantsUpdate,
    MessagesUpsert,
    TransportEvent,
    TransportFactory,
)
from gateway.bridges.ports import SupervisorPort
from gateway.utils import format_exception_for_user, guard, number_from_jid

log = logging.getLogger("manager")


class _EventPump:
    """Per-session event queue with a single consumer.

    One consumer means a session's events are handled in emission order;
    pumps of different sessions interleave freely.
    """

    def __init__(
        self,
        session: Session,
        handle: Callable[[TransportEvent], Awaitable[None]],
        *,
        on_error: Callable[[BaseException], Awaitable[None]] | None = None,
    ):
        self.session = session
        self._handle = handle
        self._on_error = on_error
        self._queue: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self.closed = False

    async def put(self, event: TransportEvent) -> None:
        if self.closed:
            return
        self._queue.put_nowait(event)

    def start(self) -> None:
        if self._task is None and not self.closed:
            self._task = asyncio.create_task(
                self._run(), name=f"pump-{self.session.folder_name}"
            )

    async def _run(self) -> None:
        while not self.closed:
            event = await self._queue.get()
            await guard(
                self._handle(event),
                log=self.session.log,
                context=type(event).__name__,
                on_error=self._on_error,
            )

    def stop(self) -> None:
        self.closed = True
        task = self._task
        self._task = None
        # The close handler stops its own pump; it exits after that event.
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()


class SessionManager:
    """Creates, tracks, recovers and stops sessions."""

    def __init__(
        self,
        config: GatewayConfig,
        store: CredentialStore,
        transport: TransportFactory,
    ):
        self.config = config
        self.store = store
        self.transport = transport
        self.registry = SessionRegistry()
        self.pending: dict[str, PendingRecreation] = {}
        self.bridges: dict[str, SupervisorPort] = {}
        self.shutting_down = False
        self._pumps: dict[str, _EventPump] = {}

    # -------------------------------------------------------------------------
    # Bridges
    # -------------------------------------------------------------------------

    def add_bridge(self, bridge: SupervisorPort) -> None:
        self.bridges[bridge.name] = bridge
        log.info("Registered bridge: %s", bridge.name)

    async def notify(self, session: Session, event: str, *args: Any) -> None:
        """Forward a lifecycle event to the session's origin bridge, if any."""
        origin = session.origin
        bridge = self.bridges.get(origin.bridge) if origin else None
        if bridge is None:
            log.debug("No bridge for %s; dropping %s", session.folder_name, event)
            return
        await guard(
            getattr(bridge, event)(session, *args),
            log=log,
            context=f"{bridge.name}.{event}",
        )

    # -------------------------------------------------------------------------
    # Event pumps
    # -------------------------------------------------------------------------

    def attach(self, session: Session, persist: PersistFn) -> _EventPump:
        handler = SessionHandler(session, self.config)

        async def handle(event: TransportEvent) -> None:
            await self._on_event(session, handler, persist, event)

        async def report(exc: BaseException) -> None:
            await self.notify(
                session,
                "notice",
                f"Session {session.folder_name}: {format_exception_for_user(exc)}",
            )

        pump = _EventPump(session, handle, on_error=report)
        self._pumps[session.session_id] = pump
        return pump

    def detach(self, session: Session) -> None:
        pump = self._pumps.pop(session.session_id, None)
        if pump is not None:
            pump.stop()

    async def _on_event(
        self,
        session: Session,
        handler: SessionHandler,
        persist: PersistFn,
        event: TransportEvent,
    ) -> None:
        if isinstance(event, CredsUpdated):
            await persist(event.state)
        elif isinstance(event, ConnectionUpdate):
            await self._on_connection(session, event)
        elif isinstance(event, MessagesUpsert):
            if event.kind != "notify":
                return
            for raw in event.messages:
                if session.terminated or session.session_id not in self.registry:
                    return
                await guard(
                    handler.handle_message(raw),
                    log=session.log,
                    context="message",
                )
        elif isinstance(event, GroupParticipantsUpdate):
            await handler.handle_participants(event)

    async def _on_connection(self, session: Session, update: ConnectionUpdate) -> None:
        if update.state == "pairing":
            if not update.pairing:
                return
            session.pairing_artifact = update.pairing
            session.transition(LifecycleState.AWAITING_PAIRING)
            session.log.info("Pairing code ready")
            await self.notify(session, "pairing_ready", update.pairing)

        elif update.state == "open":
            session.pairing_artifact = None
            session.transition(LifecycleState.CONNECTED)
            conn = session.connection
            if not session.owner_identity and conn is not None:
                session.owner_identity = number_from_jid(conn.user_id) or None
            session.restart_attempt = 0
            await self._record_connected(session)
            session.log.info("Connected as %s", session.owner_identity or "?")
            await self.notify(session, "session_connected")

        elif update.state == "close":
            await self.notify(session, "session_disconnected", update.reason)
            await handle_close(self, session, update.reason)

        else:
            session.log.debug("Connection state: %s", update.state)

    async def _record_connected(self, session: Session) -> None:
        meta = await self.store.read_meta(session.folder_name)
        if meta is None:
            meta = SessionMeta(
                session_id=session.session_id,
                folder_name=session.folder_name,
                created_at=session.created_at,
                label=session.label,
                origin=session.origin.to_dict() if session.origin else None,
            )
        meta.session_id = session.session_id
        meta.connected_at = time.time()
        meta.owner_phone = session.owner_identity
        meta.closed_at = None
        await self.store.write_meta(meta)

    # -------------------------------------------------------------------------
    # Public surface (bridges call these)
    # -------------------------------------------------------------------------

    async def create_session(
        self, *, origin: Origin | None = None, label: str | None = None
    ) -> Session:
        """Create a fresh session in the next credential folder."""
        return await lifecycle_create_session(self, origin=origin, label=label)

    async def stop_session(
        self, ref: str, *, purge: bool = False, requester: Origin | None = None
    ) -> bool:
        """Stop a session by id or folder name; unknown refs are a no-op.

        A ``requester`` can only stop sessions it created.
        """
        return await lifecycle_stop_session(self, ref, purge=purge, requester=requester)

    def find(self, ref: str) -> Session | None:
        session = self.registry.get(ref) or self.registry.by_folder(ref)
        if session is not None:
            return session
        pending = self.pending.get(ref)
        if pending is not None:
            return pending.previous
        for pending in self.pending.values():
            if pending.previous.session_id == ref:
                return pending.previous
        return None

    def list_sessions(self, origin: Origin | None = None) -> list[dict[str, Any]]:
        """Summaries of live and reconnecting sessions, optionally for one origin."""
        out = [s.summary() for s in self.registry if origin is None or s.origin == origin]
        for pending in self.pending.values():
            if origin is not None and pending.previous.origin != origin:
                continue
            row = pending.previous.summary()
            row["state"] = LifecycleState.RECONNECTING.value
            out.append(row)
        return out

    async def restore_sessions(self) -> int:
        """Resume every stored, paired, not-closed credential folder."""
        restored = 0
        for folder in self.store.list_folders():
            if self.registry.by_folder(folder) or folder in self.pending:
                continue
            meta = await self.store.read_meta(folder)
            if meta is not None and meta.closed_at is not None:
                continue
            try:
                state, _ = await self.store.load(folder)
            except CredentialLoadError as e:
                log.warning("Skipping %s: %s", folder, e)
                continue
            if not state.registered:
                continue
            try:
                await lifecycle_create_session(self, folder=folder)
            except (CredentialLoadError, TransportConstructError) as e:
                log.error("Failed to resume %s: %s", folder, e)
                continue
            restored += 1
        log.info("Resumed %d stored session(s)", restored)
        return restored

    async def shutdown(self) -> None:
        """Cancel pending recreations, then log out and close every session."""
        self.shutting_down = True
        for folder, pending in list(self.pending.items()):
            self.pending.pop(folder, None)
            if pending.task and not pending.task.done():
                pending.task.cancel()

        sessions = self.registry.list()
        for session in sessions:
            session.cancel_background()
            self.detach(session)
            conn = session.connection
            if conn is not None:
                if self.config.logout_on_shutdown:
                    await guard(conn.logout(), log=session.log, context="logout")
                await guard(conn.close(), log=session.log, context="close")
            self.registry.remove(session.session_id)
            if not session.terminated:
                session.transition(LifecycleState.TERMINATED)
            if self.config.logout_on_shutdown:
                meta = await self.store.read_meta(session.folder_name)
                if meta is not None:
                    meta.closed_at = time.time()
                    await self.store.write_meta(meta)
        log.info("Shut down %d session(s)", len(sessions))
