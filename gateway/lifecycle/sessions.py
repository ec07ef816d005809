"""Session lifecycle operations.

Goal: keep session create/stop/recreate semantics in one place so the
manager's event handlers, the bridges and shutdown don't drift.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from gateway.credentials import SessionMeta
from gateway.errors import CredentialLoadError, TransportConstructError
from gateway.lifecycle.recovery import (
    RecoveryAction,
    RecoveryPlan,
    plan_recovery,
    plan_retry,
)
from gateway.session.state import (
    ConversationFlags,
    LifecycleState,
    Origin,
    ReplyMode,
    Session,
)
from gateway.utils import spawn_guarded

if TYPE_CHECKING:
    from gateway.config import GatewayConfig
    from gateway.credentials import CredentialStore, PersistFn
    from gateway.registry import SessionRegistry
    from gateway.transport.ports import TransportFactory

_log = logging.getLogger("lifecycle.sessions")


@dataclass
class Carryover:
    """State that survives a reconnect of the same logical session."""

    origin: Origin | None = None
    label: str | None = None
    owner_identity: str | None = None
    reply_mode: ReplyMode = ReplyMode.PUBLIC
    moderation: dict[str, ConversationFlags] = field(default_factory=dict)

    @classmethod
    def from_session(cls, session: Session) -> "Carryover":
        return cls(
            origin=session.origin,
            label=session.label,
            owner_identity=session.owner_identity,
            reply_mode=session.reply_mode,
            moderation=session.moderation,
        )


@dataclass(frozen=True)
class StopRequest:
    purge: bool = False
    logout: bool = True
    requester: Origin | None = None


@dataclass
class PendingRecreation:
    """A recreation waiting on its delay; cancellable by an explicit stop.

    Once ``creating`` is set the task is not cancelled; a stop is recorded in
    ``stop`` and applied as soon as the new session is registered.
    """

    previous: Session
    plan: RecoveryPlan
    task: asyncio.Task | None = None
    failures: int = 0
    creating: bool = False
    stop: StopRequest | None = None


class _PumpLike(Protocol):
    async def put(self, event: object) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class _LifecycleManager(Protocol):
    config: "GatewayConfig"
    store: "CredentialStore"
    transport: "TransportFactory"
    registry: "SessionRegistry"
    pending: dict[str, PendingRecreation]
    shutting_down: bool

    def attach(self, session: Session, persist: "PersistFn") -> _PumpLike: ...

    def detach(self, session: Session) -> None: ...

    async def notify(self, session: Session, event: str, *args: object) -> None: ...


async def create_session(
    manager: _LifecycleManager,
    *,
    origin: Origin | None = None,
    label: str | None = None,
    folder: str | None = None,
    carry: Carryover | None = None,
    restart_attempt: int = 0,
) -> Session:
    """Create a session and open its connection.

    A fresh session gets the next credential folder; passing ``folder``
    resumes that folder. Raises CredentialLoadError or TransportConstructError;
    nothing is left registered when either is raised.
    """
    store = manager.store
    resume = folder is not None
    if folder is None:
        folder = await store.allocate_folder()

    state, persist = await store.load(folder)
    meta = await store.read_meta(folder) if resume else None

    carry = carry or Carryover()
    origin = origin or carry.origin or Origin.from_dict(meta.origin if meta else None)
    session = Session(
        session_id=uuid.uuid4().hex,
        folder_name=folder,
        label=label or carry.label or (meta.label if meta else None) or manager.config.bot_name,
        origin=origin,
        owner_identity=carry.owner_identity or (meta.owner_phone if meta else None),
        moderation=carry.moderation,
        reply_mode=carry.reply_mode,
        restart_attempt=restart_attempt,
    )

    await store.write_meta(
        SessionMeta(
            session_id=session.session_id,
            folder_name=folder,
            created_at=meta.created_at if meta else session.created_at,
            connected_at=meta.connected_at if meta else None,
            owner_phone=session.owner_identity,
            label=session.label,
            origin=origin.to_dict() if origin else None,
        )
    )

    pump = manager.attach(session, persist)
    try:
        connection = await manager.transport.open(state, events=pump.put, log=session.log)
    except asyncio.CancelledError:
        manager.detach(session)
        raise
    except Exception as e:
        manager.detach(session)
        raise TransportConstructError(f"{folder}: {e}") from e

    session.connection = connection
    manager.registry.insert(session)
    pump.start()
    _log.info(
        "Created session %s (folder=%s, resume=%s, attempt=%d)",
        session.session_id,
        folder,
        resume,
        restart_attempt,
    )
    return session


async def _release_connection(session: Session, *, logout: bool) -> None:
    conn = session.connection
    if conn is None:
        return
    if logout:
        try:
            await conn.logout()
        except Exception:
            session.log.warning("Logout failed", exc_info=True)
    try:
        await conn.close()
    except Exception:
        session.log.warning("Close failed", exc_info=True)


async def _mark_closed(manager: _LifecycleManager, session: Session) -> None:
    meta = await manager.store.read_meta(session.folder_name)
    if meta is None:
        return
    meta.closed_at = time.time()
    await manager.store.write_meta(meta)


async def stop_session(
    manager: _LifecycleManager,
    ref: str,
    *,
    purge: bool = False,
    logout: bool = True,
    requester: Origin | None = None,
) -> bool:
    """Stop a session by id or folder name.

    Order: cancel recurring tasks, log out and close, deregister. A pending
    recreation for the folder is cancelled instead. With ``requester`` set,
    only sessions that origin created are visible, and the requester is not
    sent a disconnect event for its own stop. Unknown refs are a no-op
    (returns False).
    """
    pending = _find_pending(manager, ref)
    if pending is not None:
        if requester is not None and pending.previous.origin != requester:
            return False
        folder = pending.previous.folder_name
        if pending.creating:
            # Honoured by _recreate_later once the new session exists.
            pending.stop = StopRequest(purge=purge, logout=logout, requester=requester)
            _log.info("Stop requested for %s while it is being recreated", folder)
            return True
        manager.pending.pop(folder, None)
        if pending.task and not pending.task.done():
            pending.task.cancel()
        pending.previous.cancel_background()
        if not pending.previous.terminated:
            pending.previous.transition(LifecycleState.TERMINATED)
        await _finish_stop(manager, pending.previous, purge=purge)
        _log.info("Cancelled pending recreation for %s", folder)
        return True

    session = manager.registry.get(ref) or manager.registry.by_folder(ref)
    if session is None:
        return False
    if requester is not None and session.origin != requester:
        return False

    session.cancel_background()
    manager.detach(session)
    await _release_connection(session, logout=logout)
    manager.registry.remove(session.session_id)
    if not session.terminated:
        session.transition(LifecycleState.TERMINATED)
    await _finish_stop(manager, session, purge=purge)
    _log.info("Stopped session %s (folder=%s)", session.session_id, session.folder_name)
    if requester is None:
        await manager.notify(session, "session_disconnected", None)
    return True


async def _finish_stop(manager: _LifecycleManager, session: Session, *, purge: bool) -> None:
    if purge:
        await manager.store.purge(session.folder_name)
    else:
        await _mark_closed(manager, session)


def _find_pending(manager: _LifecycleManager, ref: str) -> PendingRecreation | None:
    if ref in manager.pending:
        return manager.pending[ref]
    for pending in manager.pending.values():
        if pending.previous.session_id == ref:
            return pending
    return None


async def handle_close(manager: _LifecycleManager, session: Session, reason: int | None) -> RecoveryPlan:
    """Tear down a closed session and apply the recovery policy."""
    plan = plan_recovery(reason, session.restart_attempt, manager.config.backoff)
    if session.terminated:
        return plan
    session.log.info(
        "Connection closed (reason=%s) -> %s", reason, plan.action.value
    )

    session.cancel_background()
    manager.detach(session)
    manager.registry.remove(session.session_id)
    await _release_connection(session, logout=False)

    if manager.shutting_down or plan.action is RecoveryAction.TERMINATE:
        if not session.terminated:
            session.transition(LifecycleState.TERMINATED)
        if plan.action is RecoveryAction.TERMINATE:
            await _mark_closed(manager, session)
        return plan

    if session.terminated:
        return plan
    session.transition(LifecycleState.RECONNECTING)
    schedule_recreation(manager, session, plan)
    return plan


def schedule_recreation(
    manager: _LifecycleManager,
    previous: Session,
    plan: RecoveryPlan,
    *,
    failures: int = 0,
) -> PendingRecreation:
    """Recreate ``previous``'s folder after ``plan.delay_s`` (fire once)."""
    folder = previous.folder_name
    pending = PendingRecreation(previous=previous, plan=plan, failures=failures)
    manager.pending[folder] = pending
    _log.info(
        "Recreating %s in %.1fs (%s, attempt %d)",
        folder,
        plan.delay_s,
        plan.action.value,
        plan.next_attempt,
    )
    pending.task = spawn_guarded(
        _recreate_later(manager, pending), log=_log, context=f"recreate {folder}"
    )
    return pending


async def _recreate_later(manager: _LifecycleManager, pending: PendingRecreation) -> None:
    previous = pending.previous
    folder = previous.folder_name
    await asyncio.sleep(pending.plan.delay_s)
    if manager.pending.get(folder) is not pending or manager.shutting_down:
        return
    pending.creating = True
    if not previous.terminated:
        previous.transition(LifecycleState.TERMINATED)

    try:
        session = await create_session(
            manager,
            folder=folder,
            carry=Carryover.from_session(previous),
            restart_attempt=pending.plan.next_attempt,
        )
    except Exception as e:
        if manager.pending.get(folder) is pending:
            manager.pending.pop(folder)
        await _recreation_failed(manager, pending, e)
        return

    # The entry stays visible to stop requests until the session is registered.
    if manager.pending.get(folder) is pending:
        manager.pending.pop(folder)
    stop = pending.stop
    if stop is not None:
        await stop_session(
            manager,
            session.session_id,
            purge=stop.purge,
            logout=stop.logout,
            requester=stop.requester,
        )
        return

    await manager.notify(
        previous,
        "notice",
        f"Session {folder} restarted ({pending.plan.action.value}).",
    )


async def _recreation_failed(
    manager: _LifecycleManager, pending: PendingRecreation, error: Exception
) -> None:
    previous = pending.previous
    folder = previous.folder_name
    if pending.stop is not None:
        await _finish_stop(manager, previous, purge=pending.stop.purge)
        return

    if isinstance(error, CredentialLoadError):
        _log.error("Recreation of %s failed: %s", folder, error)
        await manager.notify(previous, "notice", f"Session {folder}: restart failed ({error}).")
        return

    _log.error("Recreation of %s failed", folder, exc_info=error)
    await manager.notify(previous, "notice", f"Session {folder}: restart failed ({error}).")
    failures = pending.failures + 1
    previous.restart_attempt = pending.plan.next_attempt
    if manager.shutting_down:
        return
    retry = plan_retry(previous.restart_attempt, failures, manager.config.backoff)
    if retry.action is RecoveryAction.RECONNECT:
        schedule_recreation(manager, previous, retry, failures=failures)
        return
    _log.warning("Giving up on %s after %d failed restarts", folder, failures)
    await manager.notify(
        previous,
        "notice",
        f"Session {folder}: giving up after {failures} failed restarts.",
    )
