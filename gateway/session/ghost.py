"""Ghost loop: a recurring blank send that keeps a conversation moving.

One loop per conversation, owned by the session that started it. Stopping is
idempotent; the session cancels every loop when it is torn down.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from gateway.utils import spawn_guarded


class GhostLoop:
    def __init__(
        self,
        conversation_id: str,
        *,
        send: Callable[[], Awaitable[object]],
        interval_s: float = 1.0,
        log: logging.Logger | None = None,
    ):
        self.conversation_id = conversation_id
        self._send = send
        self._interval_s = interval_s
        self._log = log or logging.getLogger("ghost")
        self._task: asyncio.Task | None = None
        self.sends = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            try:
                await self._send()
                self.sends += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                self._log.debug(
                    "Ghost send to %s failed", self.conversation_id, exc_info=True
                )
            await asyncio.sleep(self._interval_s)

    def start(self) -> None:
        if self.active:
            return
        self._task = spawn_guarded(
            self._loop(), log=self._log, context=f"ghost {self.conversation_id}"
        )

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()
