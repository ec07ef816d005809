"""Process-wide session registry.

Only the session manager inserts and removes entries. Command handlers and
bridges read it. Every mutation is a single dict operation on the event loop
thread, so no lock is needed.
"""

from __future__ import annotations

from typing import Iterator

from gateway.errors import DuplicateSession
from gateway.session.state import Session


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def insert(self, session: Session) -> None:
        if session.session_id in self._sessions:
            raise DuplicateSession(session.session_id)
        self._sessions[session.session_id] = session

    def remove(self, session_id: str) -> Session | None:
        return self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def by_folder(self, folder_name: str) -> Session | None:
        for session in self._sessions.values():
            if session.folder_name == folder_name:
                return session
        return None

    def list(self) -> list[Session]:
        return list(self._sessions.values())
