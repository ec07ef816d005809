from __future__ import annotations

from .store import (
    CredentialState,
    CredentialStore,
    PersistFn,
    SessionMeta,
    folder_number,
)

__all__ = [
    "CredentialState",
    "CredentialStore",
    "PersistFn",
    "SessionMeta",
    "folder_number",
]
