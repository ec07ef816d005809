"""Credential folders: one directory per session under a storage root.

Layout of a folder::

    auth_info3/
      creds.json        transport credentials (opaque to the gateway)
      keys/<kind>.json  transport key material, one file per kind
      meta.json         gateway-owned session record

Writes replace whole files (temp file + rename); the last write wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import secrets
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from gateway.errors import CredentialLoadError

log = logging.getLogger("credentials")

FOLDER_PREFIX = "auth_info"
CREDS_FILE = "creds.json"
KEYS_DIR = "keys"
META_FILE = "meta.json"

_SUFFIX_RE = re.compile(r"(\d+)$")


@dataclass
class CredentialState:
    """Transport credential snapshot.

    ``creds`` and ``keys`` belong to the transport; the gateway only reads
    ``creds["registered"]`` to tell a paired device from a fresh one.
    """

    creds: dict[str, Any]
    keys: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def registered(self) -> bool:
        return bool(self.creds.get("registered"))

    @classmethod
    def fresh(cls) -> "CredentialState":
        return cls(
            creds={
                "registered": False,
                "me": None,
                "advSecretKey": secrets.token_urlsafe(32),
                "registrationId": secrets.randbelow(16380) + 1,
            }
        )


PersistFn = Callable[[CredentialState], Awaitable[None]]


@dataclass
class SessionMeta:
    """Gateway-owned record stored next to the transport credentials."""

    session_id: str
    folder_name: str
    created_at: float
    connected_at: float | None = None
    owner_phone: str | None = None
    label: str | None = None
    origin: dict[str, Any] | None = None
    closed_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sessionId": self.session_id,
            "folderName": self.folder_name,
            "createdAt": self.created_at,
        }
        if self.connected_at is not None:
            data["connectedAt"] = self.connected_at
        if self.owner_phone:
            data["ownerPhone"] = self.owner_phone
        if self.label:
            data["label"] = self.label
        if self.origin:
            data["origin"] = self.origin
        if self.closed_at is not None:
            data["closedAt"] = self.closed_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, folder_name: str) -> "SessionMeta":
        origin = data.get("origin")
        return cls(
            session_id=str(data.get("sessionId") or ""),
            folder_name=str(data.get("folderName") or folder_name),
            created_at=float(data.get("createdAt") or 0.0),
            connected_at=data.get("connectedAt"),
            owner_phone=data.get("ownerPhone") or None,
            label=data.get("label") or None,
            origin=origin if isinstance(origin, dict) else None,
            closed_at=data.get("closedAt"),
        )


def folder_number(name: str) -> int:
    m = _SUFFIX_RE.search(name)
    return int(m.group(1)) if m else 0


def _write_json(path: Path, payload: object) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


class CredentialStore:
    """Allocates, loads and persists per-session credential folders."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._alloc_lock = asyncio.Lock()

    def path_for(self, folder: str) -> Path:
        return self.root / folder

    def list_folders(self) -> list[str]:
        """Credential folders under the root, oldest first."""
        names = [
            p.name
            for p in self.root.iterdir()
            if p.is_dir() and p.name.startswith(FOLDER_PREFIX)
        ]
        return sorted(names, key=lambda n: (folder_number(n), n))

    async def allocate_folder(self) -> str:
        """Reserve the next unused folder name (max numeric suffix + 1)."""
        async with self._alloc_lock:
            highest = max((folder_number(n) for n in self.list_folders()), default=0)
            name = f"{FOLDER_PREFIX}{highest + 1}"
            # Creating the directory inside the lock reserves the name.
            self.path_for(name).mkdir(parents=False, exist_ok=False)
            log.info("Allocated credential folder %s", name)
            return name

    async def load(self, folder: str) -> tuple[CredentialState, PersistFn]:
        """Read (or initialize) a folder's credentials.

        Raises CredentialLoadError when the folder is missing, unreadable or
        holds malformed JSON.
        """
        state = await asyncio.to_thread(self._load_sync, folder)

        async def persist(new_state: CredentialState) -> None:
            await asyncio.to_thread(self._write_state, folder, new_state)

        return state, persist

    def _load_sync(self, folder: str) -> CredentialState:
        path = self.path_for(folder)
        if not path.is_dir():
            raise CredentialLoadError(folder, "folder does not exist")

        creds_path = path / CREDS_FILE
        if not creds_path.exists():
            state = CredentialState.fresh()
            try:
                self._write_state(folder, state)
            except OSError as e:
                raise CredentialLoadError(folder, str(e)) from e
            return state

        try:
            creds = _read_json(creds_path)
            keys: dict[str, dict[str, Any]] = {}
            keys_dir = path / KEYS_DIR
            if keys_dir.is_dir():
                for key_file in sorted(keys_dir.glob("*.json")):
                    payload = _read_json(key_file)
                    if not isinstance(payload, dict):
                        raise ValueError(f"{key_file.name} is not an object")
                    keys[key_file.stem] = payload
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise CredentialLoadError(folder, str(e)) from e

        if not isinstance(creds, dict):
            raise CredentialLoadError(folder, f"{CREDS_FILE} is not an object")
        return CredentialState(creds=creds, keys=keys)

    def _write_state(self, folder: str, state: CredentialState) -> None:
        path = self.path_for(folder)
        path.mkdir(parents=True, exist_ok=True)
        _write_json(path / CREDS_FILE, state.creds)
        if state.keys:
            keys_dir = path / KEYS_DIR
            keys_dir.mkdir(exist_ok=True)
            for kind, payload in state.keys.items():
                _write_json(keys_dir / f"{kind}.json", payload)

    async def read_meta(self, folder: str) -> SessionMeta | None:
        path = self.path_for(folder) / META_FILE
        if not path.exists():
            return None
        try:
            data = await asyncio.to_thread(_read_json, path)
        except (OSError, UnicodeDecodeError, ValueError):
            log.warning("Unreadable %s in %s", META_FILE, folder, exc_info=True)
            return None
        if not isinstance(data, dict):
            return None
        return SessionMeta.from_dict(data, folder_name=folder)

    async def write_meta(self, meta: SessionMeta) -> None:
        path = self.path_for(meta.folder_name)
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(_write_json, path / META_FILE, meta.to_dict())

    async def purge(self, folder: str) -> None:
        """Delete a credential folder and everything in it."""
        path = self.path_for(folder)
        if not path.exists():
            return
        await asyncio.to_thread(shutil.rmtree, path, True)
        log.info("Removed credential folder %s", folder)


