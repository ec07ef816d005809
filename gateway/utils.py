"""
Shared utilities for gateway components.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine

_log = logging.getLogger("utils")

USER_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"
STATUS_BROADCAST = "status@broadcast"


def parse_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


# =============================================================================
# Environment Loading
# =============================================================================


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces."""
    if env_path is None:
        env_path = Path(__file__).parent.parent / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ[key.strip()] = val


# =============================================================================
# Addresses
# =============================================================================


def bare_jid(jid: str | None) -> str:
    """Strip the device part (``123:4@s.whatsapp.net`` -> ``123@s.whatsapp.net``)."""
    if not jid:
        return ""
    user, _, server = jid.partition("@")
    user = user.split(":", 1)[0]
    return f"{user}@{server}" if server else user


def number_from_jid(jid: str | None) -> str:
    if not jid:
        return ""
    return bare_jid(jid).split("@", 1)[0]


def user_jid(number: str) -> str | None:
    """Turn a typed phone number (``+509 3549-2574``) into a user address."""
    digits = re.sub(r"[^0-9]", "", number or "")
    if not digits:
        return None
    return f"{digits}{USER_SUFFIX}"


def is_group_jid(jid: str | None) -> bool:
    return bool(jid) and jid.endswith(GROUP_SUFFIX)


# =============================================================================
# Error boundaries
# =============================================================================


async def guard(
    coro: Awaitable[Any],
    *,
    log: logging.Logger | None = None,
    context: str | None = None,
    on_error: Callable[[BaseException], Awaitable[None]] | None = None,
) -> Any:
    """Run a coroutine with a single error boundary.

    - Lets internal code raise normally.
    - Catches at the boundary, logs, and hands the error to ``on_error``.
    """

    try:
        return await coro
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        log = log or _log
        if context:
            log.exception("Unhandled error (%s)", context)
        else:
            log.exception("Unhandled error")
        if on_error is not None:
            try:
                await on_error(exc)
            except Exception:
                log.warning("Error callback failed (%s)", context, exc_info=True)
        return None


def spawn_guarded(
    coro: Coroutine[Any, Any, Any],
    *,
    log: logging.Logger | None = None,
    context: str | None = None,
    on_error: Callable[[BaseException], Awaitable[None]] | None = None,
) -> asyncio.Task:
    """Create a task whose failures are logged instead of lost."""

    return asyncio.create_task(
        guard(coro, log=log, context=context, on_error=on_error)
    )


def format_exception_for_user(exc: BaseException) -> str:
    msg = str(exc).strip()
    if msg:
        return f"Error: {type(exc).__name__}: {msg}"
    return f"Error: {type(exc).__name__}"
