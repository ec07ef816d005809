from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from gateway.utils import parse_bool

_log = logging.getLogger("config")


@dataclass(frozen=True)
class BackoffConfig:
    restart_delay_s: float = 2.0
    base_s: float = 2.0
    step_s: float = 2.0
    cap_s: float = 30.0
    # Consecutive failed recreations before a session is given up.
    max_attempts: int = 10


@dataclass(frozen=True)
class GatewayConfig:
    sessions_dir: Path
    host: str
    port: int
    transport: str
    telegram_token: str
    telegram_allowed_chats: frozenset[int]
    owner_number: str
    owner_name: str
    bot_name: str
    backoff: BackoffConfig
    ghost_interval_s: float
    restore_sessions: bool
    logout_on_shutdown: bool
    log_level: str


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        _log.warning("Invalid %s=%r; using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        _log.warning("Invalid %s=%r; using %s", name, raw, default)
        return default


def _parse_chat_ids(raw: str) -> frozenset[int]:
    out: set[int] = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.add(int(part))
        except ValueError:
            _log.warning("Ignoring invalid Telegram chat id %r", part)
    return frozenset(out)


def get_gateway_config() -> GatewayConfig:
    """Read gateway configuration from the environment (call load_env() first)."""
    default_dir = Path.cwd() / "sessions"
    sessions_dir = Path(os.getenv("GATEWAY_SESSIONS_DIR", str(default_dir))).expanduser()

    backoff = BackoffConfig(
        restart_delay_s=_env_float("GATEWAY_RESTART_DELAY_S", 2.0),
        base_s=_env_float("GATEWAY_BACKOFF_BASE_S", 2.0),
        step_s=_env_float("GATEWAY_BACKOFF_STEP_S", 2.0),
        cap_s=_env_float("GATEWAY_BACKOFF_CAP_S", 30.0),
        max_attempts=_env_int("GATEWAY_MAX_RECREATE_FAILURES", 10),
    )

    return GatewayConfig(
        sessions_dir=sessions_dir,
        host=(os.getenv("GATEWAY_HOST") or "0.0.0.0").strip() or "0.0.0.0",
        port=_env_int("PORT", 3000),
        transport=(os.getenv("GATEWAY_TRANSPORT") or "loopback").strip() or "loopback",
        telegram_token=(os.getenv("TELEGRAM_TOKEN") or "").strip(),
        telegram_allowed_chats=_parse_chat_ids(
            os.getenv("GATEWAY_TELEGRAM_ALLOWED_CHATS", "")
        ),
        owner_number="".join(
            ch for ch in os.getenv("GATEWAY_OWNER_NUMBER", "") if ch.isdigit()
        ),
        owner_name=(os.getenv("GATEWAY_OWNER_NAME") or "Owner").strip() or "Owner",
        bot_name=(os.getenv("GATEWAY_BOT_NAME") or "Gateway").strip() or "Gateway",
        backoff=backoff,
        ghost_interval_s=max(0.1, _env_float("GATEWAY_GHOST_INTERVAL_S", 1.0)),
        restore_sessions=parse_bool(os.getenv("GATEWAY_RESTORE_SESSIONS"), default=True),
        logout_on_shutdown=parse_bool(
            os.getenv("GATEWAY_LOGOUT_ON_SHUTDOWN"), default=True
        ),
        log_level=(os.getenv("GATEWAY_LOG_LEVEL") or "INFO").strip().upper() or "INFO",
    )
