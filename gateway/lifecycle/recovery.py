"""Disconnect classification and reconnect backoff."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from gateway.config import BackoffConfig
from gateway.transport.ports import DisconnectReason


class RecoveryAction(str, Enum):
    TERMINATE = "terminate"  # credentials are dead; never recreate
    RESTART = "restart"  # transport asked for a renegotiation
    RECONNECT = "reconnect"  # transient failure; recreate with backoff
    ABANDON = "abandon"  # recreation kept failing


TERMINAL_REASONS = frozenset({DisconnectReason.LOGGED_OUT})


@dataclass(frozen=True)
class RecoveryPlan:
    action: RecoveryAction
    delay_s: float = 0.0
    next_attempt: int = 0


def classify(reason: int | None) -> RecoveryAction:
    if reason in TERMINAL_REASONS:
        return RecoveryAction.TERMINATE
    if reason == DisconnectReason.RESTART_REQUIRED:
        return RecoveryAction.RESTART
    return RecoveryAction.RECONNECT


def backoff_delay(attempt: int, cfg: BackoffConfig) -> float:
    """min(cap, base + attempt * step); never decreases as attempt grows."""
    attempt = max(0, attempt)
    return max(0.0, min(cfg.cap_s, cfg.base_s + attempt * max(0.0, cfg.step_s)))


def plan_recovery(reason: int | None, attempt: int, cfg: BackoffConfig) -> RecoveryPlan:
    """Decide what happens after a close with ``reason``.

    ``attempt`` is the session's consecutive reconnect count. Restarts do not
    consume an attempt. A close never abandons the session: transient drops
    keep retrying at the capped backoff until one reaches Connected.
    """
    action = classify(reason)
    if action is RecoveryAction.TERMINATE:
        return RecoveryPlan(action, 0.0, attempt)
    if action is RecoveryAction.RESTART:
        return RecoveryPlan(action, max(0.0, cfg.restart_delay_s), attempt)
    return RecoveryPlan(action, backoff_delay(attempt, cfg), attempt + 1)


def plan_retry(attempt: int, failures: int, cfg: BackoffConfig) -> RecoveryPlan:
    """Plan the next try after a recreation itself failed ``failures`` times.

    ``max_attempts <= 0`` means keep trying forever.
    """
    if cfg.max_attempts > 0 and failures >= cfg.max_attempts:
        return RecoveryPlan(RecoveryAction.ABANDON, 0.0, attempt)
    return RecoveryPlan(RecoveryAction.RECONNECT, backoff_delay(attempt, cfg), attempt + 1)
