from gateway.lifecycle.recovery import RecoveryAction, RecoveryPlan, backoff_delay, plan_recovery
from gateway.lifecycle.sessions import create_session, stop_session

__all__ = [
    "RecoveryAction",
    "RecoveryPlan",
    "backoff_delay",
    "create_session",
    "plan_recovery",
    "stop_session",
]
