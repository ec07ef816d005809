from gateway.bridges.dashboard import DashboardBridge
from gateway.bridges.ports import SupervisorPort

__all__ = ["DashboardBridge", "SupervisorPort"]
