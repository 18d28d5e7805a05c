"""Runtime: per-instance orchestration and the supervisor."""

from hurst_trader.runtime.orchestrator import InstanceOrchestrator
from hurst_trader.runtime.supervisor import Supervisor

__all__ = ["InstanceOrchestrator", "Supervisor"]
