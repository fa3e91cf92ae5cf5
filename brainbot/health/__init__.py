"""Bot health monitoring."""

from brainbot.health.monitor import HealthMonitor, RecoveryError

__all__ = ["HealthMonitor", "RecoveryError"]
