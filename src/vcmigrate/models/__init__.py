"""
vcmigrate Data Models

Shared dataclasses and data structures to avoid circular dependencies.

Philosophy:
- Zero dependencies on other vcmigrate modules (besides the shell dialect)
- Self-contained data definitions
- Shared types used across multiple modules
"""

from .inventory import InventorySnapshot, InventoryStatistics
from .session_models import HealthState, ProcessHealthInfo, ShellSession

__all__ = [
    "HealthState",
    "InventorySnapshot",
    "InventoryStatistics",
    "ProcessHealthInfo",
    "ShellSession",
]
