"""
The `models` module defines the profile schema and the persisted records
(lock records, per-project container registries) used by claudepod.
"""

from __future__ import annotations

from claudepod.models.profile import (
    CommandDefinition,
    CommandTable,
    Profile,
)
from claudepod.models.records import (
    ContainerRecord,
    ContainerRegistry,
    LockRecord,
)

__all__ = [
    "CommandDefinition",
    "CommandTable",
    "ContainerRecord",
    "ContainerRegistry",
    "LockRecord",
    "Profile",
]
