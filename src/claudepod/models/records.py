from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

UTC = timezone.utc
REGISTRY_VERSION = 1
DEFAULT_LOGICAL_NAME = "main"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LockRecord(BaseModel):
    """
    What was last successfully built for a profile.

    Attributes:
        digest (str): Profile digest the image was built from.
        created_at (datetime): When the build finished.
        image_tag (str): Tag the runtime assigned to the image.
        image_id (Optional[str]): Runtime image id reported after the build.
    """

    model_config = ConfigDict(extra="ignore")

    digest: str
    created_at: datetime = Field(default_factory=_utcnow)
    image_tag: str
    image_id: Optional[str] = None


class ContainerRecord(BaseModel):
    """
    A persistent container created by `init` for one project and logical name.

    `frozen_config` is a JSON-plain snapshot of the profile taken at creation
    time. It is never refreshed from the profile file; only `reset` removes it.
    """

    model_config = ConfigDict(extra="ignore")

    logical_name: str
    identity: str
    profile_name: str
    created_at: datetime = Field(default_factory=_utcnow)
    image_tag: str
    image_id: Optional[str] = None
    config_digest: str
    frozen_config: Dict[str, Any]


class ContainerRegistry(BaseModel):
    """Per-project mapping of logical container names to their records."""

    model_config = ConfigDict(extra="ignore")

    version: int = REGISTRY_VERSION
    default: str = DEFAULT_LOGICAL_NAME
    containers: Dict[str, ContainerRecord] = Field(default_factory=dict)

    def get(self, logical_name: Optional[str] = None) -> Optional[ContainerRecord]:
        return self.containers.get(logical_name or self.default)

    def names(self) -> List[str]:
        return sorted(self.containers)
