"""
claudepod/core/registry.py

Per-project container registry.

A project is a directory holding a ``.claudepod.json`` marker. The registry
inside it maps logical container names to `ContainerRecord` objects, each of
which carries a frozen snapshot of the profile the container was created from.
Records are only ever added by `register` and removed by `unregister`; nothing
else in claudepod rewrites them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from claudepod.core.atomic import atomic_write_text
from claudepod.core.canonical import digest as profile_digest
from claudepod.core.identity import container_identity
from claudepod.errors import (
    ConfigError,
    ContainerExistsError,
    ContainerNotFoundError,
    ProjectNotFoundError,
    StateFileError,
)
from claudepod.models.profile import Profile
from claudepod.models.records import (
    DEFAULT_LOGICAL_NAME,
    ContainerRecord,
    ContainerRegistry,
)

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = ".claudepod.json"


@runtime_checkable
class RegistryStore(Protocol):
    def load(self) -> ContainerRegistry: ...

    def save(self, registry: ContainerRegistry) -> None: ...


class FileRegistryStore:
    """Registry persisted as ``<project>/.claudepod.json``, replaced atomically."""

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = Path(project_dir)
        self.path = self.project_dir / REGISTRY_FILENAME

    def load(self) -> ContainerRegistry:
        if not self.path.exists():
            return ContainerRegistry()
        try:
            return ContainerRegistry.model_validate_json(
                self.path.read_text(encoding="utf-8")
            )
        except OSError as err:
            raise StateFileError(f"cannot read registry {self.path}: {err}") from err
        except ValidationError as err:
            raise StateFileError(f"corrupt registry {self.path}: {err}") from err

    def save(self, registry: ContainerRegistry) -> None:
        try:
            atomic_write_text(self.path, registry.model_dump_json(indent=2) + "\n")
        except OSError as err:
            raise StateFileError(f"cannot write registry {self.path}: {err}") from err
        logger.debug("[registry.save] %s containers=%s", self.path, registry.names())


class MemoryRegistryStore:
    """In-memory registry, mainly for tests."""

    def __init__(self, registry: Optional[ContainerRegistry] = None) -> None:
        self.registry = registry or ContainerRegistry()

    def load(self) -> ContainerRegistry:
        return self.registry.model_copy(deep=True)

    def save(self, registry: ContainerRegistry) -> None:
        self.registry = registry.model_copy(deep=True)


def find_project(start: Path) -> Optional[Path]:
    """Walk upward from `start` to the nearest directory holding a registry."""
    current = Path(start).absolute()
    for candidate in (current, *current.parents):
        if (candidate / REGISTRY_FILENAME).is_file():
            return candidate
    return None


def require_project(start: Path) -> Path:
    project = find_project(start)
    if project is None:
        raise ProjectNotFoundError(
            f"no {REGISTRY_FILENAME} found in {Path(start).absolute()} or its parents. "
            "Run 'claudepod init' first."
        )
    return project


def get_record(store: RegistryStore, logical_name: Optional[str] = None) -> ContainerRecord:
    registry = store.load()
    name = logical_name or registry.default
    record = registry.get(name)
    if record is None:
        raise ContainerNotFoundError(
            f"no container named '{name}' in this project. Run 'claudepod init' first."
        )
    return record


def new_record(
    project_dir: Path,
    profile_name: str,
    profile: Profile,
    image_tag: str,
    image_id: Optional[str] = None,
    logical_name: str = DEFAULT_LOGICAL_NAME,
) -> ContainerRecord:
    """Build (but do not store) the record for a container about to be created."""
    return ContainerRecord(
        logical_name=logical_name,
        identity=container_identity(project_dir, logical_name),
        profile_name=profile_name,
        image_tag=image_tag,
        image_id=image_id,
        config_digest=profile_digest(profile),
        frozen_config=profile.frozen_copy(),
    )


def ensure_available(store: RegistryStore, logical_name: str, force: bool = False) -> Optional[ContainerRecord]:
    """
    Check that `logical_name` may be (re)initialized.

    Returns the existing record when `force` allows replacing it.

    Raises
    ------
    ContainerExistsError
        A record exists and `force` is not set.
    """
    existing = store.load().get(logical_name)
    if existing is not None and not force:
        raise ContainerExistsError(
            f"container '{logical_name}' already exists ({existing.identity}). "
            "Use --force to recreate it or 'claudepod reset' to remove it."
        )
    return existing


def register(store: RegistryStore, record: ContainerRecord) -> None:
    """Add or replace a record. Only `init` calls this."""
    registry = store.load()
    registry.containers[record.logical_name] = record
    store.save(registry)
    logger.info("Registered container %s as '%s'", record.identity, record.logical_name)


def unregister(
    store: RegistryStore,
    logical_name: Optional[str] = None,
    all_containers: bool = False,
) -> List[ContainerRecord]:
    """
    Remove one record (or every record) from the registry.

    Returns the removed records so the caller can remove the runtime containers.

    Raises
    ------
    ContainerNotFoundError
        `logical_name` has no record.
    """
    registry = store.load()
    if all_containers:
        removed = [registry.containers[name] for name in registry.names()]
        registry.containers.clear()
    else:
        name = logical_name or registry.default
        record = registry.containers.pop(name, None)
        if record is None:
            raise ContainerNotFoundError(f"no container named '{name}' in this project")
        removed = [record]
    store.save(registry)
    return removed


def frozen_profile(record: ContainerRecord) -> Profile:
    """Rebuild the profile snapshot stored in a record."""
    try:
        return Profile.from_mapping(record.frozen_config)
    except ConfigError as err:
        raise StateFileError(
            f"frozen config of container '{record.logical_name}' is unreadable: {err}"
        ) from err


def check_drift(record: ContainerRecord, live_profile: Profile) -> Optional[str]:
    """
    Compare a container's frozen config with the live profile.

    Returns a warning message when they differ, ``None`` otherwise. Drift is
    only reported; the container and its record are left untouched.
    """
    live = profile_digest(live_profile)
    if live == record.config_digest:
        return None
    return (
        f"Profile '{record.profile_name}' has changed since container "
        f"'{record.logical_name}' was created. The container keeps its original "
        "configuration; run 'claudepod reset' and 'claudepod init' to apply the changes."
    )
