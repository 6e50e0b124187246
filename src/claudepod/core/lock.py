"""
claudepod/core/lock.py

Lock records and reconciliation against the live profile.

There is no persisted "state": only the last `LockRecord` written by a
successful build. Whether the image is current or stale is recomputed on every
call by comparing the record's digest with the live profile digest. Staleness
is advisory and never triggers a rebuild or removes anything.
"""

import enum
import logging
import warnings
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol, Tuple, runtime_checkable

from pydantic import ValidationError

from claudepod.core.atomic import atomic_write_text
from claudepod.core.canonical import digest as profile_digest
from claudepod.errors import LockStateWarning, StateFileError
from claudepod.models.profile import Profile
from claudepod.models.records import LockRecord

logger = logging.getLogger(__name__)

# Returns (image_tag, image_id) for a freshly built image.
ImageBuilder = Callable[[Profile], Tuple[str, Optional[str]]]


class LockState(str, enum.Enum):
    NO_LOCK = "no_lock"
    CURRENT = "current"
    STALE = "stale"


@dataclass(frozen=True)
class LockStatus:
    state: LockState
    digest: str
    record: Optional[LockRecord] = None

    @property
    def is_current(self) -> bool:
        return self.state is LockState.CURRENT

    def message(self) -> str:
        if self.state is LockState.NO_LOCK:
            return "No image has been built for this profile yet. Run 'claudepod build'."
        if self.state is LockState.STALE:
            return (
                "Profile has changed since the image was last built. "
                "Run 'claudepod build' to rebuild it."
            )
        return "Image is up to date with the profile."


@dataclass(frozen=True)
class BuildOutcome:
    status: LockStatus
    built: bool
    record: Optional[LockRecord] = None


@runtime_checkable
class LockStore(Protocol):
    def load(self) -> Optional[LockRecord]: ...

    def save(self, record: LockRecord) -> None: ...

    def delete(self) -> None: ...


class FileLockStore:
    """Lock record persisted as JSON, replaced atomically on save."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[LockRecord]:
        if not self.path.exists():
            return None
        try:
            return LockRecord.model_validate_json(self.path.read_text(encoding="utf-8"))
        except OSError as err:
            raise StateFileError(f"cannot read lock file {self.path}: {err}") from err
        except ValidationError as err:
            raise StateFileError(f"corrupt lock file {self.path}: {err}") from err

    def save(self, record: LockRecord) -> None:
        try:
            atomic_write_text(self.path, record.model_dump_json(indent=2) + "\n")
        except OSError as err:
            raise StateFileError(f"cannot write lock file {self.path}: {err}") from err
        logger.debug("[lock.save] %s digest=%s", self.path, record.digest)

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as err:
            raise StateFileError(f"cannot remove lock file {self.path}: {err}") from err


class MemoryLockStore:
    """In-memory lock store, mainly for tests."""

    def __init__(self, record: Optional[LockRecord] = None) -> None:
        self.record = record

    def load(self) -> Optional[LockRecord]:
        return self.record

    def save(self, record: LockRecord) -> None:
        self.record = record.model_copy(deep=True)

    def delete(self) -> None:
        self.record = None


def reconcile(profile: Profile, store: LockStore) -> LockStatus:
    """Compare the live profile digest with the stored lock record."""
    current = profile_digest(profile)
    record = store.load()
    if record is None:
        state = LockState.NO_LOCK
    elif record.digest == current:
        state = LockState.CURRENT
    else:
        state = LockState.STALE
    logger.debug("[lock.reconcile] state=%s live=%s", state.value, current)
    return LockStatus(state=state, digest=current, record=record)


def check(profile: Profile, store: LockStore, strict: bool = False) -> LockStatus:
    """
    Report the lock state without side effects.

    `NO_LOCK` and `STALE` are emitted as `LockStateWarning`; with ``strict=True``
    the warning is raised instead.
    """
    status = reconcile(profile, store)
    if not status.is_current:
        warning = LockStateWarning(status.message(), state=status.state.value)
        if strict:
            raise warning
        warnings.warn(warning, stacklevel=2)
    return status


def build(
    profile: Profile,
    store: LockStore,
    builder: ImageBuilder,
    force: bool = False,
    write_lock: bool = True,
) -> BuildOutcome:
    """
    Build the image for `profile` unless it is already current.

    The lock record is only written after `builder` returns; if it raises, the
    previous record is left exactly as it was.

    Parameters
    ----------
    profile : Profile
        Live profile to build.
    store : LockStore
        Where the lock record is kept.
    builder : ImageBuilder
        Renders and builds the image, returning ``(image_tag, image_id)``.
    force : bool, default False
        Rebuild even when the lock is current.
    write_lock : bool, default True
        Record the build in `store`.
    """
    status = reconcile(profile, store)
    if status.is_current and not force:
        logger.info("Image is up to date (digest %s)", status.digest[:12])
        return BuildOutcome(status=status, built=False, record=status.record)

    image_tag, image_id = builder(profile)
    record = LockRecord(
        digest=status.digest,
        created_at=datetime.now(timezone.utc),
        image_tag=image_tag,
        image_id=image_id,
    )
    if write_lock:
        store.save(record)
    return BuildOutcome(status=status, built=True, record=record)
