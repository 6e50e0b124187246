import json
import warnings
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from claudepod.core import lock
from claudepod.core.canonical import digest
from claudepod.core.lock import FileLockStore, LockState, MemoryLockStore
from claudepod.errors import LockStateWarning, RuntimeProcessError, StateFileError
from claudepod.models.profile import Profile
from claudepod.models.records import LockRecord


class RecordingBuilder:
    def __init__(self):
        self.calls = 0

    def __call__(self, profile):
        self.calls += 1
        return "claudepod-test:latest", f"id{self.calls}"


def failing_builder(profile):
    raise RuntimeProcessError("podman build failed", 1)


def edited(profile: Profile) -> Profile:
    data = profile.frozen_copy()
    data["dependencies"]["apt"] = [*data["dependencies"]["apt"], "jq"]
    return Profile.from_mapping(data)


def test_build_then_check_is_current(profile, lock_store):
    builder = RecordingBuilder()

    outcome = lock.build(profile, lock_store, builder)

    assert outcome.built is True
    assert outcome.record.digest == digest(profile)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        status = lock.check(profile, lock_store)
    assert status.state is LockState.CURRENT
    assert status.is_current


def test_check_without_lock_warns(profile, lock_store):
    with pytest.warns(LockStateWarning) as record:
        status = lock.check(profile, lock_store)
    assert status.state is LockState.NO_LOCK
    assert record[0].message.state == "no_lock"


def test_edit_makes_lock_stale_without_touching_it(profile, lock_store):
    lock.build(profile, lock_store, RecordingBuilder())
    before = lock_store.load()

    with pytest.warns(LockStateWarning):
        status = lock.check(edited(profile), lock_store)

    assert status.state is LockState.STALE
    assert lock_store.load() == before


def test_strict_check_raises(profile, lock_store):
    with pytest.raises(LockStateWarning) as excinfo:
        lock.check(profile, lock_store, strict=True)
    assert excinfo.value.state == "no_lock"


def test_build_is_noop_when_current(profile, lock_store):
    builder = RecordingBuilder()
    lock.build(profile, lock_store, builder)

    outcome = lock.build(profile, lock_store, builder)

    assert outcome.built is False
    assert builder.calls == 1
    assert outcome.record == lock_store.load()


def test_force_rebuilds(profile, lock_store):
    builder = RecordingBuilder()
    lock.build(profile, lock_store, builder)
    outcome = lock.build(profile, lock_store, builder, force=True)
    assert outcome.built is True
    assert builder.calls == 2
    assert lock_store.load().image_id == "id2"


def test_failed_build_keeps_previous_record(profile, lock_store):
    lock.build(profile, lock_store, RecordingBuilder())
    before = lock_store.load()

    with pytest.raises(RuntimeProcessError):
        lock.build(edited(profile), lock_store, failing_builder)

    assert lock_store.load() == before
    assert lock.reconcile(edited(profile), lock_store).state is LockState.STALE


def test_build_without_writing_lock(profile, lock_store):
    outcome = lock.build(profile, lock_store, RecordingBuilder(), write_lock=False)
    assert outcome.built is True
    assert outcome.record is not None
    assert lock_store.load() is None


def _record(value="a" * 64):
    return LockRecord(
        digest=value,
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        image_tag="claudepod-default:latest",
        image_id="abc123",
    )


def test_file_store_round_trip(tmp_path):
    store = FileLockStore(tmp_path / "locks" / "default.json")
    assert store.load() is None

    store.save(_record())

    assert store.load() == _record()
    data = json.loads(store.path.read_text())
    assert data["digest"] == "a" * 64
    assert data["image_tag"] == "claudepod-default:latest"
    assert sorted(p.name for p in store.path.parent.iterdir()) == ["default.json"]


def test_file_store_delete(tmp_path):
    store = FileLockStore(tmp_path / "default.json")
    store.save(_record())
    store.delete()
    store.delete()
    assert store.load() is None


def test_interrupted_save_leaves_old_file(tmp_path):
    store = FileLockStore(tmp_path / "default.json")
    store.save(_record("a" * 64))

    with patch("pathlib.Path.replace", side_effect=OSError("disk full")):
        with pytest.raises(StateFileError):
            store.save(_record("b" * 64))

    assert store.load().digest == "a" * 64
    assert [p.name for p in tmp_path.iterdir()] == ["default.json"]


def test_corrupt_lock_file(tmp_path):
    path = tmp_path / "default.json"
    path.write_text("{not json")
    with pytest.raises(StateFileError):
        FileLockStore(path).load()


def test_memory_store_copies_records():
    store = MemoryLockStore()
    record = _record()
    store.save(record)
    assert store.load() == record
    assert store.load() is not record
