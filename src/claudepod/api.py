"""
claudepod public API

Orchestration of the build / check / init / run / reset flows. Every function
takes its collaborators (lock store, registry store, container runtime)
explicitly; `Workspace` wires the file-backed defaults from settings.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from claudepod.core import lock
from claudepod.core.generator import render, write_build_context
from claudepod.core.lock import BuildOutcome, FileLockStore, LockStatus, LockStore
from claudepod.core.profiles import DEFAULT_PROFILE_NAME, ProfileStore
from claudepod.core.registry import (
    FileRegistryStore,
    RegistryStore,
    check_drift,
    ensure_available,
    find_project,
    frozen_profile,
    get_record,
    new_record,
    register,
    require_project,
    unregister,
)
from claudepod.core.resolver import resolve, working_directory
from claudepod.core.settings import ClaudepodSettings
from claudepod.integrations.runtime import (
    ContainerRuntime,
    container_spec,
    image_tag_for,
    runtime_for,
)
from claudepod.models.profile import Profile
from claudepod.models.records import DEFAULT_LOGICAL_NAME, ContainerRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    exit_code: int
    drift: Optional[str] = None


def build_profile(
    profile_name: str,
    profile: Profile,
    lock_store: LockStore,
    runtime: ContainerRuntime,
    build_dir: Path,
    force: bool = False,
    write_lock: bool = True,
) -> BuildOutcome:
    """
    Render, write and build the image for a profile unless it is current.

    A current lock whose image has disappeared from the runtime is rebuilt.
    The lock record is only replaced after the runtime build succeeds.
    """
    image_tag = image_tag_for(profile_name)

    def _builder(live: Profile):
        recipe = render(live)
        write_build_context(recipe, build_dir)
        return image_tag, runtime.build_image(build_dir, image_tag)

    if not force:
        status = lock.reconcile(profile, lock_store)
        if status.is_current and not runtime.image_exists(status.record.image_tag):
            logger.warning("Image %s is missing; rebuilding", status.record.image_tag)
            force = True

    outcome = lock.build(profile, lock_store, _builder, force=force, write_lock=write_lock)
    if outcome.built:
        logger.info("Built %s for profile '%s'", image_tag, profile_name)
    return outcome


def check_profile(profile: Profile, lock_store: LockStore, strict: bool = False) -> LockStatus:
    """Side-effect-free lock check; see `claudepod.core.lock.check`."""
    return lock.check(profile, lock_store, strict=strict)


def init_container(
    project_dir: Path,
    profile_name: str,
    profile: Profile,
    registry_store: RegistryStore,
    lock_store: LockStore,
    runtime: ContainerRuntime,
    build_dir: Path,
    logical_name: str = DEFAULT_LOGICAL_NAME,
    force: bool = False,
) -> ContainerRecord:
    """
    Create the persistent container for `logical_name` in a project.

    The image is built first if the profile's lock is not current. The profile
    is frozen into the new record; later profile edits never reach it.

    With `force`, the old container and its record are removed before the new
    container is created, so a failed create leaves no record behind.

    Raises
    ------
    ContainerExistsError
        A record already exists and `force` is not set.
    """
    project_dir = Path(project_dir).absolute()
    existing = ensure_available(registry_store, logical_name, force=force)

    outcome = build_profile(profile_name, profile, lock_store, runtime, build_dir)
    image = outcome.record
    record = new_record(
        project_dir,
        profile_name,
        profile,
        image_tag=image.image_tag,
        image_id=image.image_id,
        logical_name=logical_name,
    )

    if existing is not None:
        runtime.remove(existing.identity)
        # the record must not outlive its container if the create below fails
        unregister(registry_store, logical_name=existing.logical_name)
    if runtime.exists(record.identity):
        logger.warning("Removing orphaned container %s", record.identity)
        runtime.remove(record.identity)

    runtime.create_container(
        container_spec(profile, record.identity, record.image_tag, project_dir)
    )
    register(registry_store, record)
    return record


def run_command(
    project_dir: Path,
    cwd: Path,
    registry_store: RegistryStore,
    runtime: ContainerRuntime,
    command: Optional[str] = None,
    args: Sequence[str] = (),
    logical_name: Optional[str] = None,
    live_profile: Optional[Profile] = None,
) -> RunResult:
    """
    Run a command in the project's container.

    The command table and runtime settings come from the container's frozen
    config, not from the live profile. When `live_profile` is given, drift is
    reported in the result but never acted on.

    Raises
    ------
    ContainerNotFoundError
        The project has no container under `logical_name`.
    CommandResolutionError
        `command` cannot be resolved in the frozen command table.
    """
    record = get_record(registry_store, logical_name)
    frozen = frozen_profile(record)
    resolved = resolve(command or frozen.cmd.default, frozen.cmd.commands, extra_args=args)

    drift = check_drift(record, live_profile) if live_profile is not None else None
    if drift:
        logger.debug("drift for %s: %s", record.identity, drift)

    if not runtime.is_running(record.identity):
        logger.info("Starting container %s", record.identity)
        runtime.start(record.identity)

    workdir = working_directory(
        resolved.working_dir_policy, Path(project_dir).absolute(), Path(cwd).absolute()
    )
    exit_code = runtime.exec(
        record.identity, resolved.argv, workdir, interactive=frozen.runtime.interactive
    )
    return RunResult(exit_code=exit_code, drift=drift)


def reset(
    registry_store: RegistryStore,
    runtime: Union[ContainerRuntime, Callable[[ContainerRecord], ContainerRuntime]],
    logical_name: Optional[str] = None,
    all_containers: bool = False,
) -> List[ContainerRecord]:
    """
    Remove container records and their runtime containers.

    The only path that deletes containers. Records are dropped after the
    runtime removal succeeds.

    Parameters
    ----------
    runtime : ContainerRuntime or callable
        Either one runtime for every record, or a function returning the
        runtime for a given record (records may come from profiles using
        different engines).
    """
    registry = registry_store.load()
    if all_containers:
        targets = [registry.containers[name] for name in registry.names()]
    else:
        targets = [get_record(registry_store, logical_name)]
    for record in targets:
        engine = runtime if isinstance(runtime, ContainerRuntime) else runtime(record)
        engine.remove(record.identity)
    return unregister(registry_store, logical_name=logical_name, all_containers=all_containers)


def list_containers(registry_store: RegistryStore) -> List[ContainerRecord]:
    registry = registry_store.load()
    return [registry.containers[name] for name in registry.names()]


@dataclass
class Workspace:
    """
    File-backed collaborators for one invocation.

    Attributes
    ----------
    settings : ClaudepodSettings
        Directories and behavior flags, usually from ``ClaudepodSettings.from_env``.
    cwd : Path
        Caller's working directory.
    runtime_factory : Callable[[Profile], ContainerRuntime]
        Picks the runtime for a profile; tests pass a fake.
    """

    settings: ClaudepodSettings
    cwd: Path = field(default_factory=Path.cwd)
    runtime_factory: Optional[Callable[[Profile], ContainerRuntime]] = None

    @property
    def profiles(self) -> ProfileStore:
        return ProfileStore(self.settings.profiles_dir)

    def load_profile(self, name: Optional[str] = None) -> Profile:
        name = name or DEFAULT_PROFILE_NAME
        if name == DEFAULT_PROFILE_NAME:
            self.profiles.ensure_default()
        return self.profiles.load(name)

    def lock_store(self, profile_name: str) -> FileLockStore:
        return FileLockStore(self.settings.locks_dir / f"{profile_name}.json")

    def build_dir(self, profile_name: str) -> Path:
        return self.settings.build_dir / profile_name

    def runtime(self, profile: Profile) -> ContainerRuntime:
        if self.runtime_factory is not None:
            return self.runtime_factory(profile)
        return runtime_for(profile, self.settings.runtime, self.settings.stop_timeout)

    def project_dir(self, create: bool = False) -> Path:
        """Nearest enclosing project, or the cwd when `create` is set and none exists."""
        if create:
            return find_project(self.cwd) or Path(self.cwd).absolute()
        return require_project(self.cwd)

    def registry_store(self, project_dir: Path) -> FileRegistryStore:
        return FileRegistryStore(project_dir)
