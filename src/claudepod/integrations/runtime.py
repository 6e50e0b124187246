"""
claudepod Container Runtime Module

Abstract and concrete container runtime collaborators. Everything that talks to
podman or docker goes through a `ContainerRuntime`, so the rest of claudepod can
be exercised against an in-memory fake.

-   **Abstract Interface (`ContainerRuntime`)**: image build and lookup,
    container create/start/remove, state queries and command execution.
-   **CLI Integration (`CliRuntime`)**: drives the ``podman`` or ``docker``
    executable through `subprocess`. Interactive processes inherit the caller's
    stdio; on Ctrl-C the child is terminated (and killed after a grace period)
    before the interrupt is re-raised.
"""

import abc
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from claudepod.core.placeholders import expand_placeholders
from claudepod.errors import RuntimeProcessError
from claudepod.models.profile import Profile

logger = logging.getLogger(__name__)

IMAGE_TAG_TEMPLATE = "claudepod-{profile}:latest"
DEFAULT_STOP_TIMEOUT = 10


def image_tag_for(profile_name: str) -> str:
    return IMAGE_TAG_TEMPLATE.format(profile=profile_name)


@dataclass(frozen=True)
class ContainerSpec:
    """
    Everything needed to create one persistent container.

    Paths are already expanded; see `container_spec`.
    """

    identity: str
    image_tag: str
    project_dir: Path
    volumes: List[str] = field(default_factory=list)
    tmpfs: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    interactive: bool = True
    gpus: Optional[str] = None
    extra_args: List[str] = field(default_factory=list)


def container_spec(
    profile: Profile,
    identity: str,
    image_tag: str,
    project_dir: Path,
    env: Optional[Mapping[str, str]] = None,
) -> ContainerSpec:
    """
    Expand a (frozen) profile's runtime section into a `ContainerSpec`.

    ``$PWD`` in mount paths means the project directory. The project directory
    itself is always mounted at the same path, so a profile volume targeting it
    is skipped.
    """
    project_dir = Path(project_dir).absolute()
    runtime = profile.runtime

    volumes = []
    for volume in runtime.volumes:
        host = expand_placeholders(volume.host, project_dir, env)
        container = expand_placeholders(volume.container, project_dir, env)
        if container == str(project_dir):
            continue
        mount = f"{host}:{container}"
        if volume.readonly:
            mount += ":ro"
        volumes.append(mount)

    tmpfs = []
    for mount in runtime.tmpfs:
        value = f"{mount.path}:size={mount.size}"
        if mount.readonly:
            value += ",ro"
        tmpfs.append(value)

    return ContainerSpec(
        identity=identity,
        image_tag=image_tag,
        project_dir=project_dir,
        volumes=volumes,
        tmpfs=tmpfs,
        env={"CLAUDEPOD_UID": str(os.getuid()), "CLAUDEPOD_GID": str(os.getgid())},
        interactive=runtime.interactive,
        gpus=runtime.gpu_driver if runtime.enable_gpu else None,
        extra_args=list(runtime.extra_args),
    )


class ContainerRuntime(abc.ABC):
    """Operations claudepod needs from a container engine."""

    name: str = "runtime"

    @abc.abstractmethod
    def build_image(self, context_dir: Path, image_tag: str) -> Optional[str]:
        """
        Build `context_dir` into `image_tag`.

        Returns
        -------
        Optional[str]
            The runtime image id of the new image, if it can be determined.

        Raises
        ------
        RuntimeProcessError
            The build exited with a non-zero status.
        """

    @abc.abstractmethod
    def image_id(self, image_tag: str) -> Optional[str]:
        """Image id for a tag, or ``None`` if the image does not exist."""

    def image_exists(self, image_tag: str) -> bool:
        return self.image_id(image_tag) is not None

    @abc.abstractmethod
    def create_container(self, spec: ContainerSpec) -> None:
        """Create (but do not start) a long-running container."""

    @abc.abstractmethod
    def start(self, identity: str) -> None: ...

    @abc.abstractmethod
    def exists(self, identity: str) -> bool: ...

    @abc.abstractmethod
    def is_running(self, identity: str) -> bool: ...

    @abc.abstractmethod
    def remove(self, identity: str) -> None:
        """Force-remove a container. Removing a missing container is not an error."""

    @abc.abstractmethod
    def exec(
        self,
        identity: str,
        argv: Sequence[str],
        workdir: Path,
        interactive: bool = True,
    ) -> int:
        """Run `argv` inside a running container and return its exit code."""


class CliRuntime(ContainerRuntime):
    """
    A `ContainerRuntime` backed by the ``podman`` or ``docker`` command line.

    Attributes
    ----------
    executable : str
        Runtime binary, ``podman`` or ``docker``.
    stop_timeout : int
        Seconds to wait after terminating an interrupted child before killing it.
    """

    def __init__(self, executable: str = "podman", stop_timeout: int = DEFAULT_STOP_TIMEOUT) -> None:
        self.executable = executable
        self.name = executable
        self.stop_timeout = stop_timeout

    @property
    def is_podman(self) -> bool:
        return Path(self.executable).name == "podman"

    def _command(self, *args: str) -> List[str]:
        return [self.executable, *args]

    def _capture(self, cmd: List[str]) -> subprocess.CompletedProcess:
        logger.debug("[runtime] %s", shlex.join(cmd))
        try:
            return subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as err:
            raise RuntimeProcessError(f"{self.executable} executable not found", 127) from err

    def _checked(self, cmd: List[str], action: str) -> subprocess.CompletedProcess:
        result = self._capture(cmd)
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            message = f"{self.executable} {action} failed"
            if detail:
                message = f"{message}: {detail}"
            raise RuntimeProcessError(message, result.returncode)
        return result

    def _interactive(self, cmd: List[str], cwd: Optional[Path] = None) -> int:
        """Run with inherited stdio; terminate the child if interrupted."""
        logger.debug("[runtime] %s", shlex.join(cmd))
        try:
            process = subprocess.Popen(cmd, cwd=cwd)
        except FileNotFoundError as err:
            raise RuntimeProcessError(f"{self.executable} executable not found", 127) from err
        try:
            return process.wait()
        except KeyboardInterrupt:
            logger.warning("Interrupted; stopping %s", cmd[1] if len(cmd) > 1 else cmd[0])
            process.terminate()
            try:
                process.wait(timeout=self.stop_timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            raise

    def build_image(self, context_dir: Path, image_tag: str) -> Optional[str]:
        cmd = self._command(
            "build",
            "--build-arg",
            f"USER_UID={os.getuid()}",
            "--build-arg",
            f"USER_GID={os.getgid()}",
            "-t",
            image_tag,
            ".",
        )
        logger.info("Building image %s with %s", image_tag, self.executable)
        returncode = self._interactive(cmd, cwd=Path(context_dir))
        if returncode != 0:
            raise RuntimeProcessError(f"{self.executable} build of {image_tag} failed", returncode)
        return self.image_id(image_tag)

    def image_id(self, image_tag: str) -> Optional[str]:
        result = self._checked(self._command("images", "-q", image_tag), "images")
        lines = result.stdout.strip().splitlines()
        return lines[0].strip() if lines else None

    def create_container(self, spec: ContainerSpec) -> None:
        cmd = self._command("create", "--name", spec.identity)
        if spec.interactive:
            cmd.append("-it")
        if self.is_podman:
            cmd.append("--userns=keep-id")
        for key, value in sorted(spec.env.items()):
            cmd.extend(["-e", f"{key}={value}"])
        cmd.extend(["-v", f"{spec.project_dir}:{spec.project_dir}"])
        for volume in spec.volumes:
            cmd.extend(["-v", volume])
        for mount in spec.tmpfs:
            cmd.extend(["--tmpfs", mount])
        if spec.gpus:
            cmd.extend(["--gpus", spec.gpus])
        cmd.extend(spec.extra_args)
        cmd.extend([spec.image_tag, "sleep", "infinity"])
        self._checked(cmd, "create")
        logger.info("Created container %s from %s", spec.identity, spec.image_tag)

    def start(self, identity: str) -> None:
        self._checked(self._command("start", identity), "start")

    def exists(self, identity: str) -> bool:
        return identity in self._list_names(identity, include_stopped=True)

    def is_running(self, identity: str) -> bool:
        return identity in self._list_names(identity, include_stopped=False)

    def _list_names(self, identity: str, include_stopped: bool) -> List[str]:
        args = ["ps"]
        if include_stopped:
            args.append("-a")
        args.extend(["--filter", f"name=^{identity}$", "--format", "{{.Names}}"])
        result = self._capture(self._command(*args))
        if result.returncode != 0:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def remove(self, identity: str) -> None:
        if not self.exists(identity):
            logger.debug("Container %s is already gone", identity)
            return
        self._checked(self._command("rm", "-f", identity), "rm")
        logger.info("Removed container %s", identity)

    def exec(
        self,
        identity: str,
        argv: Sequence[str],
        workdir: Path,
        interactive: bool = True,
    ) -> int:
        cmd = self._command("exec")
        if interactive:
            cmd.append("-it")
        cmd.extend(["-e", f"CLAUDEPOD_WORKDIR={workdir}", "-w", str(workdir), identity, *argv])
        return self._interactive(cmd)


def runtime_for(profile: Profile, override: Optional[str] = None, stop_timeout: int = DEFAULT_STOP_TIMEOUT) -> CliRuntime:
    """CLI runtime for a profile, honoring an explicit override (``CLAUDEPOD_RUNTIME``)."""
    return CliRuntime(override or profile.runtime.container_runtime, stop_timeout=stop_timeout)
