from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from claudepod.api import Workspace
from claudepod.core.lock import MemoryLockStore
from claudepod.core.registry import MemoryRegistryStore
from claudepod.core.settings import ClaudepodSettings
from claudepod.errors import RuntimeProcessError
from claudepod.integrations.runtime import ContainerRuntime, ContainerSpec
from claudepod.models.profile import Profile


class FakeRuntime(ContainerRuntime):
    """In-memory container engine recording every call."""

    name = "fake"

    def __init__(self) -> None:
        self.images: Dict[str, str] = {}
        self.containers: Dict[str, Dict] = {}
        self.builds: List[tuple] = []
        self.execs: List[Dict] = []
        self.removed: List[str] = []
        self.started: List[str] = []
        self.fail_build: Optional[int] = None
        self.exit_code = 0

    def build_image(self, context_dir: Path, image_tag: str) -> Optional[str]:
        if self.fail_build is not None:
            raise RuntimeProcessError(f"build of {image_tag} failed", self.fail_build)
        self.builds.append((Path(context_dir), image_tag))
        image_id = f"{len(self.builds):012x}"
        self.images[image_tag] = image_id
        return image_id

    def image_id(self, image_tag: str) -> Optional[str]:
        return self.images.get(image_tag)

    def create_container(self, spec: ContainerSpec) -> None:
        self.containers[spec.identity] = {"spec": spec, "running": False}

    def start(self, identity: str) -> None:
        self.started.append(identity)
        self.containers[identity]["running"] = True

    def exists(self, identity: str) -> bool:
        return identity in self.containers

    def is_running(self, identity: str) -> bool:
        return self.containers.get(identity, {}).get("running", False)

    def remove(self, identity: str) -> None:
        self.removed.append(identity)
        self.containers.pop(identity, None)

    def exec(
        self,
        identity: str,
        argv: Sequence[str],
        workdir: Path,
        interactive: bool = True,
    ) -> int:
        self.execs.append(
            {"identity": identity, "argv": list(argv), "workdir": Path(workdir)}
        )
        return self.exit_code


PROFILE_TOML = """\
description = "test profile"

[container]
base_image = "ubuntu:24.04"

[runtime]
container_runtime = "podman"
enable_gpu = false

[[runtime.volumes]]
host = "$HOME/.claude"
container = "/home/code/.claude"

[environment]
EDITOR = "vim"

[dependencies]
apt = ["git", "curl"]

[dependencies.nodejs]
enabled = false

[dependencies.github_cli]
enabled = false

[cmd]
default = "claude"

[cmd.claude]
install = "RUN echo install-claude"
args = "--dangerously-skip-permissions"

[cmd.shell]
command = "bash"

[cmd.bash]

[cmd.hello]
command = "echo"

[cmd.echo]
args = "hello"
"""


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def profile_text() -> str:
    return PROFILE_TOML


@pytest.fixture
def profile(profile_text) -> Profile:
    return Profile.from_toml(profile_text)


@pytest.fixture
def lock_store() -> MemoryLockStore:
    return MemoryLockStore()


@pytest.fixture
def registry_store() -> MemoryRegistryStore:
    return MemoryRegistryStore()


@pytest.fixture
def project_dir(tmp_path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path) -> ClaudepodSettings:
    return ClaudepodSettings(config_dir=tmp_path / "config", data_dir=tmp_path / "data")


@pytest.fixture
def write_profile(settings):
    """Write a named profile into the settings' profiles directory."""

    def _write(name: str, text: str = PROFILE_TOML) -> Path:
        path = settings.profiles_dir / f"{name}.toml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def workspace(settings, project_dir, fake_runtime) -> Workspace:
    return Workspace(
        settings=settings,
        cwd=project_dir,
        runtime_factory=lambda _profile: fake_runtime,
    )
