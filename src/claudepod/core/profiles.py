"""
claudepod/core/profiles.py

Named profiles stored as ``<profiles dir>/<name>.toml``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from claudepod.core.atomic import atomic_write_text
from claudepod.errors import ProfileNotFoundError
from claudepod.models.profile import Profile

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_NAME = "default"
PROFILE_SUFFIX = ".toml"

DEFAULT_PROFILE_TOML = """\
description = "General purpose C++/Python development container"

[container]
base_image = "ubuntu:25.04"
user = "code"
home_dir = "/home/code"
work_dir = "$PWD"

[runtime]
container_runtime = "podman"
enable_gpu = true
gpu_driver = "all"
interactive = true
extra_args = []

[[runtime.volumes]]
host = "$PWD"
container = "$PWD"

[[runtime.volumes]]
host = "$HOME/.claude"
container = "/home/code/.claude"

[[runtime.volumes]]
host = "$HOME/.claude.json"
container = "/home/code/.claude.json"

[[runtime.tmpfs]]
path = "/workspace/build"
readonly = true
size = "1m"

[environment]
CC = "clang-18"
CXX = "clang++-18"
TERM = "xterm-256color"

[git]
user_name = ""
user_email = ""

[dependencies]
apt = [
    "python3",
    "python3-pip",
    "python3-dev",
    "python3-dbg",
    "python3-pytest",
    "python3-numpy",
    "build-essential",
    "cmake",
    "ninja-build",
    "make",
    "clang-18",
    "libc++abi-18-dev",
    "libc++-18-dev",
    "lldb-18",
    "gdb",
    "bsdmainutils",
    "procps",
    "jq",
    "curl",
    "vim",
    "git",
    "gosu",
    "ripgrep",
    "sudo",
    "fd-find",
]
pip = []
npm = []

[dependencies.nodejs]
enabled = true
version = "18"
source = "nodesource"

[dependencies.github_cli]
enabled = true

[shell]
history_search = true

[shell.aliases]
n = "ninja"

[cmd]
default = "claude"

[cmd.claude]
install = '''
RUN mkdir -p /home/code/.npm-global && \\
    npm config set prefix /home/code/.npm-global && \\
    npm install --silent -g @anthropic-ai/claude-code'''
args = "--dangerously-skip-permissions --max-turns 99999999"

[cmd.shell]
command = "bash"

[cmd.bash]

[cmd.zsh]
"""


def default_profile() -> Profile:
    """The profile written by `ProfileStore.ensure_default`."""
    return Profile.from_toml(DEFAULT_PROFILE_TOML)


class ProfileStore:
    """Loads and lists the profiles kept in one directory."""

    def __init__(self, profiles_dir: Path) -> None:
        self.profiles_dir = Path(profiles_dir)

    def path_for(self, name: str) -> Path:
        return self.profiles_dir / f"{name}{PROFILE_SUFFIX}"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def load(self, name: str) -> Profile:
        """
        Load the profile called `name`.

        Raises
        ------
        ProfileNotFoundError
            No ``<name>.toml`` exists in the profiles directory.
        ConfigError
            The file exists but is not a valid profile.
        """
        path = self.path_for(name)
        if not path.is_file():
            raise ProfileNotFoundError(
                f"profile '{name}' not found. Available: {', '.join(self.list_available()) or 'none'}",
                source=path,
            )
        logger.debug("Loading profile %s from %s", name, path)
        return Profile.from_file(path)

    def list_available(self) -> List[str]:
        if not self.profiles_dir.is_dir():
            return []
        return sorted(p.stem for p in self.profiles_dir.glob(f"*{PROFILE_SUFFIX}") if p.is_file())

    def ensure_default(self) -> Path:
        """Write the default profile if it does not exist yet; never overwrites."""
        path = self.path_for(DEFAULT_PROFILE_NAME)
        if not path.exists():
            atomic_write_text(path, DEFAULT_PROFILE_TOML)
            logger.info("Created default profile at %s", path)
        return path
