"""
claudepod/models/profile.py

Typed representation of a claudepod profile: the declarative description of a
development container (base image, runtime flags, mounts, environment,
dependencies, git identity, shell settings and the command table).

Profiles are TOML documents. Parsing is delegated to `tomllib`; everything
after that (defaults, validation, alias checks) happens here through pydantic.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_serializer,
    model_validator,
)

from claudepod.core.resolver import resolve
from claudepod.errors import CommandResolutionError, ConfigError

DEFAULT_COMMAND = "claude"
NODEJS_SOURCES = ("nodesource", "apt", "nvm")


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ContainerSettings(_Section):
    base_image: str = "ubuntu:25.04"
    user: str = "code"
    home_dir: str = "/home/code"
    work_dir: str = "$PWD"

    @field_validator("base_image", "user")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


class VolumeMount(_Section):
    """A bind mount. Both paths may contain `$PWD`, `$HOME`, `~` or `${VAR}`."""

    host: str
    container: str
    readonly: bool = False

    @field_validator("host", "container")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("volume mount paths cannot be empty")
        return value


class TmpfsMount(_Section):
    path: str
    readonly: bool = False
    size: str = "1m"


class RuntimeSettings(_Section):
    container_runtime: Literal["podman", "docker"] = "podman"
    enable_gpu: bool = True
    gpu_driver: str = "all"
    interactive: bool = True
    volumes: List[VolumeMount] = Field(default_factory=list)
    tmpfs: List[TmpfsMount] = Field(default_factory=list)
    extra_args: List[str] = Field(default_factory=list)


class GitSettings(_Section):
    user_name: str = ""
    user_email: str = ""


class NodeJsSettings(_Section):
    enabled: bool = True
    version: str = "18"
    source: str = "nodesource"

    @model_validator(mode="after")
    def _check_source(self) -> "NodeJsSettings":
        if self.enabled and self.source not in NODEJS_SOURCES:
            raise ValueError(
                f"invalid nodejs source '{self.source}'. "
                f"Must be one of: {', '.join(NODEJS_SOURCES)}"
            )
        return self


class GithubCliSettings(_Section):
    enabled: bool = True


class CustomDependency(_Section):
    name: str
    commands: List[str] = Field(default_factory=list)


class DependencySettings(_Section):
    apt: List[str] = Field(default_factory=list)
    nodejs: NodeJsSettings = Field(default_factory=NodeJsSettings)
    github_cli: GithubCliSettings = Field(default_factory=GithubCliSettings)
    pip: List[str] = Field(default_factory=list)
    npm: List[str] = Field(default_factory=list)
    custom: List[CustomDependency] = Field(default_factory=list)


class ShellSettings(_Section):
    aliases: Dict[str, str] = Field(default_factory=dict)
    history_search: bool = True


class CommandDefinition(_Section):
    """
    One entry of the command table.

    An entry with `command` set is an alias for another entry; otherwise it is
    a direct definition whose key is the executable name.

    Attributes
    ----------
    install : Optional[str]
        Raw build-recipe lines (e.g. ``RUN npm install -g ...``) emitted verbatim.
    args : str
        Default arguments, shell-quoted, always placed before caller arguments.
    command : Optional[str]
        Alias target.
    shell : bool
        Treat the command as an interactive shell (runs in the caller's cwd).
    """

    install: Optional[str] = None
    args: str = ""
    command: Optional[str] = None
    shell: bool = False

    @property
    def is_alias(self) -> bool:
        return self.command is not None

    @model_validator(mode="after")
    def _alias_is_reference_only(self) -> "CommandDefinition":
        if self.command is not None:
            if not self.command.strip():
                raise ValueError("alias target must not be empty")
            if self.install or self.args or self.shell:
                raise ValueError(
                    "an alias entry ('command = ...') cannot also set install, args or shell"
                )
        return self


CLAUDE_INSTALL = (
    "RUN mkdir -p /home/code/.npm-global && \\\n"
    "    npm config set prefix /home/code/.npm-global && \\\n"
    "    npm install --silent -g @anthropic-ai/claude-code"
)


def _default_commands() -> Dict[str, CommandDefinition]:
    return {
        "claude": CommandDefinition(
            install=CLAUDE_INSTALL,
            args="--dangerously-skip-permissions --max-turns 99999999",
        ),
        "shell": CommandDefinition(command="bash"),
        "bash": CommandDefinition(),
        "zsh": CommandDefinition(),
    }


class CommandTable(BaseModel):
    """
    The ``[cmd]`` table: a ``default`` key naming the command to run when none
    is given, plus one sub-table per command.

    The TOML layout is flat (``[cmd.claude]``, ``[cmd.shell]``); internally the
    entries live under ``commands`` and are flattened back on serialization.
    """

    model_config = ConfigDict(extra="forbid")

    default: str = DEFAULT_COMMAND
    commands: Dict[str, CommandDefinition] = Field(default_factory=_default_commands)

    @model_validator(mode="before")
    @classmethod
    def _collect_entries(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        entries = dict(data)
        default = entries.pop("default", DEFAULT_COMMAND)
        # no entries: keep the built-in command set
        if not entries:
            return {"default": default}
        if "commands" in entries:
            nested = entries["commands"]
            if (
                len(entries) == 1
                and isinstance(nested, Mapping)
                and all(isinstance(v, (Mapping, CommandDefinition)) for v in nested.values())
            ):
                return {"default": default, "commands": dict(nested)}
            raise ValueError("'commands' is reserved and cannot be used as a command name")
        return {"default": default, "commands": entries}

    @model_validator(mode="after")
    def _default_must_resolve(self) -> "CommandTable":
        for name in self.commands:
            if not name.strip() or any(ch.isspace() for ch in name):
                raise ValueError(f"invalid command name '{name}'")
        try:
            resolve(self.default, self.commands)
        except CommandResolutionError as err:
            raise ValueError(f"default command does not resolve: {err}") from err
        return self

    @model_serializer(mode="wrap")
    def _flatten(self, handler: Any) -> Dict[str, Any]:
        data = handler(self)
        commands = data.pop("commands", {})
        return {"default": data["default"], **commands}

    def __contains__(self, name: object) -> bool:
        return name in self.commands

    def __getitem__(self, name: str) -> CommandDefinition:
        return self.commands[name]

    def get(self, name: str) -> Optional[CommandDefinition]:
        return self.commands.get(name)


class Profile(BaseModel):
    """
    A complete environment definition.

    `description` is informational only and is excluded from the profile digest;
    every other field participates in it.
    """

    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = None
    container: ContainerSettings = Field(default_factory=ContainerSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    environment: Dict[str, str] = Field(default_factory=dict)
    git: GitSettings = Field(default_factory=GitSettings)
    cmd: CommandTable = Field(default_factory=CommandTable)
    dependencies: DependencySettings = Field(default_factory=DependencySettings)
    shell: ShellSettings = Field(default_factory=ShellSettings)

    @classmethod
    def from_toml(cls, text: str, source: Optional[Path] = None) -> "Profile":
        """
        Parse and validate a profile from TOML text.

        Raises
        ------
        ConfigError
            If the text is not valid TOML or does not describe a valid profile.
        """
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as err:
            raise ConfigError(f"invalid TOML: {err}", source=source) from err
        return cls.from_mapping(data, source=source)

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], source: Optional[Path] = None
    ) -> "Profile":
        """Validate an already-parsed mapping (a TOML document or a frozen config)."""
        try:
            return cls.model_validate(dict(data))
        except ValidationError as err:
            raise ConfigError(_format_validation_error(err), source=source) from err

    @classmethod
    def from_file(cls, path: Path) -> "Profile":
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as err:
            raise ConfigError(f"cannot read profile: {err}", source=Path(path)) from err
        return cls.from_toml(text, source=Path(path))

    def frozen_copy(self) -> Dict[str, Any]:
        """
        Return a deep, JSON-plain snapshot of this profile.

        The snapshot shares no objects with the model, so later edits to the
        profile (or its source file) never change it.
        """
        return self.model_dump(mode="json")


def _format_validation_error(err: ValidationError) -> str:
    lines = []
    for item in err.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"{location}: {item['msg']}")
    return "invalid profile: " + "; ".join(lines)
