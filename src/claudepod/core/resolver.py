"""
claudepod/core/resolver.py

Turns a command name into the concrete process to execute inside a container.

Names are looked up in the profile's command table. Alias entries are followed
iteratively with an explicit visited list, so cycles and runaway chains are
reported as errors carrying the chain rather than as recursion failures.
"""

from __future__ import annotations

import enum
import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Mapping, Sequence, Tuple

from claudepod.errors import (
    ChainDepthExceededError,
    CycleDetectedError,
    UnknownCommandError,
)

if TYPE_CHECKING:
    from claudepod.models.profile import CommandDefinition

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 10
SHELL_NAMES = frozenset({"bash", "zsh", "sh", "fish", "dash", "ksh", "tcsh", "csh"})


class WorkingDirPolicy(str, enum.Enum):
    """Where a resolved command runs inside the container."""

    CALLER_CWD = "caller_cwd"
    PROJECT_DIR = "project_dir"


@dataclass(frozen=True)
class ResolvedCommand:
    """
    The terminal definition reached from a command name.

    Attributes
    ----------
    name : str
        The name originally requested.
    executable : str
        Name of the terminal (direct) entry, used as the program to run.
    args : Tuple[str, ...]
        Configured default arguments followed by caller arguments.
    working_dir_policy : WorkingDirPolicy
        Whether the command runs in the caller's cwd or the project directory.
    chain : Tuple[str, ...]
        Every name visited, from `name` to `executable`.
    """

    name: str
    executable: str
    args: Tuple[str, ...] = ()
    working_dir_policy: WorkingDirPolicy = WorkingDirPolicy.PROJECT_DIR
    chain: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.args]


def resolve(
    name: str,
    commands: Mapping[str, "CommandDefinition"],
    extra_args: Sequence[str] = (),
) -> ResolvedCommand:
    """
    Follow alias entries from `name` until a direct definition is reached.

    Parameters
    ----------
    name : str
        Command name to resolve.
    commands : Mapping[str, CommandDefinition]
        The command table (``profile.cmd.commands``).
    extra_args : Sequence[str], optional
        Caller-supplied arguments, appended after the configured defaults.

    Returns
    -------
    ResolvedCommand

    Raises
    ------
    UnknownCommandError
        A name in the chain has no entry in the table.
    CycleDetectedError
        An alias targets a name already in the chain.
    ChainDepthExceededError
        The chain would grow past `MAX_CHAIN_DEPTH` names.
    """
    visited: List[str] = [name]
    current = name

    while True:
        entry = commands.get(current)
        if entry is None:
            raise UnknownCommandError(f"unknown command '{current}'", visited)
        if entry.command is None:
            break

        target = entry.command
        if target in visited:
            raise CycleDetectedError(
                f"alias '{current}' points back to '{target}'", [*visited, target]
            )
        visited.append(target)
        if len(visited) > MAX_CHAIN_DEPTH:
            raise ChainDepthExceededError(
                f"alias chain longer than {MAX_CHAIN_DEPTH} names", visited
            )
        current = target

    args = tuple(shlex.split(entry.args)) + tuple(extra_args)
    policy = (
        WorkingDirPolicy.CALLER_CWD
        if entry.shell or current in SHELL_NAMES
        else WorkingDirPolicy.PROJECT_DIR
    )
    logger.debug("resolved %s via %s -> %s %s", name, visited, current, args)
    return ResolvedCommand(
        name=name,
        executable=current,
        args=args,
        working_dir_policy=policy,
        chain=tuple(visited),
    )


def working_directory(policy: WorkingDirPolicy, project_dir: Path, cwd: Path) -> Path:
    """Pick the in-container working directory for a resolved command."""
    if policy is WorkingDirPolicy.CALLER_CWD:
        return cwd
    return project_dir
