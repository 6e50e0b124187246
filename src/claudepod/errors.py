"""
claudepod/errors.py

Exception taxonomy for claudepod.

Validation and resolution errors are fatal and are raised before any external
process is started. Lock staleness is advisory: `LockStateWarning` is emitted
through `warnings.warn` and only raised when the caller asks for strict mode.
`RuntimeProcessError` carries the exit code of the failed child process so the
CLI can propagate it unchanged.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class ClaudepodError(Exception):
    """Base class for every error raised by claudepod."""


class ConfigError(ClaudepodError):
    """A profile is malformed or fails validation."""

    def __init__(self, message: str, source: Optional[Path] = None) -> None:
        self.source = source
        if source is not None:
            message = f"{source}: {message}"
        super().__init__(message)


class ProfileNotFoundError(ConfigError):
    """No profile file exists under the requested name."""


class CommandResolutionError(ClaudepodError):
    """Base class for failures while following a command alias chain."""

    def __init__(self, message: str, chain: Sequence[str]) -> None:
        self.chain = list(chain)
        super().__init__(f"{message} (chain: {' -> '.join(self.chain)})")


class UnknownCommandError(CommandResolutionError):
    """The chain reached a name with no entry in the command table."""


class CycleDetectedError(CommandResolutionError):
    """An alias pointed back at a name already visited in the chain."""


class ChainDepthExceededError(CommandResolutionError):
    """The alias chain grew past the maximum allowed depth."""


class LockStateWarning(ClaudepodError, UserWarning):
    """
    The built image is missing or no longer matches the live profile.

    Emitted as a warning by default; raised as an error in strict mode.
    """

    def __init__(self, message: str, state: str) -> None:
        self.state = state
        super().__init__(message)


class RuntimeProcessError(ClaudepodError):
    """An external container runtime process exited with a non-zero status."""

    def __init__(self, message: str, returncode: int) -> None:
        self.returncode = returncode
        super().__init__(f"{message} (exit code {returncode})")


class StateFileError(ClaudepodError):
    """A lock file or container registry could not be read or written."""


class ProjectNotFoundError(ClaudepodError):
    """No project registry was found in the working directory or its parents."""


class ContainerExistsError(ClaudepodError):
    """A container record already exists for this project and logical name."""


class ContainerNotFoundError(ClaudepodError):
    """The project has no container record under the requested logical name."""
