"""
claudepod: reproducible development containers with persistent per-project state.

Profiles describe an environment; `build` turns a profile into an image and
records its digest in a lock file; `init` creates a long-lived container per
project whose configuration is frozen at creation time; `run` executes named
commands inside it.
"""

# Models
from claudepod.models.profile import Profile
from claudepod.models.records import ContainerRecord, LockRecord

# Core
from claudepod.core.canonical import canonical_form, digest
from claudepod.core.identity import container_identity
from claudepod.core.resolver import ResolvedCommand, resolve

# API
from claudepod.api import (
    RunResult,
    Workspace,
    build_profile,
    check_profile,
    init_container,
    list_containers,
    reset,
    run_command,
)

__version__ = "0.1.0"

__all__ = [
    "ContainerRecord",
    "LockRecord",
    "Profile",
    "ResolvedCommand",
    "RunResult",
    "Workspace",
    "build_profile",
    "canonical_form",
    "check_profile",
    "container_identity",
    "digest",
    "init_container",
    "list_containers",
    "reset",
    "resolve",
    "run_command",
]
