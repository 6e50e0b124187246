"""
claudepod/core/identity.py

Deterministic container names for (project directory, logical name) pairs.
"""

import hashlib
from pathlib import Path
from typing import Union

IDENTITY_PREFIX = "claudepod-"
IDENTITY_HASH_LENGTH = 12


def container_identity(project_path: Union[str, Path], logical_name: str) -> str:
    """
    Runtime-visible container name for a project and logical name.

    The same absolute project path and logical name always yield the same
    identity, on any machine and across runs. The path is made absolute but not
    resolved, so two distinct checkouts never collide through a shared symlink.

    Parameters
    ----------
    project_path : Union[str, Path]
        Project directory.
    logical_name : str
        Per-project container name (``main`` by default).

    Returns
    -------
    str
        ``claudepod-`` followed by the first 12 hex characters of the SHA-256
        of ``"<absolute path>\\0<logical name>"``.
    """
    absolute = Path(project_path).absolute()
    payload = f"{absolute}\0{logical_name}".encode("utf-8")
    return IDENTITY_PREFIX + hashlib.sha256(payload).hexdigest()[:IDENTITY_HASH_LENGTH]
