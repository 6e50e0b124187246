"""
claudepod/core/placeholders.py

Host-path placeholder expansion for mount paths and the container work dir.

Profiles (and the digests computed from them) always keep placeholders such as
``$PWD`` or ``~`` unexpanded; they are substituted only when a container is
created or a command is run.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Mapping, Optional

_VAR_PATTERN = re.compile(r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))")


def expand_placeholders(
    text: str,
    cwd: Path,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Expand ``$PWD``, ``$HOME``, a leading ``~``, ``$VAR`` and ``${VAR}``.

    ``$PWD`` always means `cwd` (the caller's directory, or the project
    directory when creating a container), regardless of the environment.
    Unknown variables are left in place.

    Parameters
    ----------
    text : str
        Value taken from the profile.
    cwd : Path
        Directory substituted for ``$PWD``.
    env : Optional[Mapping[str, str]]
        Variables to expand; defaults to ``os.environ``.
    """
    variables = dict(os.environ if env is None else env)
    variables["PWD"] = str(cwd)
    home = variables.get("HOME") or str(Path.home())
    variables.setdefault("HOME", home)

    if text == "~" or text.startswith("~/"):
        text = home + text[1:]

    def _substitute(match: "re.Match[str]") -> str:
        name = match.group("braced") or match.group("bare")
        return variables.get(name, match.group(0))

    return _VAR_PATTERN.sub(_substitute, text)
