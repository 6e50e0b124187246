"""
claudepod/core/generator.py

Renders a profile into a container build recipe: a Dockerfile and the
entrypoint script it installs.

Rendering is a pure function of the profile and the template strings passed in
(by default the module-level templates below). Layers are ordered from least to
most frequently edited so the runtime's build cache survives routine profile
changes:

    base image -> environment -> OS packages -> language runtimes
    -> pip / npm -> custom steps and command install steps
    -> git identity -> shell configuration -> user / workdir -> entrypoint

Install commands and package names are emitted verbatim. The generator only
guarantees well-formed instruction boundaries; it does not vet what the user
asked to run.
"""

from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, StrictUndefined

from claudepod.core.atomic import atomic_write_text
from claudepod.models.profile import Profile

logger = logging.getLogger(__name__)

DOCKERFILE_NAME = "Dockerfile"
ENTRYPOINT_NAME = "entrypoint.sh"
ENTRYPOINT_PATH = "/usr/local/bin/claudepod-entrypoint"

DOCKERFILE_TEMPLATE = """\
# Generated by claudepod. Edit the profile, not this file.
FROM {{ base_image }}

ARG USER_UID=1000
ARG USER_GID=1000
ENV DEBIAN_FRONTEND=noninteractive
{% for key, value in environment %}
ENV {{ key }}={{ value | json_string }}
{% endfor %}

# --- OS packages ---
{% if apt_packages %}
RUN apt-get update && \\
    apt-get install -y --no-install-recommends \\
{% for pkg in apt_packages %}
        {{ pkg }} \\
{% endfor %}
    && rm -rf /var/lib/apt/lists/*
{% if fd_find_symlink %}
RUN ln -sf "$(command -v fdfind)" /usr/local/bin/fd
{% endif %}
{% endif %}
# --- language runtimes ---
{% if nodejs.enabled %}
{% if nodejs.source == "nodesource" %}
RUN curl -fsSL https://deb.nodesource.com/setup_{{ nodejs.version }}.x | bash - && \\
    apt-get install -y nodejs && \\
    rm -rf /var/lib/apt/lists/*
{% elif nodejs.source == "apt" %}
RUN apt-get update && \\
    apt-get install -y nodejs npm && \\
    rm -rf /var/lib/apt/lists/*
{% elif nodejs.source == "nvm" %}
ENV NVM_DIR=/usr/local/nvm
RUN mkdir -p "$NVM_DIR" && \\
    curl -fsSL https://raw.githubusercontent.com/nvm-sh/nvm/v0.39.7/install.sh | bash && \\
    . "$NVM_DIR/nvm.sh" && \\
    nvm install {{ nodejs.version }} && \\
    nvm alias default {{ nodejs.version }} && \\
    ln -sf "$(dirname "$(nvm which default)")"/* /usr/local/bin/
{% endif %}
{% endif %}
{% if github_cli %}
RUN mkdir -p -m 755 /etc/apt/keyrings && \\
    curl -fsSL https://cli.github.com/packages/githubcli-archive-keyring.gpg \\
        -o /etc/apt/keyrings/githubcli-archive-keyring.gpg && \\
    chmod go+r /etc/apt/keyrings/githubcli-archive-keyring.gpg && \\
    echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/githubcli-archive-keyring.gpg] https://cli.github.com/packages stable main" \\
        > /etc/apt/sources.list.d/github-cli.list && \\
    apt-get update && \\
    apt-get install -y gh && \\
    rm -rf /var/lib/apt/lists/*
{% endif %}
# --- package managers ---
{% if pip_packages %}
RUN pip3 install --no-cache-dir --break-system-packages {{ pip_packages | join(" ") }}
{% endif %}
{% if npm_packages %}
RUN npm install -g {{ npm_packages | join(" ") }}
{% endif %}
# --- custom steps ---
{% for dep in custom_dependencies %}
# {{ dep.name }}
{% for line in dep.commands %}
RUN {{ line }}
{% endfor %}
{% endfor %}
{% for name, install in command_installs %}
# command: {{ name }}
{{ install }}
{% endfor %}
# --- git identity ---
{% if git_user_name %}
RUN git config --system user.name {{ git_user_name | shell_quote }}
{% endif %}
{% if git_user_email %}
RUN git config --system user.email {{ git_user_email | shell_quote }}
{% endif %}
# --- shell ---
RUN { \\
{% for name, value in aliases %}
    printf '%s\\n' {{ ("alias " ~ name ~ "=" ~ (value | shell_quote)) | shell_quote }}; \\
{% endfor %}
{% if history_search %}
    printf '%s\\n' "bind '\\"\\\\e[A\\": history-search-backward'"; \\
    printf '%s\\n' "bind '\\"\\\\e[B\\": history-search-forward'"; \\
{% endif %}
    true; \\
    } >> /etc/bash.bashrc

# --- user ---
RUN if getent passwd {{ user }} >/dev/null; then userdel -r {{ user }} || true; fi && \\
    if getent passwd "$USER_UID" >/dev/null; then userdel -r "$(getent passwd "$USER_UID" | cut -d: -f1)" || true; fi && \\
    if ! getent group "$USER_GID" >/dev/null; then groupadd -g "$USER_GID" {{ user }}; fi && \\
    useradd -m -u "$USER_UID" -g "$USER_GID" -d {{ home_dir }} -s /bin/bash {{ user }} && \\
    mkdir -p {{ home_dir }} && chown -R "$USER_UID:$USER_GID" {{ home_dir }}
ENV HOME={{ home_dir }}
ENV CLAUDEPOD_USER={{ user }}
WORKDIR {{ home_dir }}

# --- entrypoint ---
COPY {{ entrypoint_name }} {{ entrypoint_path }}
RUN chmod 0755 {{ entrypoint_path }}
ENTRYPOINT ["{{ entrypoint_path }}"]
CMD ["sleep", "infinity"]
"""

ENTRYPOINT_TEMPLATE = """\
#!/bin/sh
# Generated by claudepod.
set -e

TARGET_USER="${CLAUDEPOD_USER:-{{ user }}}"

if [ "$(id -u)" = "0" ]; then
    if [ -n "$CLAUDEPOD_UID" ] && [ "$CLAUDEPOD_UID" != "$(id -u "$TARGET_USER")" ]; then
        usermod -o -u "$CLAUDEPOD_UID" "$TARGET_USER"
    fi
    if [ -n "$CLAUDEPOD_GID" ] && [ "$CLAUDEPOD_GID" != "$(id -g "$TARGET_USER")" ]; then
        groupmod -o -g "$CLAUDEPOD_GID" "$(id -gn "$TARGET_USER")"
    fi
    chown "$(id -u "$TARGET_USER"):$(id -g "$TARGET_USER")" {{ home_dir }}
fi

if [ -n "$CLAUDEPOD_WORKDIR" ] && [ -d "$CLAUDEPOD_WORKDIR" ]; then
    cd "$CLAUDEPOD_WORKDIR"
fi

if [ "$(id -u)" = "0" ] && command -v gosu >/dev/null 2>&1; then
    exec gosu "$TARGET_USER" "$@"
fi
exec "$@"
"""


@dataclass(frozen=True)
class BuildRecipe:
    """Rendered build inputs for one profile."""

    dockerfile: str
    entrypoint: str


def write_build_context(recipe: BuildRecipe, output_dir: Path) -> Dict[str, Path]:
    """
    Write the recipe into `output_dir` (atomically, file by file).

    Returns
    -------
    Dict[str, Path]
        Paths of the written Dockerfile and entrypoint script.
    """
    output_dir = Path(output_dir)
    dockerfile_path = output_dir / DOCKERFILE_NAME
    entrypoint_path = output_dir / ENTRYPOINT_NAME
    atomic_write_text(dockerfile_path, recipe.dockerfile, mode=0o644)
    atomic_write_text(entrypoint_path, recipe.entrypoint, mode=0o755)
    logger.info("Generated %s and %s in %s", DOCKERFILE_NAME, ENTRYPOINT_NAME, output_dir)
    return {"dockerfile": dockerfile_path, "entrypoint": entrypoint_path}


def _json_string(value: str) -> str:
    # Dockerfile ENV accepts JSON-style double-quoted strings
    return json.dumps(value, ensure_ascii=False)


def _environment() -> Environment:
    env = Environment(
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["shell_quote"] = shlex.quote
    env.filters["json_string"] = _json_string
    return env


def build_context(profile: Profile) -> Dict[str, Any]:
    """Template variables for a profile. Mappings are emitted in sorted order."""
    deps = profile.dependencies
    apt_packages = sorted(set(deps.apt))
    command_installs: List[tuple] = [
        (name, definition.install.rstrip())
        for name, definition in sorted(profile.cmd.commands.items())
        if definition.install
    ]
    return {
        "base_image": profile.container.base_image,
        "user": profile.container.user,
        "home_dir": profile.container.home_dir,
        "environment": sorted(profile.environment.items()),
        "apt_packages": apt_packages,
        "fd_find_symlink": "fd-find" in apt_packages,
        "nodejs": profile.dependencies.nodejs.model_dump(),
        "github_cli": deps.github_cli.enabled,
        "pip_packages": list(deps.pip),
        "npm_packages": list(deps.npm),
        "custom_dependencies": [dep.model_dump() for dep in deps.custom],
        "command_installs": command_installs,
        "git_user_name": profile.git.user_name,
        "git_user_email": profile.git.user_email,
        "aliases": sorted(profile.shell.aliases.items()),
        "history_search": profile.shell.history_search,
        "entrypoint_name": ENTRYPOINT_NAME,
        "entrypoint_path": ENTRYPOINT_PATH,
    }


def render(
    profile: Profile,
    dockerfile_template: Optional[str] = None,
    entrypoint_template: Optional[str] = None,
) -> BuildRecipe:
    """
    Render the build recipe for `profile`.

    Parameters
    ----------
    profile : Profile
        Profile to render.
    dockerfile_template, entrypoint_template : Optional[str]
        Jinja2 template text; the module defaults are used when omitted.

    Returns
    -------
    BuildRecipe
    """
    env = _environment()
    context = build_context(profile)
    dockerfile = env.from_string(dockerfile_template or DOCKERFILE_TEMPLATE).render(**context)
    entrypoint = env.from_string(entrypoint_template or ENTRYPOINT_TEMPLATE).render(**context)
    return BuildRecipe(dockerfile=dockerfile, entrypoint=entrypoint)
