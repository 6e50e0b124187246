"""
claudepod Command Line Interface (CLI)

Builds per-profile development images and runs commands inside persistent,
per-project containers. With no command, the profile's default command is run;
an unrecognized first word is treated as ``run <word>``.
"""

import logging
import sys
import warnings
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import click
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from typer.core import TyperGroup

from claudepod.api import (
    Workspace,
    build_profile,
    check_profile,
    init_container,
    list_containers,
    reset as reset_containers,
    run_command,
)
from claudepod.core.profiles import DEFAULT_PROFILE_NAME
from claudepod.core.registry import frozen_profile, get_record
from claudepod.core.settings import ClaudepodSettings
from claudepod.errors import (
    ClaudepodError,
    ConfigError,
    LockStateWarning,
    RuntimeProcessError,
)
from claudepod.models.records import DEFAULT_LOGICAL_NAME

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True, soft_wrap=True)


class _DefaultRunGroup(TyperGroup):
    """
    Routes ``claudepod <word> ...`` to ``claudepod run <word> ...`` for unknown words.

    Leading options the group itself defines (``--log-level``, ``--help``) are
    skipped; scanning stops at the first other token, so ``claudepod -c dev shell``
    becomes ``claudepod run -c dev shell``.
    """

    def _group_options(self, ctx: click.Context) -> Dict[str, bool]:
        """Option name -> whether it consumes the next token."""
        options: Dict[str, bool] = {}
        for param in self.get_params(ctx):
            if isinstance(param, click.Option):
                takes_value = not (param.is_flag or param.count)
                for name in (*param.opts, *param.secondary_opts):
                    options[name] = takes_value
        return options

    def parse_args(self, ctx: click.Context, args: List[str]) -> List[str]:
        options = self._group_options(ctx)
        index = 0
        while index < len(args):
            name, has_inline_value = args[index].split("=", 1)[0], "=" in args[index]
            if name not in options:
                break
            index += 2 if options[name] and not has_inline_value else 1
        if index < len(args) and args[index] not in self.commands:
            args = [*args[:index], "run", *args[index:]]
        return super().parse_args(ctx, args)


app = typer.Typer(
    cls=_DefaultRunGroup,
    rich_markup_mode="markdown",
    invoke_without_command=True,
    no_args_is_help=False,
)


def make_workspace() -> Workspace:
    """Collaborators for this invocation (replaced in tests)."""
    return Workspace(settings=ClaudepodSettings.from_env(), cwd=Path.cwd())


def _fail(message: str, code: int = 1) -> None:
    err_console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(code)


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except RuntimeProcessError as err:
        _fail(str(err), code=err.returncode or 1)
    except ClaudepodError as err:
        _fail(str(err))


@contextmanager
def _show_warnings() -> Iterator[None]:
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", LockStateWarning)
        yield
    for item in caught:
        if issubclass(item.category, LockStateWarning):
            err_console.print(f"[yellow]Warning:[/yellow] {escape(str(item.message))}")
        else:
            warnings.showwarning(item.message, item.category, item.filename, item.lineno)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: $CLAUDEPOD_LOG_LEVEL or WARNING)."
    ),
) -> None:
    """Reproducible development containers with persistent per-project state."""
    settings = ClaudepodSettings.from_env()
    level = (log_level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if ctx.invoked_subcommand is None:
        _run(command=None, args=[], container=None)


@app.command()
def build(
    profile: str = typer.Argument(DEFAULT_PROFILE_NAME, help="Profile to build."),
    force: bool = typer.Option(False, "--force", help="Rebuild even if the image is up to date."),
    no_lock: bool = typer.Option(False, "--no-lock", help="Do not record the build in the lock file."),
) -> None:
    """Build the image for a profile if it is missing or stale."""
    ws = make_workspace()
    with _handle_errors():
        live = ws.load_profile(profile)
        outcome = build_profile(
            profile,
            live,
            ws.lock_store(profile),
            ws.runtime(live),
            ws.build_dir(profile),
            force=force,
            write_lock=not no_lock,
        )
    if outcome.built:
        console.print(f"[green]Built[/green] {outcome.record.image_tag}")
    else:
        console.print(f"[green]Up to date[/green] {outcome.record.image_tag}")


@app.command()
def check(
    profile: str = typer.Argument(DEFAULT_PROFILE_NAME, help="Profile to check."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show digests and image details."),
    strict: bool = typer.Option(False, "--strict", help="Exit non-zero if the image is missing or stale."),
) -> None:
    """Report whether the built image matches the profile. Never rebuilds."""
    ws = make_workspace()
    strict = strict or ws.settings.strict
    with _handle_errors(), _show_warnings():
        status = check_profile(ws.load_profile(profile), ws.lock_store(profile), strict=strict)
    if status.is_current:
        console.print(f"[green]{status.message()}[/green]")
    if verbose:
        console.print(f"State:        {status.state.value}")
        console.print(f"Profile hash: {status.digest}")
        if status.record is not None:
            console.print(f"Locked hash:  {status.record.digest}")
            console.print(f"Image:        {status.record.image_tag} ({status.record.image_id or 'unknown id'})")
            console.print(f"Built at:     {status.record.created_at.isoformat()}")


@app.command()
def init(
    profile: str = typer.Argument(DEFAULT_PROFILE_NAME, help="Profile to create the container from."),
    force: bool = typer.Option(False, "--force", help="Replace an existing container."),
    container: str = typer.Option(DEFAULT_LOGICAL_NAME, "--container", "-c", help="Logical container name."),
) -> None:
    """Create the persistent container for this project."""
    ws = make_workspace()
    with _handle_errors():
        live = ws.load_profile(profile)
        project_dir = ws.project_dir(create=True)
        record = init_container(
            project_dir,
            profile,
            live,
            ws.registry_store(project_dir),
            ws.lock_store(profile),
            ws.runtime(live),
            ws.build_dir(profile),
            logical_name=container,
            force=force,
        )
    console.print(
        f"[green]Created[/green] {record.identity} ('{record.logical_name}', profile '{record.profile_name}')"
    )


@app.command()
def reset(
    container: Optional[str] = typer.Option(None, "--container", "-c", help="Logical container name."),
    all_containers: bool = typer.Option(False, "--all", help="Remove every container of this project."),
) -> None:
    """Remove project containers and their records."""
    ws = make_workspace()
    with _handle_errors():
        project_dir = ws.project_dir()
        store = ws.registry_store(project_dir)
        records = list_containers(store) if all_containers else [get_record(store, container)]
        if not records:
            console.print("No containers to remove.")
            return
        removed = reset_containers(
            store,
            lambda record: ws.runtime(frozen_profile(record)),
            logical_name=container,
            all_containers=all_containers,
        )
    for record in removed:
        console.print(f"[green]Removed[/green] {record.identity} ('{record.logical_name}')")


def _run(command: Optional[str], args: List[str], container: Optional[str]) -> None:
    ws = make_workspace()
    with _handle_errors():
        project_dir = ws.project_dir()
        store = ws.registry_store(project_dir)
        record = get_record(store, container)
        frozen = frozen_profile(record)
        live = None
        try:
            live = ws.profiles.load(record.profile_name)
        except ConfigError as err:
            logger.debug("Skipping drift and lock checks: %s", err)
        if live is not None:
            # advisory unless strict; never rebuilds
            with _show_warnings():
                check_profile(
                    live, ws.lock_store(record.profile_name), strict=ws.settings.strict
                )
        result = run_command(
            project_dir,
            ws.cwd,
            store,
            ws.runtime(frozen),
            command=command,
            args=args,
            logical_name=container,
            live_profile=live,
        )
    if result.drift:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(result.drift)}")
    if result.exit_code != 0:
        raise typer.Exit(result.exit_code)


@app.command(
    context_settings={
        "allow_extra_args": True,
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
    },
    add_help_option=False,
)
def run(
    command: Optional[str] = typer.Argument(None, help="Command from the profile's [cmd] table."),
    args: Optional[List[str]] = typer.Argument(None, help="Arguments passed to the command."),
    container: Optional[str] = typer.Option(None, "--container", "-c", help="Logical container name."),
) -> None:
    """Run a command in the project's container."""
    _run(command=command, args=list(args or []), container=container)


@app.command("list")
def list_command() -> None:
    """List this project's containers."""
    ws = make_workspace()
    with _handle_errors():
        records = list_containers(ws.registry_store(ws.project_dir()))
    if not records:
        console.print("[yellow]No containers. Run 'claudepod init'.[/yellow]")
        return
    table = Table(title="Containers")
    table.add_column("Name", style="cyan")
    table.add_column("Identity", style="green")
    table.add_column("Profile")
    table.add_column("Image")
    table.add_column("Created", style="dim")
    for record in records:
        table.add_row(
            record.logical_name,
            record.identity,
            record.profile_name,
            record.image_tag,
            record.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def profiles() -> None:
    """List available profiles."""
    ws = make_workspace()
    store = ws.profiles
    store.ensure_default()
    table = Table(title=f"Profiles ({store.profiles_dir})")
    table.add_column("Name", style="cyan")
    for name in store.list_available():
        table.add_row(name)
    console.print(table)


if __name__ == "__main__":
    app()
