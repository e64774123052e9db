"""Thin CLI wrapper for boxbuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import click
import typer
from rich.console import Console
from rich.logging import RichHandler
from typer.core import TyperGroup

from boxbuild import __version__
from boxbuild.cancel import CancellationCoordinator, CoordinatorMode
from boxbuild.config import Settings, get_settings, print_settings_json
from boxbuild.errors import BoxError, ConfigError
from boxbuild.output import BuildLogger

if TYPE_CHECKING:
    from boxbuild.builds.orchestrator import Builder

INTERACTIVE_COMMANDS = ("repl", "shell")


class DefaultCommandGroup(TyperGroup):
    """Command group that treats an unknown first argument as a plan file.

    ``box Boxfile`` is the same as ``box build Boxfile``.
    """

    default_command = "build"

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        if args and not args[0].startswith("-") and self.get_command(ctx, args[0]) is None:
            args = [self.default_command, *args]
        return super().resolve_command(ctx, args)


app = typer.Typer(
    name="box",
    help="box - scripted container image builder",
    cls=DefaultCommandGroup,
    no_args_is_help=False,
)
console = Console()


@dataclass
class CliOptions:
    """Global options shared by all commands."""

    settings: Settings
    coordinator: CancellationCoordinator
    console: Console
    variables: dict[str, str] = field(default_factory=dict)
    cache: bool = True
    tag: str | None = None
    omit: list[str] = field(default_factory=list)
    trim: bool = True


def parse_vars(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``KEY=VALUE`` options.

    Raises:
        ConfigError: If a value has no ``=`` or an empty key.
    """
    variables: dict[str, str] = {}
    for value in values or []:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise ConfigError(f"Invalid variable {value!r}, expected KEY=VALUE")
        variables[key] = val
    return variables


def configure_logging(level: str) -> None:
    """Send diagnostics to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"box version {__version__}")
        raise typer.Exit()


def _options(ctx: typer.Context) -> CliOptions:
    root = ctx.find_root()
    assert isinstance(root.obj, CliOptions)
    return root.obj


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    var: Annotated[
        list[str] | None,
        typer.Option(
            "--var", "-v", help="Provide a variable to the build plan (KEY=VALUE)"
        ),
    ] = None,
    cache: Annotated[
        bool | None,
        typer.Option("--cache/--no-cache", help="Enable or disable the build cache"),
    ] = None,
    color: Annotated[
        bool | None,
        typer.Option("--color/--no-color", help="Force or disable colors"),
    ] = None,
    tty: Annotated[
        bool | None,
        typer.Option("--tty/--no-tty", help="Force or disable TTY features"),
    ] = None,
    tag: Annotated[
        str | None,
        typer.Option("--tag", "-t", help="Tag the last image with this name"),
    ] = None,
    omit: Annotated[
        list[str] | None,
        typer.Option("--omit", "-o", help="Omit a verb (can be repeated)"),
    ] = None,
    no_trim: Annotated[
        bool,
        typer.Option("--no-trim", help="Do not trim image ids and long steps"),
    ] = False,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging level (default from settings)"),
    ] = None,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """box - build container images from scripted plans."""
    settings = get_settings()
    configure_logging((log_level or settings.log_level).upper())

    try:
        variables = parse_vars(var)
    except ConfigError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(code=1) from None

    # Colors follow the TTY unless forced either way
    no_color = color is False or (color is None and tty is False)
    out = Console(force_terminal=tty, no_color=no_color, highlight=False)

    mode = (
        CoordinatorMode.INTERACTIVE
        if ctx.invoked_subcommand in INTERACTIVE_COMMANDS
        else CoordinatorMode.TERMINATE
    )
    ctx.obj = CliOptions(
        settings=settings,
        coordinator=CancellationCoordinator(mode),
        console=out,
        variables=variables,
        cache=settings.cache_enabled(cache),
        tag=tag,
        omit=list(omit or []),
        trim=not no_trim,
    )

    if ctx.invoked_subcommand is None:
        build(ctx, file=None, tag=None)


def make_builder(
    opts: CliOptions,
    name: str,
    show_run: bool = True,
    cache: bool | None = None,
) -> "Builder":
    """Create a builder connected to Docker for one plan.

    Raises:
        EngineError: If the Docker daemon is not reachable.
    """
    from boxbuild.builds.cache import SqlCacheStore
    from boxbuild.builds.orchestrator import BuildConfig, Builder
    from boxbuild.engine.docker import DockerEngine

    use_cache = opts.cache if cache is None else cache
    output = BuildLogger(name, console=opts.console, trim=opts.trim, show_run=show_run)
    engine = DockerEngine.from_settings(opts.settings, output=output.output)
    store = None
    if use_cache and opts.settings.persist_cache:
        store = SqlCacheStore.from_url(opts.settings.cache_db_url)
    return Builder(
        engine,
        BuildConfig(name=name, cache=use_cache, show_run=show_run, output=output),
        cache_store=store,
    )


@app.command()
def build(
    ctx: typer.Context,
    file: Annotated[
        str | None,
        typer.Argument(help="Plan file to build (default: Boxfile)"),
    ] = None,
    tag: Annotated[
        str | None,
        typer.Option("--tag", "-t", help="Tag the last image with this name"),
    ] = None,
) -> None:
    """Build one plan."""
    from boxbuild.evaluator import ScriptEvaluator

    opts = _options(ctx)
    path = file or opts.settings.default_plan
    if file is None and not Path(path).exists():
        typer.echo(ctx.find_root().get_help())
        raise typer.Exit()

    log = BuildLogger("main", console=opts.console, trim=opts.trim)
    tag = tag or opts.tag

    try:
        builder = make_builder(opts, path)
    except BoxError as e:
        log.error(e)
        raise typer.Exit(code=1) from None

    try:
        opts.coordinator.install_signal_handlers()
        builder.attach(opts.coordinator)
        evaluator = ScriptEvaluator(builder, opts.variables, opts.omit)
        try:
            result = evaluator.run_script(path)
        except BoxError as e:
            # Build errors were already reported by the builder
            if e is not builder.result.error:
                log.error(e)
            raise typer.Exit(code=1) from None

        if tag:
            try:
                builder.tag(tag)
            except BoxError as e:
                log.error(BoxError(f"Can't tag with tag {tag!r}: {e.message}", e.code))
                raise typer.Exit(code=1) from None

        log.finish(result.value)
    finally:
        builder.close()


@app.command()
def multi(
    ctx: typer.Context,
    files: Annotated[
        list[str],
        typer.Argument(help="Plan files to build concurrently"),
    ],
) -> None:
    """Build several plans concurrently."""
    from boxbuild.builds.multi import BuildJob, MultiBuild
    from boxbuild.plan.io import load_plan

    opts = _options(ctx)
    log = BuildLogger("main", console=opts.console, trim=opts.trim)
    omit = [*opts.omit, "debug"]

    try:
        plans = [load_plan(f, opts.variables, omit) for f in files]
    except BoxError as e:
        log.error(e)
        raise typer.Exit(code=1) from None

    opts.coordinator.install_signal_handlers()
    jobs: list[BuildJob] = []
    try:
        for plan in plans:
            builder = make_builder(opts, plan.name, show_run=False)
            builder.attach(opts.coordinator)
            jobs.append(BuildJob(builder, plan))

        multi_build = MultiBuild(jobs)
        multi_build.start()
        failure: BoxError | None = None
        try:
            multi_build.wait()
        except BoxError as e:
            failure = e

        for job, result in zip(jobs, multi_build.results, strict=True):
            if result is not None and result.succeeded:
                job.builder.output.finish(result.value)
        if failure is not None:
            raise failure
    except BoxError as e:
        log.error(e)
        raise typer.Exit(code=1) from None
    finally:
        for job in jobs:
            job.builder.close()


@app.command()
def repl(ctx: typer.Context) -> None:
    """Run the interactive build session."""
    from boxbuild.evaluator import ScriptEvaluator
    from boxbuild.repl import InteractiveSession

    opts = _options(ctx)

    def factory() -> ScriptEvaluator:
        builder = make_builder(opts, "", cache=False)
        return ScriptEvaluator(builder, opts.variables, opts.omit)

    opts.coordinator.install_signal_handlers()
    session = InteractiveSession(
        factory,
        opts.coordinator,
        console=opts.console,
        poll_interval=opts.settings.poll_interval,
    )
    try:
        code = session.run()
    except BoxError as e:
        BuildLogger("repl", console=opts.console).error(e)
        raise typer.Exit(code=1) from None
    raise typer.Exit(code=code)


app.command("shell", help="Run the interactive build session.")(repl)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Build cache:[/bold]")
        console.print(f"  Cache enabled:       {settings.cache_enabled()}")
        console.print(f"  Persist cache:       {settings.persist_cache}")
        console.print(f"  Database URL:        {settings.cache_db_url}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Default plan:        {settings.default_plan}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Engine:[/bold]")
        console.print(f"  Poll interval:       {settings.poll_interval}")
        console.print(f"  Docker timeout:      {settings.docker_timeout}")


cache_app = typer.Typer(help="Manage the persisted build cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("list")
def cache_list(
    verb: Annotated[
        str | None,
        typer.Option("--verb", help="Filter by step verb"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum entries to show"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List persisted cache entries."""
    from boxbuild.builds.cache import SqlCacheStore

    store = SqlCacheStore.from_url(get_settings().cache_db_url)
    entries = store.list_entries(verb=verb, limit=limit)

    if json_output:
        output = [
            {
                "key": e.key,
                "image_ref": e.image_ref,
                "verb": e.verb,
                "plan": e.plan,
                "hits": e.hits,
                "created_at": e.created_at.isoformat() if e.created_at else None,
                "last_used_at": e.last_used_at.isoformat() if e.last_used_at else None,
            }
            for e in entries
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    if not entries:
        console.print("[yellow]No cache entries found[/yellow]")
        return

    console.print(f"[bold]Found {len(entries)} cache entr{'y' if len(entries) == 1 else 'ies'}:[/bold]")
    console.print()
    for e in entries:
        console.print(f"  [green]{e.key[:23]}[/green] {e.verb}")
        console.print(f"    Image: {e.image_ref}")
        if e.plan:
            console.print(f"    Plan: {e.plan}")
        console.print(f"    Hits: {e.hits}")
        console.print()


@cache_app.command("clear")
def cache_clear() -> None:
    """Remove every persisted cache entry."""
    from boxbuild.builds.cache import SqlCacheStore

    store = SqlCacheStore.from_url(get_settings().cache_db_url)
    count = store.clear()
    console.print(f"[green]Removed {count} cache entr{'y' if count == 1 else 'ies'}[/green]")


if __name__ == "__main__":
    app()
