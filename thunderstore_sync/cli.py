"""Command-line interface for thunderstore-sync."""

import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from .api import FilterOptions, IndexAPIError, SortOptions, SORT_FIELDS
from .config import ConfigError, Settings
from .installer import InstallError
from .orphans import RemovalChoice
from .profile_export import ExportError
from .profiles import InstalledMod, Profile, ProfileError
from .service import (
    AlreadyInstalled,
    ModManagerService,
    NoGamePathConfigured,
    NoProfileSelected,
    PackageNotFound,
    ProgressCallback,
)

console = Console()

# Errors that end a command with a message instead of a traceback
HANDLED_ERRORS = (
    AlreadyInstalled,
    ConfigError,
    ExportError,
    IndexAPIError,
    InstallError,
    NoGamePathConfigured,
    NoProfileSelected,
    PackageNotFound,
    ProfileError,
)


def _fail(message: object) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def _service(ctx: click.Context) -> ModManagerService:
    if "service" not in ctx.obj:
        try:
            settings = Settings.load(ctx.obj.get("data_dir"))
            ctx.obj["service"] = ModManagerService(settings)
        except (ConfigError, ProfileError) as e:
            _fail(e)
    return ctx.obj["service"]


def _find_mod(profile: Profile, ident: str) -> InstalledMod:
    """Look a mod up by install id or package name."""
    mod = profile.get_mod(ident) or profile.find_package(ident)
    if mod is None:
        _fail(f"{ident} is not in profile {profile.name}")
    return mod


def _active_profile(service: ModManagerService) -> Profile:
    profile = service.active_profile
    if profile is None:
        _fail("No profile selected. Run 'ts-sync profile create' or 'ts-sync profile select'.")
    return profile


def _progress_bar() -> Progress:
    return Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(bar_width=30),
        "[progress.percentage]{task.percentage:>3.0f}%",
        console=console,
    )


def _progress_callback(progress: Progress) -> ProgressCallback:
    task = progress.add_task("Working", total=1.0)

    def callback(event: str, pct: float, msg: str) -> None:
        progress.update(task, completed=pct, description=msg)

    return callback


@click.group()
@click.option(
    "--data-dir",
    envvar="TS_SYNC_HOME",
    type=click.Path(file_okay=False, path_type=Path),
    help="Data directory (or set TS_SYNC_HOME env var)",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx: click.Context, data_dir: Path | None, verbose: bool) -> None:
    """Manage Thunderstore mod profiles."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir


# -- profiles --

@main.group()
def profile() -> None:
    """Create, list, select and delete profiles."""


@profile.command(name="list")
@click.pass_context
def profile_list(ctx: click.Context) -> None:
    """List profiles."""
    service = _service(ctx)
    profiles = service.list_profiles()
    if not profiles:
        console.print("No profiles yet.")
        return

    active = service.active_profile
    table = Table(title="Profiles")
    table.add_column("", width=1)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Game")
    table.add_column("Mods", justify="right")
    for p in profiles:
        table.add_row(
            "*" if active and active.id == p.id else "",
            p.id[:8],
            p.name,
            p.game_identifier,
            str(len(p.mods)),
        )
    console.print(table)


@profile.command(name="create")
@click.argument("name")
@click.argument("game_id")
@click.pass_context
def profile_create(ctx: click.Context, name: str, game_id: str) -> None:
    """
    Create a profile and select it.

    GAME_ID: Thunderstore community identifier, e.g. lethal-company
    """
    try:
        created = _service(ctx).create_profile(name, game_id)
    except HANDLED_ERRORS as e:
        _fail(e)
    console.print(f"[green]Created profile[/green] {created.name} ({created.id[:8]})")


def _resolve_profile_id(service: ModManagerService, ident: str) -> str:
    """Match a profile by id, id prefix or name."""
    for p in service.list_profiles():
        if p.id == ident or p.name == ident:
            return p.id
    matches = [p for p in service.list_profiles() if p.id.startswith(ident)]
    if len(matches) == 1:
        return matches[0].id
    _fail(f"No unique profile matches {ident}")


@profile.command(name="select")
@click.argument("profile_ident")
@click.pass_context
def profile_select(ctx: click.Context, profile_ident: str) -> None:
    """Make a profile the active one."""
    service = _service(ctx)
    selected = service.select_profile(_resolve_profile_id(service, profile_ident))
    console.print(f"Active profile: [cyan]{selected.name}[/cyan]")


@profile.command(name="delete")
@click.argument("profile_ident")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def profile_delete(ctx: click.Context, profile_ident: str, yes: bool) -> None:
    """Delete a profile and its cached mods."""
    service = _service(ctx)
    profile_id = _resolve_profile_id(service, profile_ident)
    if not yes and not click.confirm(f"Delete profile {profile_ident}?"):
        return
    try:
        service.delete_profile(profile_id)
    except HANDLED_ERRORS as e:
        _fail(e)
    console.print("[green]Profile deleted[/green]")


@profile.command(name="show")
@click.pass_context
def profile_show(ctx: click.Context) -> None:
    """Show the mods of the active profile."""
    current = _active_profile(_service(ctx))
    table = Table(title=f"{current.name} ({current.game_identifier})")
    table.add_column("Mod", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Enabled")
    for mod in current.mods:
        table.add_row(
            mod.package_name,
            mod.version_number,
            "[green]yes[/green]" if mod.enabled else "[yellow]no[/yellow]",
        )
    console.print(table)


# -- browsing --

@main.command()
@click.argument("game_id")
@click.argument("query", required=False, default="")
@click.option("--page", default=0, show_default=True)
@click.option("--page-size", default=20, show_default=True)
@click.option("--sort", "sort_field", type=click.Choice(sorted(SORT_FIELDS)), default="last_updated")
@click.option("--asc", is_flag=True, help="Sort ascending")
@click.option("--category", "categories", multiple=True, help="Only packages in these categories")
@click.option("--nsfw", is_flag=True, help="Include NSFW packages")
@click.option("--deprecated", is_flag=True, help="Include deprecated packages")
@click.option("--modpacks", is_flag=True, help="Only modpacks")
@click.pass_context
def search(
    ctx: click.Context,
    game_id: str,
    query: str,
    page: int,
    page_size: int,
    sort_field: str,
    asc: bool,
    categories: tuple[str, ...],
    nsfw: bool,
    deprecated: bool,
    modpacks: bool,
) -> None:
    """Search the package index of a community."""
    filters = FilterOptions(
        nsfw=nsfw,
        deprecated=deprecated,
        categories=list(categories),
        mods=not modpacks,
        modpacks=modpacks,
    )
    sort = SortOptions(field=sort_field, direction="asc" if asc else "desc")
    try:
        with console.status(f"Loading package index for {game_id}..."):
            packages = _service(ctx).search(game_id, query, page, page_size, sort, filters)
    except IndexAPIError as e:
        _fail(e)

    if not packages:
        console.print("No packages found.")
        return

    table = Table(title=f"{game_id} packages (page {page})")
    table.add_column("Package", style="cyan")
    table.add_column("Latest", style="green")
    table.add_column("Downloads", justify="right")
    table.add_column("Rating", justify="right")
    for package in packages:
        latest = package.latest
        name = package.full_name
        if package.is_pinned:
            name = f"[bold]{name}[/bold]"
        table.add_row(
            name[:50],
            latest.version_number if latest else "-",
            f"{package.total_downloads:,}",
            str(package.rating_score),
        )
    console.print(table)


@main.command()
@click.pass_context
def games(ctx: click.Context) -> None:
    """List the communities on Thunderstore."""
    try:
        with console.status("Fetching communities..."):
            communities = _service(ctx).api.fetch_communities()
    except IndexAPIError as e:
        _fail(e)

    table = Table(title="Communities")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    for community in sorted(communities, key=lambda c: c.get("identifier", "")):
        table.add_row(community.get("identifier", ""), community.get("name", ""))
    console.print(table)


@main.command()
@click.argument("game_id")
@click.pass_context
def categories(ctx: click.Context, game_id: str) -> None:
    """List the package categories used in a community."""
    try:
        names = _service(ctx).api.get_available_categories(game_id)
    except IndexAPIError as e:
        _fail(e)
    for name in names:
        console.print(f"  - {name}")


# -- install / uninstall --

@main.command()
@click.argument("package")
@click.option("--version", "version", help="Install this version instead of the latest")
@click.pass_context
def install(ctx: click.Context, package: str, version: str | None) -> None:
    """
    Install a package and its dependencies into the active profile.

    PACKAGE: namespace-name, optionally with a -X.Y.Z suffix
    """
    service = _service(ctx)
    try:
        with _progress_bar() as progress:
            outcome = service.install_package(
                package, version, on_progress=_progress_callback(progress)
            )
    except HANDLED_ERRORS as e:
        _fail(e)

    console.print(f"[green]Installed[/green] {outcome.package}")
    deps = [name for name in outcome.installed if name != outcome.package]
    if deps:
        console.print(f"  with dependencies: {', '.join(deps)}")
    for name in outcome.unknown:
        console.print(f"  [yellow]Unknown dependency:[/yellow] {name}")
    for name, error in outcome.failed:
        console.print(f"  [red]Failed:[/red] {name}: {error}")


@main.command()
@click.argument("mod")
@click.option(
    "--with",
    "choice",
    type=click.Choice(["none", "orphans", "all"]),
    help="Also remove orphaned dependencies or all installed dependencies",
)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def uninstall(ctx: click.Context, mod: str, choice: str | None, yes: bool) -> None:
    """
    Remove a mod from the active profile.

    MOD: install id or namespace-name
    """
    service = _service(ctx)
    target = _find_mod(_active_profile(service), mod)
    choices = {
        "none": RemovalChoice.MOD_ONLY,
        "orphans": RemovalChoice.WITH_ORPHANS,
        "all": RemovalChoice.WITH_ALL_DEPS,
    }

    plan = None
    try:
        if choice is None:
            plan = service.plan_uninstall(target.uuid4)
            if plan.needs_choice:
                console.print(f"[bold]{target.package_name}[/bold] has installed dependencies:")
                for dep in plan.all_deps:
                    tag = " [yellow](orphan)[/yellow]" if dep in plan.orphans else ""
                    console.print(f"  - {dep.package_name}{tag}")
                choice = click.prompt(
                    "Remove", type=click.Choice(list(choices)), default="orphans"
                )
            else:
                if not yes and not click.confirm(f"Remove {target.package_name}?"):
                    return
                choice = "none"
        removed = service.uninstall(target.uuid4, choices[choice], plan=plan)
    except HANDLED_ERRORS as e:
        _fail(e)

    for entry in removed:
        console.print(f"[green]Removed[/green] {entry.package_name}")


@main.command()
@click.argument("mod")
@click.pass_context
def toggle(ctx: click.Context, mod: str) -> None:
    """Enable or disable a mod. Run 'sync' to apply."""
    service = _service(ctx)
    target = _find_mod(_active_profile(service), mod)
    try:
        enabled = service.toggle_mod(target.uuid4)
    except HANDLED_ERRORS as e:
        _fail(e)
    state = "[green]enabled[/green]" if enabled else "[yellow]disabled[/yellow]"
    console.print(f"{target.package_name} {state}")


@main.command()
@click.option("--profile", "profile_ident", help="Sync this profile instead of the active one")
@click.pass_context
def sync(ctx: click.Context, profile_ident: str | None) -> None:
    """Make the game's plugin directory match the profile."""
    service = _service(ctx)
    profile_id = _resolve_profile_id(service, profile_ident) if profile_ident else None
    try:
        with _progress_bar() as progress:
            report = service.sync_profile(profile_id, on_progress=_progress_callback(progress))
    except HANDLED_ERRORS as e:
        _fail(e)

    if report.no_changes:
        console.print("[green]No changes needed.[/green]")
        return
    console.print(report.summary())
    for name, error in report.failed:
        console.print(f"  [red]Failed:[/red] {name}: {error}")


# -- import / export --

@main.command(name="import")
@click.argument("source")
@click.argument("game_id")
@click.option("--name", help="Profile name (defaults to the exported name)")
@click.pass_context
def import_(ctx: click.Context, source: str, game_id: str, name: str | None) -> None:
    """
    Create a profile from an .r2z file or a share code.

    SOURCE: path to an .r2z export, or a profile code
    """
    service = _service(ctx)
    try:
        with _progress_bar() as progress:
            result = service.import_profile(
                source, game_id, name, on_progress=_progress_callback(progress)
            )
    except HANDLED_ERRORS as e:
        _fail(e)

    console.print(
        f"[green]Imported[/green] {result.profile.name}: "
        f"{len(result.installed)} installed, {result.disabled} disabled"
    )
    if result.unknown:
        console.print(f"[yellow]Not found:[/yellow] {', '.join(result.unknown)}")
    for mod_name, error in result.failed:
        console.print(f"  [red]Failed:[/red] {mod_name}: {error}")


@main.command()
@click.argument("dest", type=click.Path(path_type=Path), default=Path("."))
@click.pass_context
def export(ctx: click.Context, dest: Path) -> None:
    """Write the active profile to an .r2z file."""
    try:
        path = _service(ctx).export_profile(dest)
    except HANDLED_ERRORS as e:
        _fail(e)
    console.print(f"[green]Exported to[/green] {path}")


@main.command()
@click.pass_context
def share(ctx: click.Context) -> None:
    """Upload the active profile and print its code."""
    try:
        code = _service(ctx).share_profile()
    except HANDLED_ERRORS as e:
        _fail(e)
    console.print(f"Profile code: [bold cyan]{code}[/bold cyan]")


# -- settings / cache --

@main.command(name="cache-clear")
@click.option("--profile", "profile_ident", help="Only clear this profile's cache")
@click.pass_context
def cache_clear(ctx: click.Context, profile_ident: str | None) -> None:
    """Delete cached mod payloads."""
    service = _service(ctx)
    profile_id = _resolve_profile_id(service, profile_ident) if profile_ident else None
    result = service.clear_cache(profile_id)
    console.print(
        f"Cleared {result.cleared} cached mods ({result.bytes_freed / 1024 / 1024:.1f} MB)"
    )


@main.command(name="set-game-path")
@click.argument("game_id")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def set_game_path(ctx: click.Context, game_id: str, path: Path) -> None:
    """Set the install directory of a game."""
    try:
        _service(ctx).set_game_path(game_id, path)
    except HANDLED_ERRORS as e:
        _fail(e)
    console.print(f"{game_id}: [cyan]{path}[/cyan]")


@main.command(name="legacy-cache")
@click.argument("state", type=click.Choice(["on", "off"]))
@click.pass_context
def legacy_cache(ctx: click.Context, state: str) -> None:
    """Keep per-profile copies of installed mods for faster re-installs."""
    try:
        _service(ctx).set_use_legacy_cache(state == "on")
    except HANDLED_ERRORS as e:
        _fail(e)
    console.print(f"Legacy cache [cyan]{state}[/cyan]")


if __name__ == "__main__":
    main()
