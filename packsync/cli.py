from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

import typer
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import installer as installer_module
from . import logs as logs_module
from .config import (
    USER_CONFIG_PATH,
    ConfigError,
    InstallerConfig,
    load_config,
    load_user_config,
    normalize_source,
    save_user_config,
)
from .errors import InstallerError
from .http import CachedHttpClient
from .installer import EventKind, InstallCommand, InstallerEvent, InstallerProfile
from .launchers import Launcher, get_launcher

app = typer.Typer(help="Install and update modpacks published on GitHub")
user_config_app = typer.Typer(help="Manage user-level defaults")
app.add_typer(user_config_app, name="config")

_rich_console = Console()

_EVENT_STYLES = {
    EventKind.STARTED: "cyan",
    EventKind.STEP: "bright_black",
    EventKind.FINISHED: "green",
    EventKind.FAILED: "red",
    EventKind.SKIPPED: "yellow",
}


def _fail(message: str, code: int = 1) -> None:
    typer.secho(message, err=True, fg="red")
    raise typer.Exit(code=code)


def _load_or_exit() -> InstallerConfig:
    try:
        return load_config()
    except ConfigError as exc:
        _fail(str(exc), code=2)


def _get_config(ctx: typer.Context) -> InstallerConfig:
    if ctx.obj is None:
        ctx.obj = {}
    cfg = ctx.obj.get("config")
    if cfg is None:
        cfg = _load_or_exit()
        ctx.obj["config"] = cfg
    return cfg


def _get_launcher(cfg: InstallerConfig) -> Launcher:
    try:
        return get_launcher(cfg.launcher, cfg)
    except ConfigError as exc:
        _fail(str(exc), code=2)


def _run(coro):
    try:
        return asyncio.run(coro)
    except ConfigError as exc:
        _fail(str(exc), code=2)
    except InstallerError as exc:
        _fail(f"{exc.kind.value}: {exc}")
    except OSError as exc:
        _fail(f"filesystem: {exc}")


def _print_event(event: InstallerEvent) -> None:
    typer.secho(event.message, fg=_EVENT_STYLES.get(event.kind, "white"))


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    ctx.obj = ctx.obj or {}
    cfg = _get_config(ctx)
    logs_module.configure_logging(cfg, verbose=verbose, console=Console(stderr=True))


@user_config_app.command("show")
def user_config_show(ctx: typer.Context):
    """Display the effective configuration."""
    cfg = _get_config(ctx)
    table = Table(title="Configuration", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Modpack source", cfg.modpack_source)
    table.add_row("Launcher", cfg.launcher)
    table.add_row("GitHub token", "(set)" if cfg.github_token else "(not set)")
    table.add_row("Concurrency", str(cfg.concurrency))
    table.add_row("Log file", str(cfg.log_file))
    table.add_row("File", str(USER_CONFIG_PATH))
    _rich_console.print(table)


@user_config_app.command("set-launcher")
def user_config_set_launcher(
    value: str = typer.Argument(..., help="vanilla, multimc-MultiMC or multimc-PrismLauncher"),
):
    try:
        get_launcher(value)
    except ConfigError as exc:
        _fail(str(exc), code=2)
    cfg = load_user_config()
    cfg.launcher = value
    save_user_config(cfg)
    typer.secho(f"Launcher set to {value}", fg="green")


@user_config_app.command("set-source")
def user_config_set_source(value: str = typer.Argument(..., help="GitHub repository as owner/repo")):
    try:
        source = normalize_source(value)
    except ConfigError as exc:
        _fail(str(exc), code=2)
    cfg = load_user_config()
    cfg.modpack_source = source
    save_user_config(cfg)
    typer.secho(f"Modpack source set to {source}", fg="green")


@app.command("branches")
def branches_command(ctx: typer.Context):
    """List the modpack branches that can be installed."""
    cfg = _get_config(ctx)

    async def _list() -> List[str]:
        async with CachedHttpClient.from_config(cfg) as client:
            return await installer_module.list_branches(client, cfg.modpack_source)

    for branch in _run(_list()):
        typer.echo(branch)


async def _with_profile(cfg: InstallerConfig, branch: str, action):
    launcher = _get_launcher(cfg)
    async with CachedHttpClient.from_config(cfg) as client:
        profile = await installer_module.initialize(
            cfg.modpack_source, branch, launcher, client, concurrency=cfg.concurrency
        )
        return await action(profile)


@app.command("show")
def show_command(ctx: typer.Context, branch: str = typer.Argument(..., help="Modpack branch")):
    """Show the remote manifest and the state of the local install."""
    cfg = _get_config(ctx)

    async def _show(profile: InstallerProfile) -> None:
        manifest = profile.manifest
        table = Table(title=manifest.name, box=box.MINIMAL_DOUBLE_HEAD)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Subtitle", manifest.subtitle)
        table.add_row("Version", Text(manifest.modpack_version, style="cyan"))
        table.add_row("Loader", Text(manifest.loader.version_id, style="magenta"))
        table.add_row("Items", f"{len(manifest.mods)} mods, {len(manifest.shaderpacks)} shaderpacks, "
                      f"{len(manifest.resourcepacks)} resourcepacks")
        table.add_row("Install dir", Text(str(profile.launcher.modpack_root(manifest.uuid, create=False)), style="dim"))
        installed = Text("Yes", style="bold green") if profile.installed else Text("No", style="bold red")
        table.add_row("Installed", installed)
        if profile.installed:
            update = Text("Yes", style="bold yellow") if profile.update_available else Text("No", style="green")
            table.add_row("Update available", update)
        _rich_console.print(table)

        if manifest.features:
            features = Table(title="Features", box=box.MINIMAL)
            features.add_column("ID", style="cyan")
            features.add_column("Name")
            features.add_column("Enabled")
            for feat in manifest.features:
                features.add_row(feat.id, feat.name, "yes" if feat.id in profile.enabled_features else "no")
            _rich_console.print(features)

    _run(_with_profile(cfg, branch, _show))


def selected_features(current: List[str], enable: Optional[List[str]], disable: Optional[List[str]]) -> Optional[Tuple[str, ...]]:
    """Apply ``--feature``/``--disable`` to the current selection; None when neither was given."""
    if not enable and not disable:
        return None
    removed = set(disable or ())
    selection = [feat for feat in [*current, *(enable or ())] if feat not in removed]
    return tuple(dict.fromkeys(selection))


def _install(
    cfg: InstallerConfig,
    branch: str,
    enable: Optional[List[str]],
    disable: Optional[List[str]],
    force_update: bool,
) -> None:
    async def _execute(profile: InstallerProfile) -> None:
        command = InstallCommand(
            features=selected_features(profile.enabled_features, enable, disable),
            force_update=force_update,
        )
        events: asyncio.Queue = asyncio.Queue()
        try:
            await installer_module.run_command(profile, command, events)
        finally:
            while not events.empty():
                _print_event(events.get_nowait())

    _run(_with_profile(cfg, branch, _execute))


@app.command("install")
def install_command(
    ctx: typer.Context,
    branch: str = typer.Argument(..., help="Modpack branch"),
    feature: Optional[List[str]] = typer.Option(None, "--feature", "-f", help="Enable an optional feature"),
    disable: Optional[List[str]] = typer.Option(None, "--disable", "-d", help="Disable an optional feature"),
    update: bool = typer.Option(False, "--update", help="Re-run the update even if versions match"),
):
    """Install the modpack, or update it when a new version or feature selection applies."""
    _install(_get_config(ctx), branch, feature, disable, update)


@app.command("update")
def update_command(
    ctx: typer.Context,
    branch: str = typer.Argument(..., help="Modpack branch"),
    feature: Optional[List[str]] = typer.Option(None, "--feature", "-f", help="Enable an optional feature"),
    disable: Optional[List[str]] = typer.Option(None, "--disable", "-d", help="Disable an optional feature"),
):
    """Update an installed modpack against its remote manifest."""
    _install(_get_config(ctx), branch, feature, disable, True)


@app.command("uninstall")
def uninstall_command(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Remove every installed instance of the configured modpack source."""
    cfg = _get_config(ctx)
    launcher = _get_launcher(cfg)
    if not yes:
        typer.confirm(f"Remove all instances of {cfg.modpack_source} from {launcher.root}?", abort=True)
    removed = installer_module.uninstall(launcher, cfg.modpack_source)
    if not removed:
        typer.secho("Nothing to uninstall.", fg="yellow")
    for path in removed:
        typer.secho(f"Removed {path}", fg="green")


@app.command("logs")
def logs_command(
    ctx: typer.Context,
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to display"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
):
    """Tail the installer log."""
    cfg = _get_config(ctx)
    try:
        logs_module.tail_logs(cfg, lines=lines, follow=follow)
    except RuntimeError as exc:
        _fail(str(exc))
