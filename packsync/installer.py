from __future__ import annotations

import asyncio
import base64
import dataclasses
import logging
import shutil
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from . import diff, downloads, includes, launchers, loader
from .errors import InstallerError, ManifestError
from .http import CachedHttpClient
from .launchers import Launcher, LauncherKind
from .manifest import (
    Category,
    Manifest,
    default_enabled_features,
    ensure_default_feature,
    load_local_manifest,
    local_manifest_path,
    parse_manifest,
    save_local_manifest,
)

logger = logging.getLogger(__name__)

GITHUB_API = includes.GITHUB_API
GITHUB_RAW = "https://raw.githubusercontent.com/"


@dataclass
class InstallerProfile:
    """Session state binding a remote manifest to a launcher and a feature selection."""

    manifest: Manifest
    launcher: Launcher
    http_client: CachedHttpClient
    modpack_source: str
    modpack_branch: str
    installed: bool = False
    update_available: bool = False
    enabled_features: List[str] = field(default_factory=lambda: ensure_default_feature([]))
    local_manifest: Optional[Manifest] = None
    concurrency: int = downloads.DEFAULT_CONCURRENCY

    @property
    def modpack_root(self) -> Path:
        return self.launcher.modpack_root(self.manifest.uuid)

    @property
    def source_id(self) -> str:
        return f"{self.modpack_source}{self.modpack_branch}"


class EventKind(str, Enum):
    STARTED = "started"
    STEP = "step"
    FINISHED = "finished"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class InstallerEvent:
    kind: EventKind
    message: str
    error: Optional[Exception] = None


@dataclass(frozen=True, slots=True)
class InstallCommand:
    """``features`` is the complete selection; ``None`` keeps the profile's current one."""

    features: Optional[Tuple[str, ...]] = None
    force_update: bool = False


def _emit(events: Optional[asyncio.Queue], kind: EventKind, message: str, error: Optional[Exception] = None) -> None:
    if kind is EventKind.FAILED:
        logger.error(message)
    else:
        logger.info(message)
    if events is not None:
        events.put_nowait(InstallerEvent(kind=kind, message=message, error=error))


def manifest_url(modpack_source: str, branch: str) -> str:
    return f"{GITHUB_RAW}{modpack_source}{branch}/manifest.json"


def identity_marker(modpack_source: str) -> str:
    return base64.urlsafe_b64encode(modpack_source.encode("utf-8")).decode("ascii").rstrip("=")


def installer_path() -> str:
    return str(Path(sys.argv[0]).resolve())


async def list_branches(client: CachedHttpClient, modpack_source: str) -> List[str]:
    branches = (await client.fetch(f"{GITHUB_API}{modpack_source}branches")).json()
    if not isinstance(branches, list):
        raise ManifestError("Unexpected branch listing from GitHub.")
    return [branch["name"] for branch in branches if isinstance(branch, dict) and branch.get("name")]


async def initialize(
    modpack_source: str,
    branch: str,
    launcher: Launcher,
    client: CachedHttpClient,
    concurrency: int = downloads.DEFAULT_CONCURRENCY,
) -> InstallerProfile:
    """Fetch and validate the remote manifest and inspect the local install.

    Raises TransportError, ManifestError or ManifestVersionError; nothing is
    written to disk when validation fails.
    """
    response = await client.fetch(manifest_url(modpack_source, branch))
    manifest = parse_manifest(response.content)

    modpack_root = launcher.modpack_root(manifest.uuid, create=False)
    installed = local_manifest_path(modpack_root).exists()
    local_manifest: Optional[Manifest] = None
    if installed:
        try:
            local_manifest = load_local_manifest(modpack_root)
        except ManifestError as exc:
            logger.warning("Ignoring unreadable local manifest in %s: %s", modpack_root, exc)

    update_available = local_manifest is not None and local_manifest.modpack_version != manifest.modpack_version
    if local_manifest is not None:
        enabled_features = ensure_default_feature(local_manifest.enabled_features)
    elif installed:
        enabled_features = ensure_default_feature([])
    else:
        enabled_features = default_enabled_features(manifest)

    return InstallerProfile(
        manifest=manifest,
        launcher=launcher,
        http_client=client,
        modpack_source=modpack_source,
        modpack_branch=branch,
        installed=installed,
        update_available=update_available,
        enabled_features=enabled_features,
        local_manifest=local_manifest,
        concurrency=concurrency,
    )


async def _download_loader(profile: InstallerProfile) -> None:
    # Instance-based launchers resolve the loader from the component list.
    if profile.launcher.kind is LauncherKind.VANILLA:
        await loader.download_loader(profile.manifest.loader, profile.launcher.root, profile.http_client)


def _carry_installed_paths(manifest: Manifest, local_manifest: Optional[Manifest]) -> Manifest:
    """Reuse recorded paths for items that are unchanged and still on disk."""
    if local_manifest is None:
        return manifest
    update = {}
    for category in Category:
        installed = {item.name: item for item in local_manifest.items(category)}
        items = []
        for item in manifest.items(category):
            local = installed.get(item.name)
            if (
                item.path is None
                and local is not None
                and local.path is not None
                and Path(local.path).is_file()
                and local.model_copy(update={"path": None}) == item
            ):
                item = local
            items.append(item)
        update[category.value] = items
    return manifest.model_copy(update=update)


async def install(profile: InstallerProfile, events: Optional[asyncio.Queue] = None) -> Manifest:
    """Install (or repair) the modpack described by ``profile.manifest``.

    Fail-fast: an error aborts the run without rolling back files already
    written; running it again converges on the same result.
    """
    manifest = _carry_installed_paths(profile.manifest, profile.local_manifest)
    client = profile.http_client
    modpack_root = profile.modpack_root
    enabled = ensure_default_feature(profile.enabled_features)
    loader_type = manifest.loader.type.value

    _emit(events, EventKind.STEP, f"Downloading {manifest.name} content")
    results = await downloads.gather_or_cancel(
        _download_loader(profile),
        *(
            downloads.download_items(
                manifest.items(category),
                category,
                enabled,
                modpack_root,
                loader_type,
                client,
                concurrency=profile.concurrency,
            )
            for category in Category
        ),
    )
    resolved = dict(zip((category.value for category in Category), results[1:]))

    _emit(events, EventKind.STEP, "Synchronizing include bundles")
    previous = profile.local_manifest.included_files if profile.local_manifest else None
    included_files = await includes.sync_includes(
        manifest,
        enabled,
        previous,
        modpack_root,
        profile.modpack_source,
        profile.modpack_branch,
        client,
    )

    local_manifest = manifest.model_copy(
        update={
            **resolved,
            "enabled_features": enabled,
            "included_files": included_files,
            "source": profile.source_id,
            "installer_path": installer_path(),
        }
    )
    (modpack_root / identity_marker(profile.modpack_source)).write_bytes(b"")
    save_local_manifest(modpack_root, local_manifest)

    _emit(events, EventKind.STEP, "Writing launcher profile")
    icon = None
    if manifest.icon:
        icon = (await client.fetch(f"{GITHUB_RAW}{profile.source_id}/icon.png")).content
    launchers.write_launcher_profile(profile.launcher, manifest, modpack_root, icon)
    return local_manifest


async def update(profile: InstallerProfile, events: Optional[asyncio.Queue] = None) -> Manifest:
    """Diff the remote manifest against the installed one, then install."""
    modpack_root = profile.modpack_root
    local_manifest = load_local_manifest(modpack_root)

    _emit(events, EventKind.STEP, "Comparing with the installed modpack")
    merged = diff.diff_manifests(profile.manifest, local_manifest, modpack_root)
    if diff.loader_changed(profile.manifest.loader, local_manifest.loader):
        if profile.launcher.kind is LauncherKind.VANILLA:
            diff.remove_loader_version(profile.launcher.root, local_manifest.loader)

    return await install(
        dataclasses.replace(profile, manifest=merged, local_manifest=local_manifest),
        events,
    )


async def run_command(
    profile: InstallerProfile,
    command: InstallCommand,
    events: Optional[asyncio.Queue] = None,
) -> Optional[Manifest]:
    """Run one install command and report its outcome as events."""
    selected = profile.enabled_features if command.features is None else command.features
    features = ensure_default_feature(selected)
    profile = dataclasses.replace(profile, enabled_features=features)
    name = profile.manifest.name
    installed_features = profile.local_manifest.enabled_features if profile.local_manifest else features
    selection_changed = set(features) != set(ensure_default_feature(installed_features))

    if not profile.installed:
        action, label = install, "Installing"
    elif profile.update_available or command.force_update or selection_changed:
        action, label = update, "Updating"
    else:
        _emit(events, EventKind.SKIPPED, f"{name} is already up to date")
        return None

    _emit(events, EventKind.STARTED, f"{label} {name} {profile.manifest.modpack_version}")
    try:
        result = await action(profile, events)
    except (InstallerError, OSError) as exc:
        _emit(events, EventKind.FAILED, f"{label} {name} failed: {exc}", error=exc)
        raise
    _emit(events, EventKind.FINISHED, f"{name} {profile.manifest.modpack_version} is installed")
    return result


async def serve(
    profile: InstallerProfile,
    commands: asyncio.Queue,
    events: asyncio.Queue,
) -> None:
    """Run commands from ``commands`` until a ``None`` sentinel arrives.

    A failed command is reported on ``events`` and does not stop the loop.
    """
    while True:
        command = await commands.get()
        try:
            if command is None:
                return
            try:
                result = await run_command(profile, command, events)
            except (InstallerError, OSError):
                continue
            if result is not None:
                profile = dataclasses.replace(
                    profile,
                    installed=True,
                    update_available=False,
                    enabled_features=list(result.enabled_features),
                    local_manifest=result,
                )
        finally:
            commands.task_done()


def uninstall(launcher: Launcher, modpack_source: str) -> List[Path]:
    """Remove every instance installed from ``modpack_source``."""
    marker = identity_marker(modpack_source)
    removed: List[Path] = []
    for modpack_root in launcher.instance_roots():
        if not (modpack_root / marker).is_file():
            continue
        instance = modpack_root if launcher.kind is LauncherKind.VANILLA else modpack_root.parent
        shutil.rmtree(instance)
        modpack_root.mkdir(parents=True, exist_ok=True)
        logger.info("Uninstalled %s", instance)
        removed.append(modpack_root)
    return removed
