from __future__ import annotations

import base64
import json
import logging
import os
import platform
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .config import InstallerConfig
from .errors import ConfigError, ManifestError, MissingStateError, UnsupportedError
from .manifest import Loader, LoaderType, Manifest

logger = logging.getLogger(__name__)

VANILLA_INSTANCES_DIR = ".packsync"
LAUNCHER_PROFILES_FILENAME = "launcher_profiles.json"
DEFAULT_PROFILE_ICON = "Furnace"
MMC_PACK_FILENAME = "mmc-pack.json"
MMC_INSTANCE_CFG = "instance.cfg"

_LOADER_UIDS = {
    LoaderType.FABRIC: "net.fabricmc.fabric-loader",
    LoaderType.QUILT: "org.quiltmc.quilt-loader",
}


class LauncherKind(str, Enum):
    VANILLA = "vanilla"
    MULTIMC = "multimc"


@dataclass(frozen=True, slots=True)
class Launcher:
    kind: LauncherKind
    root: Path

    def instance_dir(self, uuid: str) -> Path:
        if self.kind is LauncherKind.VANILLA:
            return self.root / VANILLA_INSTANCES_DIR / uuid
        return self.root / "instances" / uuid

    def modpack_root(self, uuid: str, create: bool = True) -> Path:
        if self.kind is LauncherKind.VANILLA:
            root = self.instance_dir(uuid)
        else:
            root = self.instance_dir(uuid) / ".minecraft"
        if create:
            root.mkdir(parents=True, exist_ok=True)
        return root

    def instance_roots(self) -> list[Path]:
        """Modpack roots of every instance this launcher holds."""
        if self.kind is LauncherKind.VANILLA:
            base = self.root / VANILLA_INSTANCES_DIR
            return sorted(p for p in base.iterdir() if p.is_dir()) if base.is_dir() else []
        base = self.root / "instances"
        if not base.is_dir():
            return []
        return sorted(p / ".minecraft" for p in base.iterdir() if p.is_dir())


def get_app_data() -> Path:
    system = platform.system()
    if system == "Linux":
        return Path.home()
    if system == "Windows":
        appdata = os.environ.get("APPDATA")
        return Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support"
    raise ConfigError(f"Unsupported os '{system}'!")


def get_minecraft_folder() -> Path:
    if platform.system() == "Darwin":
        return get_app_data() / "minecraft"
    return get_app_data() / ".minecraft"


def get_multimc_folder(name: str) -> Path:
    if platform.system() == "Linux":
        path = get_app_data() / ".local" / "share" / name
    else:
        path = get_app_data() / name
    if not path.exists():
        raise ConfigError(f"{name} directory '{path}' does not exist.")
    if not path.is_dir():
        raise ConfigError(f"{name} directory '{path}' is not a directory!")
    return path


def get_launcher(value: str, cfg: Optional[InstallerConfig] = None) -> Launcher:
    """Parse a launcher choice such as ``vanilla`` or ``multimc-PrismLauncher``."""
    kind, _, data_dir = value.partition("-")
    if kind == LauncherKind.VANILLA.value:
        root = cfg.minecraft_dir if cfg and cfg.minecraft_dir else get_minecraft_folder()
        return Launcher(LauncherKind.VANILLA, Path(root))
    if kind == LauncherKind.MULTIMC.value:
        if cfg and cfg.multimc_dir:
            return Launcher(LauncherKind.MULTIMC, Path(cfg.multimc_dir))
        if not data_dir:
            raise ConfigError("Missing data dir segment in MultiMC launcher choice (e.g. 'multimc-PrismLauncher').")
        return Launcher(LauncherKind.MULTIMC, get_multimc_folder(data_dir))
    raise ConfigError(f"Invalid launcher '{value}'!")


def icon_data_url(icon: bytes) -> str:
    return "data:image/png;base64," + base64.standard_b64encode(icon).decode("ascii")


def java_args(manifest: Manifest) -> str:
    args = f"-Xmx{manifest.max_mem}M -Xms{manifest.min_mem}M"
    if manifest.java_args:
        args = f"{args} {manifest.java_args}"
    return args


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_vanilla_profile(launcher: Launcher, manifest: Manifest, modpack_root: Path, icon: Optional[bytes]) -> Path:
    loader_uid(manifest.loader)

    path = launcher.root / LAUNCHER_PROFILES_FILENAME
    if not path.exists():
        raise MissingStateError(f"Launcher profile registry '{path}' not found. Start the launcher once first.")
    try:
        registry: Dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ManifestError(f"Failed to parse '{path}': {exc}") from exc

    profiles = registry.setdefault("profiles", {})
    now = _now_iso()
    existing = profiles.get(manifest.uuid) or {}
    profiles[manifest.uuid] = {
        "lastUsed": now,
        "lastVersionId": manifest.loader.version_id,
        "created": existing.get("created", now),
        "name": manifest.name,
        "icon": icon_data_url(icon) if icon is not None else DEFAULT_PROFILE_ICON,
        "type": "custom",
        "gameDir": str(modpack_root),
        "javaArgs": java_args(manifest),
    }
    path.write_text(json.dumps(registry, indent=2), encoding="utf-8")
    logger.info("Registered profile %s in %s", manifest.uuid, path)
    return path


def loader_uid(loader: Loader) -> str:
    """Component uid of a supported loader; anything else is rejected."""
    try:
        return _LOADER_UIDS[loader.type]
    except KeyError as exc:
        raise UnsupportedError(f"Invalid loader '{loader.type}'") from exc


def mmc_pack(manifest: Manifest) -> Dict[str, Any]:
    return {
        "components": [
            {"important": True, "uid": "net.minecraft", "version": manifest.loader.minecraft_version},
            {"uid": loader_uid(manifest.loader), "version": manifest.loader.version},
        ],
        "formatVersion": 1,
    }


def instance_cfg(manifest: Manifest) -> str:
    lines = [
        f"iconKey={manifest.uuid}",
        f"name={manifest.name}",
        f"MaxMemAlloc={manifest.max_mem}",
        f"MinMemAlloc={manifest.min_mem}",
        "OverrideMemory=true",
    ]
    if manifest.java_args:
        lines.append(f"JvmArgs={manifest.java_args}")
        lines.append("OverrideJavaArgs=true")
    return "\n".join(lines)


def write_multimc_instance(launcher: Launcher, manifest: Manifest, icon: Optional[bytes]) -> Path:
    pack = mmc_pack(manifest)
    instance = launcher.instance_dir(manifest.uuid)
    instance.mkdir(parents=True, exist_ok=True)
    (instance / MMC_PACK_FILENAME).write_text(json.dumps(pack), encoding="utf-8")
    (instance / MMC_INSTANCE_CFG).write_text(instance_cfg(manifest), encoding="utf-8")
    if icon is not None:
        icons = launcher.root / "icons"
        icons.mkdir(parents=True, exist_ok=True)
        (icons / f"{manifest.uuid}.png").write_bytes(icon)
    logger.info("Wrote instance configuration to %s", instance)
    return instance


def write_launcher_profile(
    launcher: Launcher,
    manifest: Manifest,
    modpack_root: Path,
    icon: Optional[bytes] = None,
) -> Path:
    """Register the installed modpack with the launcher it was installed for."""
    if launcher.kind is LauncherKind.VANILLA:
        return write_vanilla_profile(launcher, manifest, modpack_root, icon)
    if launcher.kind is LauncherKind.MULTIMC:
        return write_multimc_instance(launcher, manifest, icon)
    raise UnsupportedError(f"Unsupported launcher '{launcher.kind}'")
