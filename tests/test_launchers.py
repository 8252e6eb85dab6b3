import json

import pytest

from conftest import PACK_UUID, make_manifest
from packsync import launchers
from packsync.config import InstallerConfig
from packsync.errors import ConfigError, MissingStateError, UnsupportedError
from packsync.launchers import (
    DEFAULT_PROFILE_ICON,
    LAUNCHER_PROFILES_FILENAME,
    Launcher,
    LauncherKind,
    get_launcher,
    instance_cfg,
    java_args,
    mmc_pack,
    write_launcher_profile,
)
from packsync.manifest import Loader


def _registry(launcher):
    return json.loads((launcher.root / LAUNCHER_PROFILES_FILENAME).read_text())


def test_vanilla_profile_is_upserted_by_uuid(vanilla_launcher):
    registry = {"profiles": {"other": {"name": "Someone else"}}, "settings": {"locale": "en-us"}}
    (vanilla_launcher.root / LAUNCHER_PROFILES_FILENAME).write_text(json.dumps(registry))
    manifest = make_manifest(java_args="-XX:+UseG1GC")
    modpack_root = vanilla_launcher.modpack_root(manifest.uuid)

    write_launcher_profile(vanilla_launcher, manifest, modpack_root)

    written = _registry(vanilla_launcher)
    assert written["settings"] == {"locale": "en-us"}
    assert written["profiles"]["other"] == {"name": "Someone else"}
    profile = written["profiles"][PACK_UUID]
    assert profile["lastVersionId"] == "fabric-loader-0.15.0-1.20.4"
    assert profile["gameDir"] == str(modpack_root)
    assert profile["javaArgs"] == "-Xmx2048M -Xms512M -XX:+UseG1GC"
    assert profile["icon"] == DEFAULT_PROFILE_ICON
    assert profile["type"] == "custom"
    assert profile["name"] == "Test Pack"


def test_vanilla_profile_keeps_created_timestamp(vanilla_launcher):
    manifest = make_manifest()
    modpack_root = vanilla_launcher.modpack_root(manifest.uuid)
    write_launcher_profile(vanilla_launcher, manifest, modpack_root)
    created = _registry(vanilla_launcher)["profiles"][PACK_UUID]["created"]

    write_launcher_profile(vanilla_launcher, manifest, modpack_root, icon=b"\x89PNG")

    profile = _registry(vanilla_launcher)["profiles"][PACK_UUID]
    assert profile["created"] == created
    assert profile["icon"] == "data:image/png;base64,iVBORw=="


def test_vanilla_profile_requires_registry(tmp_path):
    launcher = Launcher(LauncherKind.VANILLA, tmp_path)
    manifest = make_manifest()

    with pytest.raises(MissingStateError):
        write_launcher_profile(launcher, manifest, launcher.modpack_root(manifest.uuid))


def test_multimc_instance_files(multimc_launcher):
    manifest = make_manifest(loader={"type": "quilt", "version": "0.23.1", "minecraft_version": "1.20.4"}, max_mem=4096)
    modpack_root = multimc_launcher.modpack_root(manifest.uuid)

    instance = write_launcher_profile(multimc_launcher, manifest, modpack_root, icon=b"png-bytes")

    assert instance == multimc_launcher.root / "instances" / PACK_UUID
    assert modpack_root == instance / ".minecraft"
    pack = json.loads((instance / "mmc-pack.json").read_text())
    assert pack == {
        "components": [
            {"important": True, "uid": "net.minecraft", "version": "1.20.4"},
            {"uid": "org.quiltmc.quilt-loader", "version": "0.23.1"},
        ],
        "formatVersion": 1,
    }
    cfg = (instance / "instance.cfg").read_text().splitlines()
    assert f"iconKey={PACK_UUID}" in cfg
    assert "MaxMemAlloc=4096" in cfg
    assert "MinMemAlloc=512" in cfg
    assert "OverrideMemory=true" in cfg
    assert not any(line.startswith("JvmArgs") for line in cfg)
    assert (multimc_launcher.root / "icons" / f"{PACK_UUID}.png").read_bytes() == b"png-bytes"


def test_instance_cfg_includes_jvm_args():
    lines = instance_cfg(make_manifest(java_args="-Dfoo=bar")).splitlines()
    assert lines[-2:] == ["JvmArgs=-Dfoo=bar", "OverrideJavaArgs=true"]
    assert java_args(make_manifest()) == "-Xmx2048M -Xms512M"


def test_unsupported_loader_is_rejected_by_both_writers(vanilla_launcher, multimc_launcher):
    manifest = make_manifest().model_copy(
        update={"loader": Loader.model_construct(type="forge", version="49", minecraft_version="1.20.4")}
    )

    with pytest.raises(UnsupportedError):
        mmc_pack(manifest)
    with pytest.raises(UnsupportedError):
        write_launcher_profile(vanilla_launcher, manifest, vanilla_launcher.modpack_root(manifest.uuid))
    assert PACK_UUID not in _registry(vanilla_launcher)["profiles"]


def test_get_launcher_uses_configured_directories(tmp_path):
    cfg = InstallerConfig(minecraft_dir=tmp_path / "mc", multimc_dir=tmp_path / "prism")

    assert get_launcher("vanilla", cfg) == Launcher(LauncherKind.VANILLA, tmp_path / "mc")
    assert get_launcher("multimc-PrismLauncher", cfg) == Launcher(LauncherKind.MULTIMC, tmp_path / "prism")


def test_get_launcher_discovers_multimc_folder(monkeypatch, tmp_path):
    monkeypatch.setattr(launchers, "get_app_data", lambda: tmp_path)
    monkeypatch.setattr(launchers.platform, "system", lambda: "Windows")
    (tmp_path / "PrismLauncher").mkdir()

    assert get_launcher("multimc-PrismLauncher") == Launcher(LauncherKind.MULTIMC, tmp_path / "PrismLauncher")
    with pytest.raises(ConfigError):
        get_launcher("multimc-MultiMC")


@pytest.mark.parametrize("value", ["bogus", "multimc", "curse-forge"])
def test_get_launcher_rejects_invalid_choices(value):
    with pytest.raises(ConfigError):
        get_launcher(value)


def test_instance_roots(vanilla_launcher, multimc_launcher):
    assert vanilla_launcher.instance_roots() == []
    first = vanilla_launcher.modpack_root("a")
    second = multimc_launcher.modpack_root("b")

    assert vanilla_launcher.instance_roots() == [first]
    assert multimc_launcher.instance_roots() == [second]


def test_loader_uid_maps_supported_loaders():
    assert launchers.loader_uid(Loader(type="fabric", version="0.15.0", minecraft_version="1.20.4")) == "net.fabricmc.fabric-loader"
    with pytest.raises(UnsupportedError):
        launchers.loader_uid(Loader.model_construct(type="forge", version="49", minecraft_version="1.20.4"))
