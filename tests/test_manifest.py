import json

import pytest

from conftest import item_data, make_manifest, manifest_data
from packsync.errors import ManifestError, ManifestVersionError, MissingStateError
from packsync.manifest import (
    DEFAULT_ID,
    Category,
    LoaderType,
    SourceKind,
    default_enabled_features,
    ensure_default_feature,
    load_local_manifest,
    local_manifest_path,
    parse_manifest,
    save_local_manifest,
)


def test_parse_manifest_applies_defaults():
    manifest = parse_manifest(json.dumps(manifest_data(mods=[item_data("Sodium")])))

    assert manifest.max_mem == 2048
    assert manifest.min_mem == 512
    assert manifest.enabled_features == [DEFAULT_ID]
    assert manifest.included_files is None
    mod = manifest.items(Category.MODS)[0]
    assert mod.id == DEFAULT_ID
    assert mod.source is SourceKind.MODRINTH
    assert mod.path is None
    assert manifest.loader.type is LoaderType.FABRIC
    assert manifest.loader.version_id == "fabric-loader-0.15.0-1.20.4"


def test_older_manifest_version_is_rejected():
    with pytest.raises(ManifestVersionError) as excinfo:
        parse_manifest(json.dumps({"manifest_version": 2, "name": "Old"}))
    assert excinfo.value.found == 2
    assert excinfo.value.supported == 3


@pytest.mark.parametrize(
    "payload",
    [
        b"{not json",
        b"[]",
        json.dumps(manifest_data(uuid=None)).encode(),
        json.dumps(manifest_data(mods=[item_data("X", source="curseforge")])).encode(),
        json.dumps(manifest_data(loader={"type": "forge", "version": "1", "minecraft_version": "1.20"})).encode(),
    ],
)
def test_malformed_manifests_raise_manifest_error(payload):
    with pytest.raises(ManifestError):
        parse_manifest(payload)


def test_default_feature_is_always_present():
    assert ensure_default_feature([]) == ["default"]
    assert ensure_default_feature(["extra", "default", "extra"]) == ["default", "extra"]


def test_default_enabled_features_follow_feature_defaults():
    manifest = make_manifest(
        features=[
            {"id": "shaders", "name": "Shaders", "default": True},
            {"id": "extra", "name": "Extra", "default": False},
        ]
    )
    assert default_enabled_features(manifest) == ["default", "shaders"]


def test_local_manifest_round_trips(modpack_root):
    manifest = make_manifest(
        mods=[item_data("Sodium", path=str(modpack_root / "mods" / "sodium.jar"))],
        source="owner/pack/main",
    )

    path = save_local_manifest(modpack_root, manifest)

    assert path == local_manifest_path(modpack_root)
    assert not (modpack_root / ".manifest.json.tmp").exists()
    loaded = load_local_manifest(modpack_root)
    assert loaded == manifest
    assert loaded.mods[0].path == modpack_root / "mods" / "sodium.jar"


def test_missing_local_manifest_raises(modpack_root):
    with pytest.raises(MissingStateError):
        load_local_manifest(modpack_root)


def test_local_manifest_with_old_version_is_rejected(modpack_root):
    local_manifest_path(modpack_root).write_text(json.dumps(manifest_data(manifest_version=2)))
    with pytest.raises(ManifestVersionError):
        load_local_manifest(modpack_root)
