from __future__ import annotations

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ManifestError, ManifestVersionError, MissingStateError

logger = logging.getLogger(__name__)

CURRENT_MANIFEST_VERSION = 3
DEFAULT_ID = "default"
DEFAULT_MAX_MEM = 2048
DEFAULT_MIN_MEM = 512
LOCAL_MANIFEST_FILENAME = "manifest.json"


class SourceKind(str, Enum):
    MODRINTH = "modrinth"
    DDL = "ddl"
    MEDIAFIRE = "mediafire"


class LoaderType(str, Enum):
    FABRIC = "fabric"
    QUILT = "quilt"


class Category(str, Enum):
    """Item categories; the value doubles as the directory under the modpack root."""

    MODS = "mods"
    SHADERPACKS = "shaderpacks"
    RESOURCEPACKS = "resourcepacks"


class Author(BaseModel):
    name: str
    link: str


class Item(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    source: SourceKind
    location: str
    version: str
    path: Optional[Path] = None
    id: str = DEFAULT_ID
    authors: List[Author] = Field(default_factory=list)


class Loader(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: LoaderType
    version: str
    minecraft_version: str

    @property
    def version_id(self) -> str:
        return f"{self.type.value}-loader-{self.version}-{self.minecraft_version}"


class Feature(BaseModel):
    id: str
    name: str
    default: bool


class Include(BaseModel):
    location: str
    id: str = DEFAULT_ID

    @property
    def zip_name(self) -> str:
        return f"{self.id}.zip"


class Included(BaseModel):
    md5: str
    files: List[str] = Field(default_factory=list)


class Manifest(BaseModel):
    model_config = ConfigDict(frozen=True)

    manifest_version: int
    modpack_version: str
    name: str
    subtitle: str
    description: str
    icon: bool
    uuid: str
    loader: Loader
    mods: List[Item]
    shaderpacks: List[Item]
    resourcepacks: List[Item]
    include: List[Include]
    features: List[Feature]
    enabled_features: List[str] = Field(default_factory=lambda: [DEFAULT_ID])
    included_files: Optional[Dict[str, Included]] = None
    source: Optional[str] = None
    installer_path: Optional[str] = None
    max_mem: int = DEFAULT_MAX_MEM
    min_mem: int = DEFAULT_MIN_MEM
    java_args: Optional[str] = None

    def items(self, category: Category) -> List[Item]:
        return getattr(self, category.value)


def ensure_default_feature(features: Iterable[str]) -> List[str]:
    result = [DEFAULT_ID]
    for feature in features:
        if feature not in result:
            result.append(feature)
    return result


def default_enabled_features(manifest: Manifest) -> List[str]:
    return ensure_default_feature(feat.id for feat in manifest.features if feat.default)


def parse_manifest(payload: bytes | str) -> Manifest:
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ManifestError(f"Manifest is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a JSON object.")

    # Check the version first: older schemas are unlikely to validate at all.
    version = data.get("manifest_version")
    if isinstance(version, int) and version != CURRENT_MANIFEST_VERSION:
        raise ManifestVersionError(version, CURRENT_MANIFEST_VERSION)

    try:
        manifest = Manifest.model_validate(data)
    except ValidationError as exc:
        raise ManifestError(f"Manifest does not match the expected schema: {exc}") from exc
    if manifest.manifest_version != CURRENT_MANIFEST_VERSION:
        raise ManifestVersionError(manifest.manifest_version, CURRENT_MANIFEST_VERSION)
    return manifest


def local_manifest_path(modpack_root: Path) -> Path:
    return modpack_root / LOCAL_MANIFEST_FILENAME


def load_local_manifest(modpack_root: Path) -> Manifest:
    path = local_manifest_path(modpack_root)
    if not path.exists():
        raise MissingStateError(f"Local manifest not found at {path}. Install the modpack first.")
    return parse_manifest(path.read_bytes())


def save_local_manifest(modpack_root: Path, manifest: Manifest) -> Path:
    path = local_manifest_path(modpack_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
    os.replace(tmp_path, path)
    logger.info("Saved local manifest to %s", path)
    return path
