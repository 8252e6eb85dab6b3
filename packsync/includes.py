from __future__ import annotations

import json
import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Collection, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ItemNotFoundError, ManifestError, PathContainmentError
from .http import CachedHttpClient
from .manifest import Included, Manifest

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com/repos/"
ZIP_SUFFIX = ".zip"


class ReleaseAsset(BaseModel):
    name: str
    id: int
    browser_download_url: str


class Release(BaseModel):
    tag_name: str
    body: Optional[str] = None
    assets: List[ReleaseAsset] = Field(default_factory=list)

    def asset(self, name: str) -> Optional[ReleaseAsset]:
        for asset in self.assets:
            if asset.name == name:
                return asset
        return None


def release_url(modpack_source: str, branch: str) -> str:
    return f"{GITHUB_API}{modpack_source}releases/tags/{branch}"


def asset_url(modpack_source: str, asset: ReleaseAsset) -> str:
    return f"{GITHUB_API}{modpack_source}releases/assets/{asset.id}"


async def fetch_release(client: CachedHttpClient, modpack_source: str, branch: str) -> Release:
    response = await client.fetch(release_url(modpack_source, branch))
    try:
        return Release.model_validate(response.json())
    except ValidationError as exc:
        raise ManifestError(f"Failed to parse release '{branch}': {exc}") from exc


def parse_hash_table(release: Release) -> Dict[str, str]:
    """The release body holds a JSON object mapping ``<bundle>.zip`` to its md5."""
    if not release.body:
        raise ManifestError(f"Release '{release.tag_name}' is missing the hash table in its body.")
    try:
        table = json.loads(release.body)
    except json.JSONDecodeError as exc:
        raise ManifestError(f"Failed to parse hash pairs of release '{release.tag_name}': {exc}") from exc
    if not isinstance(table, dict) or not all(isinstance(v, str) for v in table.values()):
        raise ManifestError(f"Hash table of release '{release.tag_name}' must map file names to hashes.")
    return table


def _contained(path: Path, modpack_root: Path) -> Path:
    resolved = path.resolve()
    if not resolved.is_relative_to(modpack_root.resolve()):
        raise PathContainmentError(f"Include path '{path}' was not located in the modpack root!")
    return resolved


def remove_included(record: Included, modpack_root: Path) -> None:
    # Validate everything first so a bad record deletes nothing.
    paths = [_contained(Path(file), modpack_root) for file in record.files]
    for path in paths:
        path.unlink(missing_ok=True)


def _safe_member_path(name: str) -> Optional[PurePosixPath]:
    member = PurePosixPath(name.replace("\\", "/"))
    if member.is_absolute() or ".." in member.parts or (member.parts and ":" in member.parts[0]):
        return None
    return member


def extract_bundle(archive_path: Path, modpack_root: Path) -> List[str]:
    """Extract every entry of ``archive_path`` into the modpack root.

    Returns the absolute paths of the extracted files. Entries that would land
    outside the root are skipped.
    """
    files: List[str] = []
    with zipfile.ZipFile(archive_path) as archive:
        for info in archive.infolist():
            member = _safe_member_path(info.filename)
            if member is None or not member.parts:
                logger.warning("Skipping unsafe entry '%s' in %s", info.filename, archive_path.name)
                continue
            outpath = modpack_root.joinpath(*member.parts)
            if info.is_dir():
                outpath.mkdir(parents=True, exist_ok=True)
                continue
            outpath.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as source, outpath.open("wb") as target:
                shutil.copyfileobj(source, target)
            files.append(str(outpath))
    return files


async def sync_includes(
    manifest: Manifest,
    enabled_features: Collection[str],
    previous: Optional[Mapping[str, Included]],
    modpack_root: Path,
    modpack_source: str,
    branch: str,
    client: CachedHttpClient,
) -> Dict[str, Included]:
    """Bring the extracted include bundles in line with the manifest.

    ``previous`` is the ``included_files`` record of the local manifest. The
    returned mapping is the new record, keyed by ``<include.id>.zip``.
    """
    previous = dict(previous or {})
    wanted = {inc.zip_name for inc in manifest.include if inc.id in enabled_features}
    for zip_name, record in previous.items():
        if zip_name not in wanted:
            logger.info("Removing include '%s'", zip_name)
            remove_included(record, modpack_root)

    included: Dict[str, Included] = {}
    if not manifest.include:
        return included

    release = await fetch_release(client, modpack_source, branch)
    hashes = parse_hash_table(release)
    for inc in manifest.include:
        if inc.id not in enabled_features:
            continue
        zip_name = inc.zip_name
        asset = release.asset(zip_name)
        if asset is None:
            raise ItemNotFoundError(f"Release '{release.tag_name}' has no asset named '{zip_name}'.")
        md5 = hashes.get(zip_name)
        if md5 is None:
            raise ManifestError(f"Asset '{zip_name}' does not have a hash in the release body.")

        local = previous.get(zip_name)
        if local is not None:
            if local.md5 == md5:
                logger.debug("Include '%s' is up to date", zip_name)
                included[zip_name] = local
                continue
            remove_included(local, modpack_root)

        response = await client.fetch_with_headers(
            asset_url(modpack_source, asset),
            {"Accept": "application/octet-stream"},
        )
        archive_path = modpack_root / zip_name
        archive_path.write_bytes(response.content)
        try:
            files = extract_bundle(archive_path, modpack_root)
        except zipfile.BadZipFile as exc:
            raise ManifestError(f"Asset '{zip_name}' is not a valid zip archive: {exc}") from exc
        finally:
            archive_path.unlink(missing_ok=True)
        logger.info("Extracted %d file(s) from '%s'", len(files), zip_name)
        included[zip_name] = Included(md5=md5, files=files)
    return included
