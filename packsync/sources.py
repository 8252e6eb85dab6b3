from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import unquote, urlparse

from .errors import ItemNotFoundError, ManifestError, SourceError, UnsupportedError
from .http import CachedHttpClient, HttpResponse
from .manifest import Category, Item, SourceKind

logger = logging.getLogger(__name__)

MODRINTH_API = "https://api.modrinth.com/v2"
UNIVERSAL_LOADER = "minecraft"

_CD_FILENAME_RE = re.compile(r'filename="(.*?)"')
_MEDIAFIRE_LINK_RE = re.compile(r'Download file"\s*href="(.*?)"')


@dataclass
class SourceRequest:
    item: Item
    category: Category
    modpack_root: Path
    loader_type: str
    client: CachedHttpClient

    @property
    def destination(self) -> Path:
        return self.modpack_root / self.category.value


class SourceResolver(Protocol):
    async def resolve(self, request: SourceRequest) -> Path:  # pragma: no cover - protocol
        ...


_SOURCE_RESOLVERS: Dict[str, SourceResolver] = {}


def register_source_resolver(source_kind: SourceKind, resolver: SourceResolver) -> None:
    _SOURCE_RESOLVERS[source_kind.value] = resolver


def get_source_resolver(source_kind: SourceKind | str) -> SourceResolver:
    key = source_kind.value if isinstance(source_kind, SourceKind) else source_kind
    try:
        return _SOURCE_RESOLVERS[key]
    except KeyError as exc:
        raise UnsupportedError(f"Unsupported source '{key}'!") from exc


async def resolve_item(
    item: Item,
    category: Category,
    modpack_root: Path,
    loader_type: str,
    client: CachedHttpClient,
) -> Path:
    """Download ``item`` into its category directory and return the file path."""
    resolver = get_source_resolver(item.source)
    request = SourceRequest(
        item=item,
        category=category,
        modpack_root=modpack_root,
        loader_type=loader_type,
        client=client,
    )
    return await resolver.resolve(request)


def _safe_filename(filename: Optional[str], item: Item) -> str:
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    if not name or name in {".", ".."}:
        raise SourceError(f"Could not determine file name for '{item.name}' ({item.location}).")
    return name


def _write_item(request: SourceRequest, filename: str, content: bytes) -> Path:
    destination = request.destination
    destination.mkdir(parents=True, exist_ok=True)
    final_path = destination / _safe_filename(filename, request.item)
    final_path.write_bytes(content)
    logger.info("Downloaded %s to %s", request.item.name, final_path)
    return final_path


def _filename_from_url(url: str) -> Optional[str]:
    path = urlparse(url).path
    segment = path.rsplit("/", 1)[-1]
    return unquote(segment) or None


class ModrinthResolver(SourceResolver):
    API_BASE = MODRINTH_API

    async def resolve(self, request: SourceRequest) -> Path:
        item = request.item
        url = f"{self.API_BASE}/project/{item.location}/version"
        versions = (await request.client.fetch_uncached(url)).json()
        if not isinstance(versions, list):
            raise ManifestError(f"Unexpected Modrinth response when querying about '{item.name}'.")

        version = self._select_version(versions, request)
        file_data = self._select_file(version, item)
        content = (await request.client.fetch_uncached(file_data["url"])).content
        return _write_item(request, file_data.get("filename"), content)

    def _select_version(self, versions: List[Dict[str, Any]], request: SourceRequest) -> Dict[str, Any]:
        item = request.item
        for version in versions:
            if version.get("version_number") != item.version:
                continue
            loaders = version.get("loaders") or []
            if (
                request.category is Category.SHADERPACKS
                or UNIVERSAL_LOADER in loaders
                or request.loader_type in loaders
            ):
                return version
        raise ItemNotFoundError(
            f"No Modrinth version '{item.version}' of '{item.location}' matches loader '{request.loader_type}'."
        )

    def _select_file(self, version: Dict[str, Any], item: Item) -> Dict[str, Any]:
        files = version.get("files") or []
        if not files or not files[0].get("url"):
            raise SourceError(f"Modrinth version '{item.version}' of '{item.location}' has no downloadable files.")
        return files[0]


class DirectLinkResolver(SourceResolver):
    async def resolve(self, request: SourceRequest) -> Path:
        item = request.item
        response = await request.client.fetch_uncached(item.location)
        filename = self._filename(response, item)
        return _write_item(request, filename, response.content)

    def _filename(self, response: HttpResponse, item: Item) -> str:
        disposition = response.headers.get("content-disposition")
        if disposition and "attachment" in disposition:
            match = _CD_FILENAME_RE.search(disposition)
            if match is None:
                raise SourceError(f"Invalid 'content-disposition' header for '{item.name}': {disposition}")
            return match.group(1)
        return _safe_filename(_filename_from_url(item.location), item)


class MediafireResolver(SourceResolver):
    async def resolve(self, request: SourceRequest) -> Path:
        item = request.item
        page = await request.client.fetch_uncached(item.location)
        match = _MEDIAFIRE_LINK_RE.search(page.text)
        if match is None:
            raise SourceError(f"Could not find a download link on the Mediafire page for '{item.name}'.")

        response = await request.client.fetch_uncached(match.group(1))
        disposition = response.headers.get("content-disposition")
        if not disposition:
            raise SourceError(f"Mediafire download for '{item.name}' is missing a 'content-disposition' header.")
        if "attachment" not in disposition:
            raise SourceError(f"Invalid Mediafire 'content-disposition' header for '{item.name}': {disposition}")
        filename = disposition.split("filename=")[-1].replace('"', "").strip()
        return _write_item(request, filename, response.content)


register_source_resolver(SourceKind.MODRINTH, ModrinthResolver())
register_source_resolver(SourceKind.DDL, DirectLinkResolver())
register_source_resolver(SourceKind.MEDIAFIRE, MediafireResolver())
