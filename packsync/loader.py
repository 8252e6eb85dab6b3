from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .errors import UnsupportedError
from .http import CachedHttpClient
from .manifest import Loader, LoaderType

logger = logging.getLogger(__name__)

_PROFILE_URLS = {
    LoaderType.FABRIC: "https://meta.fabricmc.net/v2/versions/loader/{mc}/{version}/profile/json",
    LoaderType.QUILT: "https://meta.quiltmc.org/v3/versions/loader/{mc}/{version}/profile/json",
}


def profile_url(loader: Loader) -> str:
    try:
        template = _PROFILE_URLS[loader.type]
    except KeyError as exc:
        raise UnsupportedError(f"Unsupported loader '{loader.type}'!") from exc
    return template.format(mc=loader.minecraft_version, version=loader.version)


def loader_dir(versions_root: Path, loader: Loader) -> Path:
    return versions_root / "versions" / loader.version_id


async def download_loader(loader: Loader, versions_root: Path, client: CachedHttpClient) -> Optional[Path]:
    """Install the loader's version profile under ``versions_root/versions``.

    The launcher only needs the profile JSON plus a placeholder jar; it
    downloads the libraries itself. Returns None when the profile exists.
    """
    target = loader_dir(versions_root, loader)
    profile_path = target / f"{loader.version_id}.json"
    if profile_path.exists():
        logger.debug("Loader %s already installed", loader.version_id)
        return None

    response = await client.fetch(profile_url(loader))
    target.mkdir(parents=True, exist_ok=True)
    profile_path.write_bytes(response.content)
    (target / f"{loader.version_id}.jar").write_bytes(b"")
    logger.info("Installed loader %s", loader.version_id)
    return target
