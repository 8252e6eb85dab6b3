from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Optional, Sequence

from .downloads import validate_item_path
from .loader import loader_dir
from .manifest import Category, Item, Loader, Manifest

logger = logging.getLogger(__name__)


def merge_items(remote: Sequence[Item], local: Sequence[Item], modpack_root: Path) -> List[Item]:
    """Merge the remote item list with what is installed, matching by name.

    Installed entries win so their resolved paths survive; installed items the
    remote list no longer names are deleted from disk and dropped.
    """
    installed = {item.name: item for item in local}
    merged = [installed.get(item.name, item) for item in remote]

    remote_names = {item.name for item in remote}
    stale = [validate_item_path(item, modpack_root) for item in local if item.name not in remote_names]
    for item in stale:
        if item.path is not None:
            Path(item.path).unlink(missing_ok=True)
            logger.info("Removed outdated item '%s'", item.name)
    return merged


def loader_changed(remote: Loader, local: Loader) -> bool:
    return remote != local


def remove_loader_version(versions_root: Path, loader: Loader) -> Optional[Path]:
    target = loader_dir(versions_root, loader)
    if not target.exists():
        return None
    shutil.rmtree(target)
    logger.info("Removed previous loader %s", loader.version_id)
    return target


def diff_manifests(remote: Manifest, local: Manifest, modpack_root: Path) -> Manifest:
    """Return ``remote`` with every item category merged against ``local``."""
    update = {
        category.value: merge_items(remote.items(category), local.items(category), modpack_root)
        for category in Category
    }
    update.update(
        included_files=local.included_files,
        source=local.source,
        installer_path=local.installer_path,
    )
    return remote.model_copy(update=update)
