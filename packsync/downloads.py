from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Collection, List, Sequence

from . import sources
from .errors import PathContainmentError
from .http import CachedHttpClient
from .manifest import Category, Item

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 14


def validate_item_path(item: Item, modpack_root: Path) -> Item:
    """Return ``item`` unchanged if its file sits in a category dir of the modpack root."""
    if item.path is None:
        return item
    if Path(item.path).resolve().parent.parent != Path(modpack_root).resolve():
        raise PathContainmentError(f"{item.name}'s path '{item.path}' is not located in the modpack root!")
    return item


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """Like ``asyncio.gather`` but cancels the remaining tasks once one fails."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def download_items(
    items: Sequence[Item],
    category: Category,
    enabled_features: Collection[str],
    modpack_root: Path,
    loader_type: str,
    client: CachedHttpClient,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[Item]:
    """Bring one item category in line with the enabled features.

    Returns one item per input item, in input order, with ``path`` set for
    every installed file and cleared for every removed one.
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def process(item: Item) -> Item:
        enabled = item.id in enabled_features
        if item.path is None:
            if not enabled:
                return item
            async with semaphore:
                path = await sources.resolve_item(item, category, modpack_root, loader_type, client)
            return validate_item_path(item.model_copy(update={"path": path}), modpack_root)

        item = validate_item_path(item, modpack_root)
        if enabled:
            return item
        Path(item.path).unlink(missing_ok=True)
        logger.info("Removed disabled %s '%s'", category.value, item.name)
        return item.model_copy(update={"path": None})

    return await gather_or_cancel(*(process(item) for item in items))
