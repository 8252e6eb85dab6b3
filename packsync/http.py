from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx

from .config import DEFAULT_CACHE_SIZE, DEFAULT_REQUEST_TIMEOUT, DEFAULT_USER_AGENT, InstallerConfig
from .errors import ManifestError, TransportError

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5
GITHUB_HOSTS = frozenset({"api.github.com", "raw.githubusercontent.com"})


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """A fully read response that can be replayed from the cache."""

    url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.content)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ManifestError(f"Invalid JSON payload from {self.url}: {exc}") from exc

    @classmethod
    def from_httpx(cls, url: str, response: httpx.Response) -> "HttpResponse":
        # note: duplicate header keys are collapsed
        headers = {key.lower(): value for key, value in response.headers.items()}
        return cls(url=url, status_code=response.status_code, headers=headers, content=response.content)


class CachedHttpClient:
    """HTTP client with a size-bounded LRU cache for plain GET requests.

    The cache keys on the exact URL text and has no expiry. Identical requests
    that are in flight at the same time are not coalesced, so concurrent misses
    for one URL may hit the network more than once.
    """

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        github_token: Optional[str] = None,
        cache_size: int = DEFAULT_CACHE_SIZE,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._github_token = github_token
        self._client = httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._cache: "OrderedDict[str, HttpResponse]" = OrderedDict()
        self.cache_size = cache_size

    @classmethod
    def from_config(cls, cfg: InstallerConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> "CachedHttpClient":
        return cls(
            user_agent=cfg.user_agent,
            github_token=cfg.github_token,
            cache_size=cfg.cache_size,
            timeout=cfg.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "CachedHttpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def cached(self, url: str) -> bool:
        return url in self._cache

    def clear_cache(self) -> None:
        self._cache.clear()

    async def fetch(self, url: str) -> HttpResponse:
        hit = self._cache.get(url)
        if hit is not None:
            self._cache.move_to_end(url)
            logger.debug("Cache hit for %s", url)
            return hit

        response = await self._send(url)
        self._cache[url] = response
        self._cache.move_to_end(url)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return response

    async def fetch_uncached(self, url: str) -> HttpResponse:
        return await self._send(url)

    async def fetch_with_headers(self, url: str, headers: Mapping[str, str]) -> HttpResponse:
        return await self._send(url, headers=dict(headers))

    def _auth_headers(self, url: str, headers: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        # httpx strips Authorization on cross-origin redirects.
        if not self._github_token or urlparse(url).hostname not in GITHUB_HOSTS:
            return headers
        return {**(headers or {}), "Authorization": f"Bearer {self._github_token}"}

    async def _send(self, url: str, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
        logger.debug("GET %s", url)
        headers = self._auth_headers(url, headers)
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error fetching {url}: {exc}", url=url) from exc

        if not response.is_success:
            detail = response.text[:200]
            raise TransportError(
                f"HTTP {response.status_code} error fetching {url}: {detail}",
                url=url,
                status=response.status_code,
            )
        return HttpResponse.from_httpx(url, response)
