from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from packsync.http import CachedHttpClient
from packsync.launchers import LAUNCHER_PROFILES_FILENAME, Launcher, LauncherKind
from packsync.manifest import Manifest

SOURCE = "owner/pack/"
BRANCH = "main"
MANIFEST_URL = "https://raw.githubusercontent.com/owner/pack/main/manifest.json"
PACK_UUID = "0b7c8f1e-5a3d-4c2b-9e61-2f4d8a7b3c10"


def item_data(name: str, location: Optional[str] = None, source: str = "modrinth", version: str = "1.0", **extra: Any) -> Dict[str, Any]:
    data = {
        "name": name,
        "source": source,
        "location": location or name.lower(),
        "version": version,
        "authors": [{"name": "someone", "link": "https://example.com/someone"}],
    }
    data.update(extra)
    return data


def manifest_data(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "manifest_version": 3,
        "modpack_version": "1.0.0",
        "name": "Test Pack",
        "subtitle": "Small pack",
        "description": "<p>A pack used by the test-suite.</p>",
        "icon": False,
        "uuid": PACK_UUID,
        "loader": {"type": "fabric", "version": "0.15.0", "minecraft_version": "1.20.4"},
        "mods": [],
        "shaderpacks": [],
        "resourcepacks": [],
        "include": [],
        "features": [],
    }
    data.update(overrides)
    return data


def make_manifest(**overrides: Any) -> Manifest:
    return Manifest.model_validate(manifest_data(**overrides))


class Router:
    """Maps exact URLs to canned responses and records every request."""

    def __init__(self) -> None:
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[str] = []
        self.requests: List[httpx.Request] = []

    def add(self, url: str, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None, **response: Any) -> None:
        if handler is None:
            response.setdefault("status_code", 200)

            def handler(request: httpx.Request) -> httpx.Response:
                return httpx.Response(**response)

        self.routes[url] = handler

    def add_json(self, url: str, payload: Any) -> None:
        self.add(url, content=json.dumps(payload).encode("utf-8"), headers={"content-type": "application/json"})

    def add_modrinth(self, slug: str, version: str = "1.0", loaders: tuple = ("fabric",)) -> str:
        file_url = f"https://cdn.modrinth.com/data/{slug}/{slug}-{version}.jar"
        self.add_json(
            f"https://api.modrinth.com/v2/project/{slug}/version",
            [
                {
                    "version_number": version,
                    "loaders": list(loaders),
                    "files": [{"url": file_url, "filename": f"{slug}-{version}.jar"}],
                }
            ],
        )
        self.add(file_url, content=f"{slug} {version}".encode("utf-8"))
        return file_url

    def count(self, url: str) -> int:
        return self.calls.count(url)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        self.requests.append(request)
        handler = self.routes.get(url)
        if handler is None:
            return httpx.Response(404, text="not found")
        return handler(request)


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def client(router: Router) -> CachedHttpClient:
    return CachedHttpClient(transport=httpx.MockTransport(router))


@pytest.fixture
def modpack_root(tmp_path: Path) -> Path:
    root = tmp_path / "instance"
    root.mkdir()
    return root


@pytest.fixture
def vanilla_launcher(tmp_path: Path) -> Launcher:
    root = tmp_path / "minecraft"
    root.mkdir()
    (root / LAUNCHER_PROFILES_FILENAME).write_text(json.dumps({"profiles": {}, "version": 3}))
    return Launcher(LauncherKind.VANILLA, root)


@pytest.fixture
def multimc_launcher(tmp_path: Path) -> Launcher:
    root = tmp_path / "PrismLauncher"
    (root / "instances").mkdir(parents=True)
    return Launcher(LauncherKind.MULTIMC, root)
