from __future__ import annotations

import json
import threading
from typing import Any

import pytest

from maplister.config import CrawlSettings
from maplister.errors import TransportError
from maplister.parsers import MapRecord
from maplister.storage.db import get_engine, init_db, make_session
from maplister.storage.store import CatalogStore

BASE_URL = "https://api.test"


class Sequence:
    """Responses served in order; the last one repeats."""

    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)

    def next(self) -> Any:
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


class FakeTransport:
    """In-memory transport keyed by URL.

    Route values: dict/list -> 200 JSON, bytes -> 200 raw body, int -> that
    status with an empty body, Exception -> raised, Sequence -> one per call.
    Unknown URLs answer 404.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[tuple[str, str | None]] = []
        self._lock = threading.Lock()

    def fetch(self, url: str, body: str | None = None) -> tuple[int, bytes]:
        with self._lock:
            self.calls.append((url, body))
            response = self.routes.get(url, 404)
            if isinstance(response, Sequence):
                response = response.next()
        if isinstance(response, Exception):
            raise response
        if isinstance(response, int):
            return response, b""
        if isinstance(response, bytes):
            return 200, response
        return 200, json.dumps(response).encode("utf-8")

    def count(self, fragment: str) -> int:
        with self._lock:
            return sum(1 for url, _ in self.calls if fragment in url)


def offline(url: str) -> TransportError:
    return TransportError("connection refused", url=url)


def make_settings(**overrides: Any) -> CrawlSettings:
    values: dict[str, Any] = {
        "base_url": BASE_URL,
        "endpoints": {
            "count": "{base_url}/games/{game_id}/count",
            "main": "{base_url}/games/{game_id}/categories",
            "maps_page": "{base_url}/categories/{category_id}/maps/{page}",
            "map_details": "{base_url}/maps/{map_id}",
            "download_details": "{base_url}/maps/{map_id}/download",
        },
        "page_size": 2,
        "max_attempts": 3,
        "retry_delay": 0.0,
        "workers": 3,
        "progress_every": 1,
    }
    values.update(overrides)
    return CrawlSettings(**values)


def map_payload(map_id: str, *, name: str | None = None, mdate: int = 1_500_000_000, downloads: int = 10) -> dict[str, Any]:
    return {
        "id": map_id,
        "name": name or f"de_{map_id}",
        "date": 1_400_000_000,
        "mdate": mdate,
        "downloads": downloads,
        "rating": "8.5",
        "votes": "4",
        "views": 120,
    }


def catalog_routes(
    categories: dict[str, list[dict[str, Any]]],
    *,
    game_id: int = 1,
    page_size: int = 2,
    sizes: dict[str, int] | None = None,
) -> dict[str, Any]:
    """Build routes for a consistent remote catalog."""

    sizes = sizes or {}
    routes: dict[str, Any] = {
        f"{BASE_URL}/games/{game_id}/count": {"count": sum(len(maps) for maps in categories.values())},
        f"{BASE_URL}/games/{game_id}/categories": {
            "categories": [{"id": category_id, "name": f"Category {category_id}"} for category_id in categories]
        },
    }
    for category_id, maps in categories.items():
        chunks = [maps[index:index + page_size] for index in range(0, len(maps), page_size)]
        if not chunks or len(chunks[-1]) == page_size:
            chunks.append([])
        for page, chunk in enumerate(chunks, start=1):
            routes[f"{BASE_URL}/categories/{category_id}/maps/{page}"] = {
                "maps": [{"id": entry["id"], "name": entry["name"], "mdate": entry["mdate"]} for entry in chunk],
                "total": len(maps),
            }
        for entry in maps:
            routes[f"{BASE_URL}/maps/{entry['id']}"] = {"map": entry}
            routes[f"{BASE_URL}/maps/{entry['id']}/download"] = {
                "download": {
                    "url": f"https://files.test/{entry['id']}.zip",
                    "size": sizes.get(entry["id"], 1536),
                }
            }
    return routes


def make_record(map_id: str, category_id: str, **fields: Any) -> MapRecord:
    payload = map_payload(map_id, name=fields.pop("name", None))
    payload.update(fields)
    return MapRecord.model_validate({**payload, "category_id": category_id})


@pytest.fixture()
def session_factory(tmp_path):
    engine = get_engine(str(tmp_path / "catalog.sqlite"))
    init_db(engine)
    try:
        yield make_session(engine)
    finally:
        engine.dispose()


@pytest.fixture()
def store(session_factory) -> CatalogStore:
    return CatalogStore(session_factory)
