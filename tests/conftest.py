"""Shared pytest fixtures: temp caches, a no-op sleep and fake upstreams."""

import json
from typing import Callable, List

import httpx
import pytest

from parking_pro.cache import JsonFileCache
from parking_pro.nominatim import NominatimClient
from parking_pro.overpass import OverpassClient


class FakeSleep:
    """Records requested delays instead of waiting."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeUpstream:
    """httpx transport that routes by URL path and keeps every request it saw."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: dict = {}

    def route(self, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[path] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": "no route"})
        return handler(request)

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def json_response(payload, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json=payload)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def location_cache(tmp_path):
    return JsonFileCache(tmp_path / "location-cache.json")


@pytest.fixture
def reverse_cache(tmp_path):
    return JsonFileCache(tmp_path / "reverse-cache.json")


@pytest.fixture
def geo_client(location_cache, reverse_cache, upstream, fake_sleep):
    return NominatimClient(
        location_cache=location_cache,
        reverse_cache=reverse_cache,
        search_url="https://nominatim.test/search",
        reverse_url="https://nominatim.test/reverse",
        transport=upstream.transport,
        sleep=fake_sleep,
    )


@pytest.fixture
def overpass_client(upstream, fake_sleep):
    return OverpassClient(
        url="https://overpass.test/api/interpreter",
        transport=upstream.transport,
        sleep=fake_sleep,
    )


def read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
