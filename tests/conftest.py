"""Shared fixtures: temp SQLite database, local object store and a scripted HTTP session."""

from typing import Any, Callable, Dict, List, Optional

import pytest
import requests

from shared.database import DatabaseManager
from shared.models import EndpointSpec
from storage.local_provider import LocalStorageProvider


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data: Any = None, content: bytes = b"",
                 headers: Optional[Dict[str, str]] = None, reason: str = "OK"):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.headers = headers or {}
        self.reason = reason if status_code < 400 else "Error"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json

    def iter_content(self, chunk_size: int = 1024):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """
    Records calls and answers them with a handler.

    The handler receives (method, url, kwargs) and returns a FakeResponse or
    raises (e.g. requests.ConnectionError).
    """

    def __init__(self, handler: Callable[[str, str, Dict[str, Any]], FakeResponse]):
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        return self.handler(method, url, kwargs)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)


def failing_handler(method, url, kwargs):
    raise requests.ConnectionError("network down")


@pytest.fixture
def database(tmp_path):
    return DatabaseManager(str(tmp_path / "test.db"))


@pytest.fixture
def object_store(tmp_path):
    store = LocalStorageProvider()
    assert store.authenticate({"base_path": str(tmp_path / "objects")})
    return store


@pytest.fixture
def endpoint_specs():
    return [
        EndpointSpec("host-a.example", "https://host-a.example/dl", "GET", "mp36", 2),
        EndpointSpec("host-b.example", "https://host-b.example/audio", "POST", "mp3_2025", 2),
        EndpointSpec("host-c.example", "https://host-c.example/status", "GET", "mp315", None),
    ]
