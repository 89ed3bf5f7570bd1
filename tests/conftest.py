"""
Shared fixtures for static 404 tests
"""
import tempfile
from pathlib import Path

import httpx
import pytest

from static_404 import Static404Config


@pytest.fixture
def temp_dir():
    """
    Create a temporary directory for uploads and rules files
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_config(temp_dir):
    """
    Build a site config rooted in the temporary directory
    """
    def _make(**overrides) -> Static404Config:
        values = {
            "home_url": "http://example.com/",
            "site_id": 1,
            "upload_dir": temp_dir / "uploads",
            "upload_url": "/uploads",
            "rules_file": temp_dir / ".htaccess",
            "recache_delay": 0.01,
            "request_url": None,
            "file_path": None,
            "file_url": None,
        }
        values.update(overrides)
        return Static404Config(**values)

    return _make


class RecordingTransport:
    """
    Mock transport that answers every request the same way and records it
    """

    def __init__(self, status_code: int = 404, content: bytes = b"Not Found", error=None):
        self.status_code = status_code
        self.content = content
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error(f"simulated {self.error.__name__}", request=request)
        return httpx.Response(self.status_code, content=self.content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def transport():
    return RecordingTransport()
