from collections.abc import AsyncIterator
from io import BytesIO
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from PIL import Image

from src.config import Settings
from src.main import create_app
from src.services.retry import RetryPolicy
from src.services.storage import Store


def make_test_image(width: int = 32, height: int = 32, fmt: str = "PNG") -> bytes:
    img = Image.new("RGB", (width, height), color="red")
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def read_stored(store: Store, key: str) -> bytes:
    with store.open(key) as f:
        return f.read()


class RemoteServer:
    """Scripted remote image host behind ``httpx.MockTransport``.

    Each URL gets a list of ``(status, body, headers)`` replies; the last one
    repeats once the list is exhausted. Unknown URLs answer 404.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[tuple[int, bytes, dict[str, str]]]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, url: str, status: int = 200, body: bytes = b"", headers: dict[str, str] | None = None) -> None:
        self.routes.setdefault(url, []).append((status, body, headers or {}))

    def hits(self, url: str) -> int:
        return sum(1 for request in self.requests if str(request.url) == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get(str(request.url))
        if not replies:
            return httpx.Response(404, content=b"not found")
        status, body, headers = replies.pop(0) if len(replies) > 1 else replies[0]
        return httpx.Response(status, content=body, headers=headers)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def build_settings(tmp_path: Path, **overrides: object) -> Settings:
    values: dict[str, object] = {
        "storage_path": str(tmp_path / "storage"),
        "custom_domain": "http://cdn.test/",
        "rate_limit": "1000-Minute",
        "log_json": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return build_settings(tmp_path)


@pytest.fixture
def remote() -> RemoteServer:
    return RemoteServer()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def app(settings: Settings, remote: RemoteServer, sleeps: SleepRecorder) -> FastAPI:
    return create_app(settings, transport=remote.transport(), retry=RetryPolicy(max_attempts=3, sleep=sleeps))


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await app.state.pipeline.fetcher.aclose()
