from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.core.exceptions import REQUEST_FAILED, STORAGE_FAILED, UPLOAD_FAILED
from src.main import create_app
from src.services.retry import RetryPolicy
from tests.conftest import RemoteServer, SleepRecorder, build_settings, make_test_image

URL = "https://example.com/dog.jpg"


class TestProxyImage:
    async def test_success_envelope(self, client: AsyncClient, remote: RemoteServer) -> None:
        payload = make_test_image(fmt="JPEG")
        remote.add(URL, 200, payload, {"Content-Type": "image/jpeg"})

        response = await client.post("/proxy", json={"url": URL})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["type"] == "image/jpeg"
        assert data["size"] == len(payload)
        assert data["url"].startswith("http://cdn.test/img/")
        assert data["url"].endswith(".jpg")

    async def test_round_trip_serves_same_bytes(self, client: AsyncClient, remote: RemoteServer) -> None:
        payload = make_test_image(fmt="PNG")
        remote.add(URL, 200, payload, {"Content-Type": "image/png"})

        data = (await client.post("/proxy", json={"url": URL})).json()
        path = data["url"].removeprefix("http://cdn.test")
        served = await client.get(path)

        assert served.status_code == 200
        assert served.content == payload
        assert served.headers["content-type"] == data["type"]
        assert int(served.headers["content-length"]) == data["size"]

    async def test_remote_500_returns_generic_error(
        self, client: AsyncClient, remote: RemoteServer, sleeps: SleepRecorder, tmp_path: Path
    ) -> None:
        remote.add(URL, 500, b"internal stack trace")

        response = await client.post("/proxy", json={"url": URL})

        assert response.status_code == 500
        assert response.json() == {"error": UPLOAD_FAILED}
        assert "stack trace" not in response.text
        assert remote.hits(URL) == 3
        assert sleeps.delays == [1.0, 2.0]
        storage = tmp_path / "storage"
        assert not storage.exists() or not any(p.is_file() for p in storage.rglob("*"))

    async def test_remote_404_is_retried(self, client: AsyncClient, remote: RemoteServer) -> None:
        remote.add(URL, 404, b"gone")
        response = await client.post("/proxy", json={"url": URL})
        assert response.status_code == 500
        assert remote.hits(URL) == 3

    async def test_empty_url(self, client: AsyncClient, remote: RemoteServer) -> None:
        response = await client.post("/proxy", json={"url": "   "})
        assert response.status_code == 500
        assert response.json() == {"error": REQUEST_FAILED}
        assert remote.requests == []

    async def test_missing_url_field(self, client: AsyncClient) -> None:
        response = await client.post("/proxy", json={})
        assert response.status_code == 500
        assert response.json() == {"error": REQUEST_FAILED}

    async def test_malformed_json(self, client: AsyncClient) -> None:
        response = await client.post(
            "/proxy", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 500
        assert response.json() == {"error": REQUEST_FAILED}

    async def test_blocked_host(self, client: AsyncClient, remote: RemoteServer) -> None:
        response = await client.post("/proxy", json={"url": "http://127.0.0.1/a.png"})
        assert response.status_code == 500
        assert remote.requests == []

    @pytest.mark.parametrize(
        "raw_url",
        ["http://[::1", "http://example.com/a\x00.png", "http://example.com/" + "a" * 70_000],
    )
    async def test_unparseable_url_gets_json_error(
        self, client: AsyncClient, remote: RemoteServer, raw_url: str
    ) -> None:
        response = await client.post("/proxy", json={"url": raw_url})
        assert response.status_code == 500
        assert response.json() == {"error": REQUEST_FAILED}
        assert remote.requests == []

    async def test_get_not_allowed(self, client: AsyncClient) -> None:
        response = await client.get("/proxy")
        assert response.status_code == 404


class TestProxyStorageFailure:
    async def test_storage_failed_message(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("file")
        remote = RemoteServer()
        remote.add(URL, 200, b"x", {"Content-Type": "image/png"})
        app = create_app(
            build_settings(tmp_path, storage_path=str(blocker)),
            transport=remote.transport(),
            retry=RetryPolicy(sleep=SleepRecorder()),
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/proxy", json={"url": URL})
        assert response.status_code == 500
        assert response.json() == {"error": STORAGE_FAILED}


class TestApiKey:
    def _app(self, tmp_path: Path, remote: RemoteServer) -> FastAPI:
        return create_app(
            build_settings(tmp_path, api_key="s3cret"),
            transport=remote.transport(),
            retry=RetryPolicy(sleep=SleepRecorder()),
        )

    async def test_missing_key_rejected(self, tmp_path: Path, remote: RemoteServer) -> None:
        app = self._app(tmp_path, remote)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/proxy", json={"url": URL})
        assert response.status_code == 500
        assert response.json() == {"error": REQUEST_FAILED}
        assert remote.requests == []

    async def test_wrong_key_rejected(self, tmp_path: Path, remote: RemoteServer) -> None:
        app = self._app(tmp_path, remote)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/proxy", json={"url": URL}, headers={"X-API-Key": "nope"})
        assert response.status_code == 500

    async def test_valid_key_accepted(self, tmp_path: Path, remote: RemoteServer) -> None:
        remote.add(URL, 200, b"x", {"Content-Type": "image/png"})
        app = self._app(tmp_path, remote)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/proxy", json={"url": URL}, headers={"X-API-Key": "s3cret"})
        assert response.status_code == 200
        assert response.json()["success"] is True
