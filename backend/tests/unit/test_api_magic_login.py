"""Tests for the internal magic login API."""

import pytest
from bs4 import BeautifulSoup
from httpx import ASGITransport, AsyncClient

from magic_login.core.hooks import Hooks, MagicLoginEvent
from magic_login.main import create_app
from magic_login.services.components import build_components
from magic_login.services.token_manager import TokenManager
from magic_login.services.token_store import InMemoryTokenStore
from tests.conftest import (
    SITE_URL,
    TEST_EMAIL,
    TEST_INTERNAL_API_KEY,
    TEST_USER_ID,
    FrozenClock,
    make_settings,
)

_BASE = "/api/v1/magic-login"
_AUTH = {"X-Internal-Api-Key": TEST_INTERNAL_API_KEY}


class TestAuthentication:
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("POST", "/email-links"),
            ("GET", "/stats"),
            ("POST", "/cleanup"),
            ("GET", "/logs"),
            ("DELETE", "/users/1/token"),
        ],
    )
    async def test_missing_key_rejected(
        self, client: AsyncClient, method: str, path: str
    ) -> None:
        response = await client.request(method, f"{_BASE}{path}")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    async def test_wrong_key_rejected(self, client: AsyncClient) -> None:
        response = await client.get(
            f"{_BASE}/stats", headers={"X-Internal-Api-Key": "wrong"}
        )

        assert response.status_code == 401

    async def test_unconfigured_key_closes_api(self) -> None:
        app = create_app(components=build_components(make_settings(internal_api_key="")))

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url=SITE_URL) as ac:
            response = await ac.get(
                f"{_BASE}/stats", headers={"X-Internal-Api-Key": ""}
            )

        assert response.status_code == 401

    async def test_api_responses_not_cached(self, client: AsyncClient) -> None:
        response = await client.get(f"{_BASE}/stats", headers=_AUTH)

        assert response.headers["cache-control"] == "no-store, max-age=0"


class TestEmailLinks:
    async def test_rewrites_links_and_issues_token(
        self,
        client: AsyncClient,
        manager: TokenManager,
        hooks: Hooks,
    ) -> None:
        events: list[dict] = []
        hooks.on(MagicLoginEvent.EMAIL_LINKS_ADDED, lambda **kw: events.append(kw))
        html = (
            '<p><a href="http://testserver/jobs/42?utm=x">Job</a>'
            '<a href="mailto:a@b.example">Mail</a></p>'
        )

        response = await client.post(
            f"{_BASE}/email-links",
            headers=_AUTH,
            json={
                "html": html,
                "user_id": TEST_USER_ID,
                "email": TEST_EMAIL,
                "issuing_ip": "198.51.100.20",
            },
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token_issued"] is True
        assert data["links_rewritten"] == 1

        soup = BeautifulSoup(data["html"], "html.parser")
        job_href, mail_href = (str(a["href"]) for a in soup.find_all("a"))
        assert mail_href == "mailto:a@b.example"
        assert job_href.startswith("http://testserver/jobs/42?utm=x&agw_token=")

        token = job_href.split("agw_token=", 1)[1].split("&", 1)[0]
        outcome = await manager.validate(token)
        assert outcome.valid is True
        assert outcome.record is not None
        assert outcome.record.issuing_ip == "198.51.100.20"
        assert events == [{"user_id": TEST_USER_ID, "links_rewritten": 1}]

    async def test_invalid_issuing_ip_recorded_as_unknown(
        self, client: AsyncClient, store: InMemoryTokenStore
    ) -> None:
        await client.post(
            f"{_BASE}/email-links",
            headers=_AUTH,
            json={
                "html": "<p>hi</p>",
                "user_id": TEST_USER_ID,
                "email": TEST_EMAIL,
                "issuing_ip": "nope",
            },
        )

        record = await store.get(TEST_USER_ID)
        assert record is not None
        assert record.issuing_ip == "UNKNOWN"

    @pytest.mark.parametrize(
        "body",
        [
            {"html": "<p/>", "user_id": 0, "email": TEST_EMAIL},
            {"html": "<p/>", "user_id": 1, "email": "not-an-email"},
            {"html": "<p/>", "user_id": 1, "email": TEST_EMAIL, "extra": True},
        ],
    )
    async def test_invalid_body_rejected(self, client: AsyncClient, body: dict) -> None:
        response = await client.post(f"{_BASE}/email-links", headers=_AUTH, json=body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestStatsAndCleanup:
    async def test_stats(
        self, client: AsyncClient, manager: TokenManager
    ) -> None:
        await manager.generate("a@example.com", 1)
        await manager.generate("b@example.com", 2)
        await manager.consume(2)

        response = await client.get(f"{_BASE}/stats", headers=_AUTH)

        assert response.status_code == 200
        assert response.json()["data"] == {
            "total": 2,
            "used": 1,
            "active": 1,
            "expired": 0,
        }

    async def test_cleanup_sweeps(
        self, client: AsyncClient, manager: TokenManager, clock: FrozenClock
    ) -> None:
        await manager.generate("a@example.com", 1)
        await manager.generate("b@example.com", 2)
        await manager.consume(2)
        clock.advance(hours=1)
        await manager.generate("c@example.com", 3)
        clock.advance(hours=23, minutes=30)

        response = await client.post(f"{_BASE}/cleanup", headers=_AUTH)

        assert response.status_code == 200
        assert response.json()["data"] == {"deleted": 2}


class TestLogs:
    async def test_logs_newest_first(
        self, client: AsyncClient, manager: TokenManager
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        await client.get("/", params={"agw_token": "bogus"})
        await client.get("/", params={"agw_token": token})

        response = await client.get(f"{_BASE}/logs", headers=_AUTH)

        entries = response.json()["data"]
        assert [e["status"] for e in entries] == ["success", "failed"]
        assert entries[0]["user_id"] == TEST_USER_ID

    async def test_limit_validated(self, client: AsyncClient) -> None:
        response = await client.get(f"{_BASE}/logs?limit=0", headers=_AUTH)

        assert response.status_code == 400


class TestRevoke:
    async def test_revoke_existing(
        self, client: AsyncClient, manager: TokenManager
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        response = await client.delete(
            f"{_BASE}/users/{TEST_USER_ID}/token", headers=_AUTH
        )

        assert response.status_code == 204
        assert (await manager.validate(token)).error == "invalid"

    async def test_revoke_missing(self, client: AsyncClient) -> None:
        response = await client.delete(f"{_BASE}/users/999/token", headers=_AUTH)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
