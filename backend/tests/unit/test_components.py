"""Tests for component assembly."""

from magic_login.services.components import build_components
from magic_login.services.database_token_store import DatabaseTokenStore
from magic_login.services.token_store import InMemoryTokenStore
from tests.conftest import make_settings


class TestBuildComponents:
    def test_memory_backend_by_default(self) -> None:
        components = build_components(make_settings())

        assert isinstance(components.store, InMemoryTokenStore)
        assert components.engine is None

    async def test_database_backend_creates_engine(self) -> None:
        components = build_components(make_settings(token_store_backend="database"))

        assert isinstance(components.store, DatabaseTokenStore)
        assert components.engine is not None

        await components.dispose()
        assert components.engine is None

    def test_settings_flow_into_components(self) -> None:
        components = build_components(make_settings(site_url="https://site.example"))

        assert components.rewriter.site_root == "https://site.example"
        assert components.attempt_log.enabled is True
