# tests/integration/conftest.py
from __future__ import annotations

import os
from pathlib import Path

import httpx
import pytest
from asgi_lifespan import LifespanManager


# ============================================================
# Assert config file exists
# ============================================================
@pytest.fixture(scope="session", autouse=True)
def _assert_test_config_file_exists():
    root = Path(os.environ["APP_ROOT"])
    cfg = (root / os.environ["APP_CONFIG_PATH"]).resolve()
    assert cfg.exists(), f"Missing test config: {cfg}"


# ============================================================
# Fake router (upstream I2PControl)
# ============================================================
@pytest.fixture
def router(routerinfo_full):
    from fakes import FakeI2pControlRouter

    return FakeI2pControlRouter(password="test-password", router_info=routerinfo_full)


@pytest.fixture
async def upstream(router):
    c = router.client()
    try:
        yield c
    finally:
        await c.aclose()


# ============================================================
# App (lifespan will be handled by client fixture)
# ============================================================
@pytest.fixture
def app(upstream):
    from i2pd_exporter.core.config import get_settings
    from i2pd_exporter.main import create_app

    get_settings.cache_clear()
    return create_app(http_client=upstream)


@pytest.fixture
async def client(app):
    async with LifespanManager(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            setattr(c, "app", app)
            yield c
