# tests/conftest.py
from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Dict

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
TESTS_DIR = Path(__file__).resolve().parent
FIXTURES_DIR = TESTS_DIR / "fixtures"

if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

# Global test defaults.
# Set before importing i2pd_exporter modules so the first Settings() sees them.
APP_TEST_YAML = "config/exporter.test.yaml"
os.environ["APP_ROOT"] = str(REPO_ROOT)
os.environ["APP_CONFIG_PATH"] = APP_TEST_YAML


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _test_env_defaults(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ROOT", str(REPO_ROOT))
    monkeypatch.setenv("APP_CONFIG_PATH", APP_TEST_YAML)

    # Never let the host environment leak into settings.
    for name in (
        "I2PCONTROL_ADDRESS",
        "I2PCONTROL_PASSWORD",
        "I2PCONTROL_TLS_INSECURE",
        "I2PCONTROL_TOKEN_ERROR_CODES",
        "METRICS_LISTEN_ADDR",
        "MAX_SCRAPE_TIMEOUT_SECONDS",
        "LOG_LEVEL",
        "DEBUG_I2PCONTROL_REQ",
        "DEBUG_I2PCONTROL_BODY",
    ):
        monkeypatch.delenv(name, raising=False)

    from i2pd_exporter.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def load_fixture(name: str) -> Any:
    return json.loads((FIXTURES_DIR / name).read_text(encoding="utf-8"))


@pytest.fixture
def routerinfo_full() -> Dict[str, Any]:
    return load_fixture("routerinfo_full.json")
