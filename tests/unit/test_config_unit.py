from __future__ import annotations

import pytest
from pydantic import ValidationError

pytestmark = pytest.mark.unit


@pytest.fixture
def no_yaml(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_CONFIG_PATH", str(tmp_path / "missing.yaml"))


def test_defaults_without_yaml(no_yaml):
    from i2pd_exporter.core.config import Settings

    s = Settings()

    assert s.i2pcontrol_address == "https://127.0.0.1:7650"
    assert s.api_url == "https://127.0.0.1:7650/jsonrpc"
    assert s.i2pcontrol_password == "itoopie"
    assert s.listen_host == "0.0.0.0"
    assert s.listen_port == 9600
    assert s.max_scrape_timeout_seconds == 120.0
    assert s.token_error_codes == [-32002, -32003, -32004]
    assert s.log_level == "INFO"
    assert s.debug_rpc_requests is False


def test_test_yaml_is_loaded():
    from i2pd_exporter.core.config import get_settings

    s = get_settings()

    assert s.i2pcontrol_address == "http://router.test:7650"
    assert s.i2pcontrol_password == "test-password"
    assert s.max_scrape_timeout_seconds == 10.0
    assert s.log_level == "DEBUG"


def test_env_overrides_yaml(monkeypatch):
    from i2pd_exporter.core.config import Settings

    monkeypatch.setenv("I2PCONTROL_ADDRESS", "https://10.0.0.5:7650/")
    monkeypatch.setenv("MAX_SCRAPE_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.setenv("DEBUG_I2PCONTROL_REQ", "1")

    s = Settings()

    assert s.api_url == "https://10.0.0.5:7650/jsonrpc"
    assert s.max_scrape_timeout_seconds == 30.0
    assert s.log_level == "WARNING"
    assert s.debug_rpc_requests is True
    # untouched keys still come from YAML
    assert s.i2pcontrol_password == "test-password"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("[-32004]", [-32004]),
        ("-32002, -32004", [-32002, -32004]),
        ("-32099", [-32099]),
    ],
)
def test_token_error_codes_from_env(monkeypatch, raw, expected):
    from i2pd_exporter.core.config import Settings

    monkeypatch.setenv("I2PCONTROL_TOKEN_ERROR_CODES", raw)

    assert Settings().token_error_codes == expected


def test_yaml_file_mapping(monkeypatch, tmp_path):
    from i2pd_exporter.core.config import Settings

    cfg = tmp_path / "exporter.yaml"
    cfg.write_text(
        "i2pcontrol:\n"
        "  address: https://router.lan:7650\n"
        "  tls_insecure: true\n"
        "  token_error_codes: [-1, -2]\n"
        "server:\n"
        "  listen_addr: '[::]:9700'\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("APP_CONFIG_PATH", str(cfg))

    s = Settings()

    assert s.i2pcontrol_address == "https://router.lan:7650"
    assert s.i2pcontrol_tls_insecure is True
    assert s.token_error_codes == [-1, -2]
    assert s.listen_host == "::"
    assert s.listen_port == 9700


@pytest.mark.parametrize("addr", ["9600", "localhost", ":9600", "host:port", "host:70000", "::1:9600"])
def test_invalid_listen_addr_is_rejected(no_yaml, monkeypatch, addr):
    from i2pd_exporter.core.config import Settings

    monkeypatch.setenv("METRICS_LISTEN_ADDR", addr)

    with pytest.raises(ValidationError):
        Settings()


@pytest.mark.parametrize("value", ["0", "-5", "abc"])
def test_invalid_max_scrape_timeout_is_rejected(no_yaml, monkeypatch, value):
    from i2pd_exporter.core.config import Settings

    monkeypatch.setenv("MAX_SCRAPE_TIMEOUT_SECONDS", value)

    with pytest.raises(ValidationError):
        Settings()


@pytest.mark.parametrize(
    "addr, expected",
    [
        ("127.0.0.1:9600", ("127.0.0.1", 9600)),
        ("0.0.0.0:80", ("0.0.0.0", 80)),
        ("[::1]:9600", ("::1", 9600)),
        ("exporter.lan:9600", ("exporter.lan", 9600)),
    ],
)
def test_split_host_port(addr, expected):
    from i2pd_exporter.core.config import split_host_port

    assert split_host_port(addr) == expected


@pytest.mark.parametrize(
    "address, insecure, expected",
    [
        ("https://127.0.0.1:7650", False, False),
        ("https://localhost:7650", False, False),
        ("https://[::1]:7650", False, False),
        ("https://10.0.0.5:7650", False, True),
        ("https://router.example:7650", False, True),
        ("https://router.example:7650", True, False),
    ],
)
def test_verify_tls_policy(no_yaml, monkeypatch, address, insecure, expected):
    from i2pd_exporter.core.config import Settings, verify_tls

    monkeypatch.setenv("I2PCONTROL_ADDRESS", address)
    monkeypatch.setenv("I2PCONTROL_TLS_INSECURE", "1" if insecure else "0")

    assert verify_tls(Settings()) is expected


def test_yaml_that_is_not_a_mapping_is_rejected(monkeypatch, tmp_path):
    from i2pd_exporter.core.config import Settings

    cfg = tmp_path / "exporter.yaml"
    cfg.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("APP_CONFIG_PATH", str(cfg))

    with pytest.raises(ValueError):
        Settings()
