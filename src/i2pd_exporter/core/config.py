# src/i2pd_exporter/core/config.py
from __future__ import annotations

import ipaddress
import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Tuple
from urllib.parse import urlsplit

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from i2pd_exporter import __version__


# I2PControl: -32002 token not specified, -32003 token does not exist, -32004 token expired
DEFAULT_TOKEN_ERROR_CODES: Tuple[int, ...] = (-32002, -32003, -32004)


# YAML (section, key) -> Settings field
_YAML_FIELDS: Dict[Tuple[str, str], str] = {
    ("i2pcontrol", "address"): "i2pcontrol_address",
    ("i2pcontrol", "password"): "i2pcontrol_password",
    ("i2pcontrol", "tls_insecure"): "i2pcontrol_tls_insecure",
    ("i2pcontrol", "token_error_codes"): "token_error_codes",
    ("server", "listen_addr"): "metrics_listen_addr",
    ("server", "max_scrape_timeout_seconds"): "max_scrape_timeout_seconds",
    ("logging", "level"): "log_level",
    ("logging", "debug_rpc_requests"): "debug_rpc_requests",
    ("logging", "debug_rpc_bodies"): "debug_rpc_bodies",
}


def config_file_path(path: str) -> Path:
    """Relative paths resolve against APP_ROOT, or the working directory."""
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    root = os.environ.get("APP_ROOT", "").strip()
    base = Path(root).expanduser() if root else Path.cwd()
    return (base / p).resolve()


def load_yaml_settings(path: str) -> Dict[str, Any]:
    """
    Flatten the YAML sections onto Settings field names.

    A missing file is not an error (env vars alone are enough); a file that
    exists but is not a mapping is.
    """
    p = config_file_path(path)
    if not p.is_file():
        return {}

    with p.open(encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}
    if not isinstance(doc, dict):
        raise ValueError(f"{p}: expected a mapping at the top level")

    out: Dict[str, Any] = {}
    for (section, key), field_name in _YAML_FIELDS.items():
        block = doc.get(section)
        if isinstance(block, dict) and block.get(key) is not None:
            out[field_name] = block[key]
    return out


def split_host_port(addr: str) -> Tuple[str, int]:
    """
    Parse "host:port" (IPv6 hosts in brackets, e.g. "[::]:9600").
    Raises ValueError with an operator-facing message.
    """
    s = (addr or "").strip()
    host, sep, port_s = s.rpartition(":")
    if not sep or not host or not port_s:
        raise ValueError(f"Invalid METRICS_LISTEN_ADDR '{addr}': expected host:port")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"Invalid METRICS_LISTEN_ADDR '{addr}': IPv6 hosts must be bracketed")

    try:
        port = int(port_s)
    except ValueError:
        raise ValueError(f"Invalid METRICS_LISTEN_ADDR '{addr}': port is not a number") from None
    if not 0 < port < 65536:
        raise ValueError(f"Invalid METRICS_LISTEN_ADDR '{addr}': port out of range")

    return host, port


class Settings(BaseSettings):
    # --- config file path ---
    app_config_path: str = Field(
        default="config/exporter.yaml",
        validation_alias="APP_CONFIG_PATH",
        description="Path to YAML defaults. Env vars override YAML.",
    )

    # --- service info ---
    service_name: str = "i2pd-exporter"
    version: str = __version__

    # --- upstream I2PControl ---
    i2pcontrol_address: str = Field(default="https://127.0.0.1:7650", description="I2PControl endpoint (without /jsonrpc)")
    i2pcontrol_password: str = Field(default="itoopie")
    i2pcontrol_tls_insecure: bool = Field(default=False, description="Accept invalid TLS certs (not recommended)")
    token_error_codes: Any = Field(
        default_factory=lambda: list(DEFAULT_TOKEN_ERROR_CODES),
        validation_alias=AliasChoices("I2PCONTROL_TOKEN_ERROR_CODES", "token_error_codes"),
    )

    # --- metrics server ---
    metrics_listen_addr: str = Field(default="0.0.0.0:9600")
    max_scrape_timeout_seconds: float = Field(default=120.0, gt=0)

    # --- logging ---
    log_level: str = Field(default="INFO")
    debug_rpc_requests: bool = Field(default=False, validation_alias="DEBUG_I2PCONTROL_REQ")
    debug_rpc_bodies: bool = Field(default=False, validation_alias="DEBUG_I2PCONTROL_BODY")

    @property
    def api_url(self) -> str:
        return f"{self.i2pcontrol_address.rstrip('/')}/jsonrpc"

    @property
    def listen_host(self) -> str:
        return split_host_port(self.metrics_listen_addr)[0]

    @property
    def listen_port(self) -> int:
        return split_host_port(self.metrics_listen_addr)[1]

    @field_validator("metrics_listen_addr", mode="after")
    @classmethod
    def validate_listen_addr(cls, v: str) -> str:
        split_host_port(v)
        return v.strip()

    @field_validator("log_level", mode="after")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()

    @field_validator("token_error_codes", mode="after")
    @classmethod
    def normalize_token_error_codes(cls, v: Any) -> List[int]:
        # Env gives a string: "[-32002, -32004]" or "-32002,-32004".
        if isinstance(v, str):
            s = v.strip()
            v = json.loads(s) if s.startswith("[") else [part for part in s.split(",") if part.strip()]
        if v is None or v == []:
            return list(DEFAULT_TOKEN_ERROR_CODES)
        if isinstance(v, int) and not isinstance(v, bool):
            return [v]
        if not isinstance(v, (list, tuple)):
            raise ValueError(f"token_error_codes: expected a list of integers, got {v!r}")
        return [int(code) for code in v]

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore", populate_by_name=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        def yaml_settings() -> Dict[str, Any]:
            return load_yaml_settings(os.getenv("APP_CONFIG_PATH", "config/exporter.yaml"))

        # Highest priority first: init -> env -> dotenv -> YAML -> secrets
        return (init_settings, env_settings, dotenv_settings, yaml_settings, file_secret_settings)


def is_loopback_address(url: str) -> bool:
    host = urlsplit(url).hostname
    if not host:
        return False
    if host.lower() == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def verify_tls(s: Settings) -> bool:
    """
    TLS trust policy for the upstream client.

    Loopback targets commonly use i2pd's self-signed certificate, so they are
    trusted as-is. Anything else requires a valid chain unless the operator
    explicitly opts out with I2PCONTROL_TLS_INSECURE.
    """
    if s.i2pcontrol_tls_insecure:
        return False
    return not is_loopback_address(s.i2pcontrol_address)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
