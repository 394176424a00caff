"""Configuration management for azure-vminfo.

Settings come from ``~/.config/azure-vminfo/config.yaml``, a ``.env`` file in
the working directory and ``AZURE_VMINFO_*`` environment variables (highest
priority).
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from azure_vminfo.models.auth import (
    CredentialKind,
    Interactive,
    ServicePrincipal,
    UserDeviceCode,
)
from azure_vminfo.models.query import MAX_PAGE_SIZE

APP_NAME = "azure-vminfo"


class Settings(BaseModel):
    """Application settings."""
    tenant_id: str = Field(default="", description="Azure AD tenant ID")
    client_id: str = Field(default="", description="App registration (client) ID")
    client_secret: str = Field(default="", description="Client secret for service-principal login")
    redirect_uri: str = Field(default="http://localhost:8400", description="Redirect URI for interactive login")
    authority_host: str = Field(default="https://login.microsoftonline.com", description="Identity platform host")
    resource_endpoint: str = Field(default="https://management.azure.com", description="Azure Resource Manager endpoint")
    subscriptions: list[str] = Field(default_factory=list, description="Subscriptions to scope queries to (empty = all)")
    page_size: int = Field(default=MAX_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Resource Graph page size ($top)")
    device_code_interval: int = Field(default=5, ge=1, description="Fallback device-code poll interval in seconds")
    http_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    cache_enabled: bool = Field(default=True, description="Enable the local result cache")


class StorePaths(BaseModel):
    """On-disk locations of the token store and result cache."""
    token_file: Path
    cache_file: Path

    @classmethod
    def in_dir(cls, directory: Path) -> StorePaths:
        return cls(token_file=directory / "tokens.json", cache_file=directory / "cache.json")


class Config(BaseModel):
    """Full application configuration."""
    settings: Settings
    paths: StorePaths

    def credential(
        self, kind: CredentialKind
    ) -> UserDeviceCode | ServicePrincipal | Interactive:
        """Build the credential for an auth mode from the configured settings."""
        s = self.settings
        missing = [
            name
            for name, value in (("tenant_id", s.tenant_id), ("client_id", s.client_id))
            if not value
        ]
        if kind == "service_principal" and not s.client_secret:
            missing.append("client_secret")
        if missing:
            env_names = ", ".join(f"AZURE_VMINFO_{name.upper()}" for name in missing)
            raise ValueError(
                f"Missing {', '.join(missing)} for {kind} login. "
                f"Set {env_names} or add them to config.yaml"
            )

        if kind == "service_principal":
            return ServicePrincipal(
                tenant_id=s.tenant_id, client_id=s.client_id, client_secret=s.client_secret
            )
        if kind == "interactive":
            return Interactive(
                tenant_id=s.tenant_id, client_id=s.client_id, redirect_uri=s.redirect_uri
            )
        return UserDeviceCode(tenant_id=s.tenant_id, client_id=s.client_id)


def config_dir() -> Path:
    """Directory holding config.yaml, tokens.json and cache.json."""
    override = _env("AZURE_VMINFO_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load settings overrides from config.yaml. Missing file -> {}."""
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _env(*keys: str, default: str = "") -> str:
    """Try multiple env var names, return the first one found."""
    for key in keys:
        val = os.environ.get(key, "")
        if val:
            return val.strip().strip('"')
    return default


def _load_settings(file_values: dict[str, Any] | None = None) -> Settings:
    """Merge config-file values with environment variables.

    Supports both AZURE_VMINFO_* and the generic AZURE_* names used by the Azure SDKs.
    """
    values: dict[str, Any] = dict(file_values or {})

    env_map = {
        "tenant_id": ("AZURE_VMINFO_TENANT_ID", "AZURE_TENANT_ID"),
        "client_id": ("AZURE_VMINFO_CLIENT_ID", "AZURE_CLIENT_ID"),
        "client_secret": ("AZURE_VMINFO_CLIENT_SECRET", "AZURE_CLIENT_SECRET"),
        "redirect_uri": ("AZURE_VMINFO_REDIRECT_URI",),
        "authority_host": ("AZURE_VMINFO_AUTHORITY_HOST", "AZURE_AUTHORITY_HOST"),
        "resource_endpoint": ("AZURE_VMINFO_RESOURCE_ENDPOINT",),
        "page_size": ("AZURE_VMINFO_PAGE_SIZE",),
        "device_code_interval": ("AZURE_VMINFO_DEVICE_CODE_INTERVAL",),
        "http_timeout": ("AZURE_VMINFO_HTTP_TIMEOUT",),
    }
    for field, keys in env_map.items():
        val = _env(*keys)
        if val:
            values[field] = val

    subscriptions = _env("AZURE_VMINFO_SUBSCRIPTIONS")
    if subscriptions:
        values["subscriptions"] = [s.strip() for s in subscriptions.split(",") if s.strip()]

    cache_enabled = _env("AZURE_VMINFO_CACHE_ENABLED")
    if cache_enabled:
        values["cache_enabled"] = cache_enabled.lower() in ("true", "1", "yes")

    return Settings(**values)


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Load and cache the full application configuration."""
    # Load .env from the working directory if it exists
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    directory = config_dir()
    settings = _load_settings(_load_yaml(directory / "config.yaml"))
    return Config(settings=settings, paths=StorePaths.in_dir(directory))
