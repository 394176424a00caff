"""Shared fixtures for the azure-vminfo test suite."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from azure_vminfo.config import Config, Settings, StorePaths
from azure_vminfo.models.auth import Interactive, ServicePrincipal, Token, UserDeviceCode


NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fake_settings() -> Settings:
    return Settings(
        tenant_id="test-tenant",
        client_id="test-client-id",
        client_secret="test-client-secret",
        subscriptions=[],
        page_size=1000,
        device_code_interval=5,
        cache_enabled=True,
    )


@pytest.fixture
def fake_paths(tmp_path) -> StorePaths:
    return StorePaths.in_dir(tmp_path / "vminfo")


@pytest.fixture
def fake_config(fake_settings, fake_paths) -> Config:
    return Config(settings=fake_settings, paths=fake_paths)


@pytest.fixture
def device_cred() -> UserDeviceCode:
    return UserDeviceCode(tenant_id="test-tenant", client_id="test-client-id")


@pytest.fixture
def sp_cred() -> ServicePrincipal:
    return ServicePrincipal(
        tenant_id="test-tenant", client_id="test-client-id", client_secret="test-client-secret"
    )


@pytest.fixture
def interactive_cred() -> Interactive:
    return Interactive(tenant_id="test-tenant", client_id="test-client-id")


@pytest.fixture
def valid_token() -> Token:
    return Token(
        access_token="tok-valid",
        refresh_token="refresh-abc",
        expires_at=NOW + timedelta(hours=1),
    )


def make_response(status_code: int = 200, body=None):
    """Build a fake httpx.Response."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else {}
    resp.text = str(body)
    return resp


def make_vm_row(i: int, **overrides) -> dict:
    """A Resource Graph row in the shape the vminfo query projects."""
    row = {
        "vmName": f"vm-{i:03d}",
        "rg": "rg-prod",
        "subscriptionId": "00000000-0000-0000-0000-000000000001",
        "sub": "Production",
        "vmId": f"/subscriptions/0001/resourceGroups/rg-prod/providers/Microsoft.Compute/virtualMachines/vm-{i:03d}",
        "vmSize": "Standard_D2s_v3",
        "osType": "Linux",
        "powerstate": "PowerState/running",
        "location": "westeurope",
        "privateIp": f"10.0.{i // 256}.{i % 256}",
        "publicIp": None,
        "tags": {"env": "prod"},
    }
    row.update(overrides)
    return row
