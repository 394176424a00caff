"""Tests for token_store.py — persistence, corruption, permissions."""
import os
import stat

from azure_vminfo.models.auth import TokenRecord
from azure_vminfo.token_store import TokenStore

from conftest import NOW


def _record(token, kind="device_code") -> TokenRecord:
    return TokenRecord(
        kind=kind, tenant_id="test-tenant", client_id="test-client-id", token=token, saved_at=NOW
    )


def test_load_missing_file(tmp_path):
    store = TokenStore(tmp_path / "tokens.json")
    assert store.load() is None


def test_save_then_load(tmp_path, valid_token):
    store = TokenStore(tmp_path / "nested" / "tokens.json")
    store.save(_record(valid_token))
    loaded = store.load()
    assert loaded == _record(valid_token)


def test_save_replaces_previous(tmp_path, valid_token):
    store = TokenStore(tmp_path / "tokens.json")
    store.save(_record(valid_token))
    store.save(_record(valid_token, kind="service_principal"))
    assert store.load().kind == "service_principal"


def test_save_is_owner_only(tmp_path, valid_token):
    path = tmp_path / "tokens.json"
    TokenStore(path).save(_record(valid_token))
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_save_leaves_no_temp_files(tmp_path, valid_token):
    TokenStore(tmp_path / "tokens.json").save(_record(valid_token))
    assert [p.name for p in tmp_path.iterdir()] == ["tokens.json"]


def test_corrupt_file_reads_as_missing(tmp_path, caplog):
    path = tmp_path / "tokens.json"
    path.write_text("{not json")
    assert TokenStore(path).load() is None
    assert "corrupt" in caplog.text


def test_invalid_utf8_is_a_miss(tmp_path, caplog):
    path = tmp_path / "tokens.json"
    path.write_bytes(b"\xff\xfe\x80\x81")
    assert TokenStore(path).load() is None
    assert "unreadable" in caplog.text


def test_wrong_shape_reads_as_missing(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text('{"kind": "device_code"}')
    assert TokenStore(path).load() is None


def test_empty_file_reads_as_missing(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text("")
    assert TokenStore(path).load() is None


def test_clear(tmp_path, valid_token):
    store = TokenStore(tmp_path / "tokens.json")
    store.save(_record(valid_token))
    assert store.clear() is True
    assert store.load() is None
    assert store.clear() is False


def test_persisted_file_has_no_secret(tmp_path, valid_token):
    path = tmp_path / "tokens.json"
    TokenStore(path).save(_record(valid_token, kind="service_principal"))
    assert "test-client-secret" not in path.read_text()
