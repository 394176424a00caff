"""Tests for utils/output.py — VM and login status rendering."""
import json
from datetime import timedelta

from azure_vminfo.models.auth import TokenStatus
from azure_vminfo.models.vm import VirtualMachine
from azure_vminfo.utils.output import (
    VM_COLUMNS,
    OutputFormat,
    print_csv,
    print_json,
    print_status,
    print_vms,
    status_row,
    vm_columns,
)

from conftest import NOW, make_vm_row


def _vms(n):
    return [VirtualMachine.model_validate(make_vm_row(i)) for i in range(n)]


# ── print_vms ────────────────────────────────────────────────────────

def test_vms_json_keeps_every_field(capsys):
    print_vms(_vms(2), OutputFormat.JSON)
    data = json.loads(capsys.readouterr().out)
    assert [vm["name"] for vm in data] == ["vm-000", "vm-001"]
    assert "extensions" in data[0]
    assert "os_name" in data[0]


def test_vms_csv_default_columns(capsys):
    print_vms(_vms(2), OutputFormat.CSV)
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines[0] == ",".join(VM_COLUMNS)
    assert len(lines) == 3
    assert lines[1].startswith("vm-000,")


def test_vms_csv_with_extensions(capsys):
    print_vms(_vms(1), OutputFormat.CSV, include_extensions=True)
    header = capsys.readouterr().out.splitlines()[0]
    assert header.endswith(",extensions")


def test_vms_table_keeps_stdout_clean(capsys):
    print_vms(_vms(1), OutputFormat.TABLE)
    assert capsys.readouterr().out == ""


def test_vms_empty_csv_prints_nothing(capsys):
    print_vms([], OutputFormat.CSV)
    assert capsys.readouterr().out == ""


def test_vm_columns():
    assert vm_columns() == VM_COLUMNS
    assert vm_columns(True)[-1] == "extensions"
    assert "extensions" not in VM_COLUMNS


# ── login status ─────────────────────────────────────────────────────

def _status(**overrides):
    values = dict(
        has_token=True, is_expired=False, kind="device_code",
        expires_at=NOW + timedelta(hours=1), seconds_remaining=3600,
    )
    values.update(overrides)
    return TokenStatus(**values)


def test_status_row_states():
    assert status_row(_status())["status"] == "authenticated"
    assert status_row(_status(is_expired=True))["status"] == "expired"
    assert status_row(TokenStatus(has_token=False, is_expired=True))["status"] == "signed_out"


def test_status_json(capsys):
    print_status(_status(), OutputFormat.JSON)
    out = json.loads(capsys.readouterr().out)
    assert out["status"] == "authenticated"
    assert out["kind"] == "device_code"
    assert out["expires_at"] == (NOW + timedelta(hours=1)).isoformat()


def test_status_csv(capsys):
    print_status(TokenStatus(has_token=False, is_expired=True), OutputFormat.CSV)
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["status,kind,expires_at,seconds_remaining", "signed_out,,,"]


def test_status_table_keeps_stdout_clean(capsys):
    print_status(_status(), OutputFormat.TABLE)
    assert capsys.readouterr().out == ""


# ── low-level writers ────────────────────────────────────────────────

def test_print_json_datetime(capsys):
    print_json({"expires_at": NOW})
    assert json.loads(capsys.readouterr().out) == {"expires_at": str(NOW)}


def test_print_csv_none_as_empty(capsys):
    print_csv([{"name": "a", "public_ip": None}], ["name", "public_ip"])
    assert capsys.readouterr().out.splitlines()[1] == "a,"
