"""Rendering of VM lookups and login status.

Tables are for people and go to stderr through rich. JSON and CSV are for
scripts and go to stdout, so ``vminfo -o json web01 | jq`` never sees the
progress chatter.
"""

from __future__ import annotations

import csv
import json
import sys
from collections.abc import Sequence
from enum import Enum
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from azure_vminfo.models.auth import TokenStatus
from azure_vminfo.models.vm import VirtualMachine

console = Console(stderr=True)

VM_COLUMNS = [
    "name", "resource_group", "subscription", "location", "vm_size",
    "os_type", "power_state", "private_ip", "public_ip", "tags",
]
STATUS_COLUMNS = ["status", "kind", "expires_at", "seconds_remaining"]


class OutputFormat(str, Enum):
    TABLE = "table"
    JSON = "json"
    CSV = "csv"


def vm_columns(include_extensions: bool = False) -> list[str]:
    return VM_COLUMNS + ["extensions"] if include_extensions else list(VM_COLUMNS)


def print_vms(
    vms: Sequence[VirtualMachine],
    fmt: OutputFormat = OutputFormat.TABLE,
    include_extensions: bool = False,
) -> None:
    """Print a lookup result.

    JSON carries every field of each record, extensions included when they
    were fetched. Table and CSV use the flattened ``to_row`` view.
    """
    if fmt == OutputFormat.JSON:
        print_json([vm.model_dump(mode="json") for vm in vms])
        return

    columns = vm_columns(include_extensions)
    rows = [vm.to_row() for vm in vms]
    if fmt == OutputFormat.CSV:
        print_csv(rows, columns)
    else:
        _vm_table(rows, columns)


def status_row(status: TokenStatus) -> dict[str, Any]:
    if not status.has_token:
        state = "signed_out"
    elif status.is_expired:
        state = "expired"
    else:
        state = "authenticated"
    return {
        "status": state,
        "kind": status.kind,
        "expires_at": status.expires_at.isoformat() if status.expires_at else None,
        "seconds_remaining": status.seconds_remaining,
    }


def print_status(status: TokenStatus, fmt: OutputFormat = OutputFormat.TABLE) -> None:
    """Print the token status shown after ``--login``."""
    row = status_row(status)
    if fmt == OutputFormat.JSON:
        print_json(row)
    elif fmt == OutputFormat.CSV:
        print_csv([row], STATUS_COLUMNS)
    else:
        table = Table(title="Authentication", show_header=False)
        table.add_column("field", style="bold")
        table.add_column("value")
        for key in STATUS_COLUMNS:
            table.add_row(key, "" if row[key] is None else str(row[key]))
        console.print(table)


def print_json(data: Any) -> None:
    """Print data as formatted JSON to stdout."""
    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def print_csv(rows: list[dict[str, Any]], columns: list[str]) -> None:
    """Print rows as CSV to stdout; None becomes an empty cell."""
    if not rows:
        return
    writer = csv.DictWriter(sys.stdout, fieldnames=columns, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: "" if row.get(k) is None else row[k] for k in columns})


def _power_state(value: str | None) -> Text:
    value = value or ""
    lowered = value.lower()
    if "running" in lowered:
        return Text(value, style="green")
    if "deallocated" in lowered or "stopped" in lowered:
        return Text(value, style="red")
    return Text(value, style="dim")


def _vm_table(rows: list[dict[str, Any]], columns: list[str]) -> None:
    if not rows:
        console.print("[dim]No virtual machines matched.[/dim]")
        return

    table = Table(title="Virtual Machines", caption=f"{len(rows)} VMs")
    for col in columns:
        table.add_column(col, overflow="fold", no_wrap=col == "name")
    for row in rows:
        table.add_row(*[
            _power_state(row.get(col)) if col == "power_state"
            else ("" if row.get(col) is None else str(row[col]))
            for col in columns
        ])
    console.print(table)
