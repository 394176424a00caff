"""Virtual machine data models.

Parsed from Resource Graph rows and round-tripped through the result cache.
"""

from __future__ import annotations

import ipaddress
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class VirtualMachineExtension(BaseModel):
    name: str = ""
    publisher: str | None = None
    type_handler_version: str | None = Field(
        default=None,
        validation_alias=_alias("typeHandlerVersion", "version", "type_handler_version"),
    )
    provisioning_state: str | None = Field(
        default=None,
        validation_alias=_alias("provisioningState", "provisioning_state"),
    )

    @field_validator("name", mode="before")
    @classmethod
    def _null_name(cls, value: Any) -> Any:
        return "" if value is None else value


class VirtualMachine(BaseModel):
    """A VM row as returned by the vminfo Resource Graph query."""
    name: str = Field(default="", validation_alias=_alias("vmName", "name"))
    resource_group: str | None = Field(
        default=None, validation_alias=_alias("rg", "resourceGroup", "resource_group")
    )
    subscription_id: str | None = Field(
        default=None, validation_alias=_alias("subscriptionId", "subscription_id")
    )
    vm_size: str | None = Field(default=None, validation_alias=_alias("vmSize", "vm_size"))
    os_type: str | None = Field(default=None, validation_alias=_alias("osType", "os_type"))
    power_state: str | None = Field(
        default=None, validation_alias=_alias("powerstate", "powerState", "power_state")
    )
    tags: dict[str, str] = Field(default_factory=dict)
    private_ip: str | None = Field(
        default=None, validation_alias=_alias("privateIp", "private_ip")
    )
    public_ip: str | None = Field(
        default=None, validation_alias=_alias("publicIp", "public_ip")
    )
    extensions: list[VirtualMachineExtension] = Field(default_factory=list)

    vm_id: str | None = Field(default=None, validation_alias=_alias("vmId", "vm_id"))
    subscription: str | None = Field(default=None, validation_alias=_alias("sub", "subscription"))
    location: str | None = None
    created: str | None = None
    os_name: str | None = Field(default=None, validation_alias=_alias("osName", "os_name"))
    os_version: str | None = Field(
        default=None, validation_alias=_alias("osVersion", "os_version")
    )
    virtual_network: str | None = Field(
        default=None, validation_alias=_alias("virtualNetwork", "virtual_network")
    )
    subnet: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _null_name(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("private_ip", "public_ip", mode="before")
    @classmethod
    def _normalize_ip(cls, value: Any) -> str | None:
        """null, "", an omitted field and garbage all mean "no address"."""
        if not isinstance(value, str):
            return None
        value = value.strip()
        if not value:
            return None
        try:
            return str(ipaddress.ip_address(value))
        except ValueError:
            return None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> dict[str, str]:
        if not value:
            return {}
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        if isinstance(value, list):
            # older rows carried [{"key": ..., "value": ...}]
            tags: dict[str, str] = {}
            for item in value:
                if isinstance(item, dict) and item.get("key") is not None:
                    val = item.get("value")
                    tags[str(item["key"])] = "" if val is None else str(val)
            return tags
        return {}

    @field_validator("extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> list[Any]:
        if not value:
            return []
        return [item for item in value if isinstance(item, (dict, VirtualMachineExtension))]

    def identity_key(self) -> str | tuple[str, str, str]:
        """Stable key used to drop rows repeated across page boundaries."""
        if self.vm_id:
            return self.vm_id.lower()
        return (
            (self.subscription_id or "").lower(),
            (self.resource_group or "").lower(),
            self.name.lower(),
        )

    def to_row(self) -> dict[str, Any]:
        """Flatten for table / CSV output."""
        return {
            "name": self.name,
            "resource_group": self.resource_group,
            "subscription": self.subscription or self.subscription_id,
            "location": self.location,
            "vm_size": self.vm_size,
            "os_type": self.os_type,
            "os_name": self.os_name,
            "power_state": self.power_state,
            "private_ip": self.private_ip or "",
            "public_ip": self.public_ip or "",
            "tags": ", ".join(f"{k}={v}" for k, v in sorted(self.tags.items())),
            "extensions": ", ".join(
                f"{e.name} ({e.type_handler_version})" if e.type_handler_version else e.name
                for e in self.extensions
            ),
        }
