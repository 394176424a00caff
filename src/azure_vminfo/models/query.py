"""Query descriptor plus Resource Graph request / response models."""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, Field, field_validator

from azure_vminfo.models.auth import utcnow
from azure_vminfo.models.vm import VirtualMachine
from azure_vminfo.utils.errors import InvalidQuery

# Resource Graph rejects $top above this
MAX_PAGE_SIZE = 1000

_VM_QUERY = (
    "Resources"
    " | where type =~ 'microsoft.compute/virtualmachines'"
    " | where {filter}"
    "{tag_filter}"
    " | extend nics=array_length(properties.networkProfile.networkInterfaces)"
    " | mv-expand nic=properties.networkProfile.networkInterfaces"
    " | where nics == 1 or nic.properties.primary =~ 'true' or isempty(nic)"
    " | project subscriptionId, rg=resourceGroup, vmId = id, vmName = name,"
    " location = tostring(location), created = tostring(properties.timeCreated),"
    " vmSize = tostring(properties.hardwareProfile.vmSize), nicId = tostring(nic.id),"
    " osType = tostring(properties.storageProfile.osDisk.osType),"
    " osName = tostring(properties.extended.instanceView.osName),"
    " osVersion = tostring(properties.extended.instanceView.osVersion),"
    " powerstate = tostring(properties.extended.instanceView.powerState.code), tags"
    "{extensions_join}"
    " | join kind=leftouter (ResourceContainers"
    " | where type == 'microsoft.resources/subscriptions'"
    " | project sub=name, subscriptionId) on subscriptionId"
    " | join kind=leftouter (Resources"
    " | where type =~ 'microsoft.network/networkinterfaces'"
    " | extend ipConfigsCount=array_length(properties.ipConfigurations)"
    " | extend subnetId = tostring(properties.ipConfigurations[0].properties.subnet.id)"
    " | extend virtualNetwork = split(substring(subnetId, indexof(subnetId, '/virtualNetworks/')"
    " + strlen('/virtualNetworks/')), '/')[0]"
    " | extend subnet = substring(subnetId, indexof(subnetId, '/subnets/') + strlen('/subnets/'))"
    " | mv-expand ipconfig=properties.ipConfigurations"
    " | where ipConfigsCount == 1 or ipconfig.properties.primary =~ 'true'"
    " | project nicId = id, subnet, virtualNetwork,"
    " privateIp = tostring(ipconfig.properties.privateIPAddress),"
    " publicIpId = tolower(tostring(ipconfig.properties.publicIPAddress.id))) on nicId"
    " | join kind=leftouter (Resources"
    " | where type =~ 'microsoft.network/publicipaddresses'"
    " | project publicIpId = tolower(id), publicIp = tostring(properties.ipAddress)) on publicIpId"
    " | order by tolower(vmName) asc, vmId asc"
)

_EXTENSIONS_JOIN = (
    " | join kind=leftouter (Resources"
    " | where type =~ 'microsoft.compute/virtualmachines/extensions'"
    " | extend vmId = substring(id, 0, indexof(id, '/extensions'))"
    " | extend d = pack('name', name, 'publisher', properties.publisher,"
    " 'typeHandlerVersion', properties.typeHandlerVersion,"
    " 'provisioningState', properties.provisioningState)"
    " | summarize extensions = make_list(d) by vmId) on vmId"
)


def _kql_string(value: str) -> str:
    """Quote a value as a KQL string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _kql_verbatim(value: str) -> str:
    """Quote a regex as a KQL verbatim literal so backslashes survive."""
    return "@'" + value.replace("'", "''") + "'"


def _fold_pattern_case(pattern: str) -> str:
    """Lower-case a regex without touching escape sequences like ``\\D``."""
    out: list[str] = []
    escaped = False
    for ch in pattern:
        if escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\":
            out.append(ch)
            escaped = True
        else:
            out.append(ch.lower())
    return "".join(out)


class QueryDescriptor(BaseModel):
    """What the caller asked for. Drives both the remote query and the cache key."""
    terms: list[str]
    regexp_mode: bool = False
    include_extensions: bool = False
    skip: int | None = Field(default=None, ge=0)
    top: int | None = Field(default=None, ge=1, le=MAX_PAGE_SIZE)
    tags: dict[str, str] = Field(default_factory=dict)
    subscriptions: list[str] = Field(default_factory=list)

    @field_validator("terms")
    @classmethod
    def _strip_terms(cls, value: list[str]) -> list[str]:
        return [t.strip() for t in value if t and t.strip()]

    def fingerprint(self) -> str:
        """Deterministic cache key; ignores letter case, term order and the window."""
        if self.regexp_mode:
            terms = sorted({_fold_pattern_case(t) for t in self.terms})
        else:
            terms = sorted({t.lower() for t in self.terms})
        canonical = {
            "terms": terms,
            "regexp": self.regexp_mode,
            "extensions": self.include_extensions,
            "tags": sorted((k.lower(), v.lower()) for k, v in self.tags.items()),
            "subscriptions": sorted(s.lower() for s in self.subscriptions),
        }
        raw = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode()).hexdigest()

    def compile_matcher(self) -> Callable[[VirtualMachine], bool]:
        """Build the local name / tag predicate.

        Raises:
            InvalidQuery: No terms, or a term is not a valid regular expression.
        """
        if not self.terms:
            raise InvalidQuery("At least one VM name or pattern is required")

        if self.regexp_mode:
            patterns = []
            for term in self.terms:
                try:
                    patterns.append(re.compile(term, re.IGNORECASE))
                except re.error as e:
                    raise InvalidQuery(
                        f"Invalid regular expression {term!r}: {e}"
                    ) from e

            def name_matches(name: str) -> bool:
                return any(p.search(name) for p in patterns)
        else:
            names = {t.lower() for t in self.terms}

            def name_matches(name: str) -> bool:
                return name.lower() in names

        wanted_tags = {k.lower(): v.lower() for k, v in self.tags.items()}

        def matches(vm: VirtualMachine) -> bool:
            if not name_matches(vm.name):
                return False
            if wanted_tags:
                have = {k.lower(): v.lower() for k, v in vm.tags.items()}
                return all(have.get(k) == v for k, v in wanted_tags.items())
            return True

        return matches


class QueryRequestOptions(BaseModel):
    skip: int = Field(default=0, serialization_alias="$skip")
    top: int = Field(default=MAX_PAGE_SIZE, serialization_alias="$top")
    skip_token: str | None = Field(default=None, serialization_alias="$skipToken")
    result_format: str = Field(default="objectArray", serialization_alias="resultFormat")


class QueryRequest(BaseModel):
    """Request body understood by the Resource Graph resources endpoint."""
    query: str
    options: QueryRequestOptions = Field(default_factory=QueryRequestOptions)
    subscriptions: list[str] | None = None

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def build_query(descriptor: QueryDescriptor) -> str:
    """Template the KQL for a descriptor."""
    if descriptor.regexp_mode:
        name_filter = " or ".join(
            f"name matches regex {_kql_verbatim('(?i)' + term)}" for term in descriptor.terms
        )
    else:
        names = ", ".join(_kql_string(t.lower()) for t in descriptor.terms)
        name_filter = f"tolower(name) in ({names})"

    tag_filter = "".join(
        f" | where tostring(tags[{_kql_string(k)}]) =~ {_kql_string(v)}"
        for k, v in sorted(descriptor.tags.items())
    )

    return _VM_QUERY.format(
        filter=name_filter,
        tag_filter=tag_filter,
        extensions_join=_EXTENSIONS_JOIN if descriptor.include_extensions else "",
    )


def build_query_request(descriptor: QueryDescriptor, skip: int, top: int) -> QueryRequest:
    return QueryRequest(
        query=build_query(descriptor),
        options=QueryRequestOptions(skip=skip, top=top),
        subscriptions=descriptor.subscriptions or None,
    )


class QueryResponse(BaseModel):
    """One page from the Resource Graph API."""
    total_records: int | None = Field(default=None, alias="totalRecords")
    count: int | None = None
    data: list[VirtualMachine] = Field(default_factory=list)
    skip_token: str | None = Field(default=None, alias="$skipToken")
    result_truncated: str | None = Field(default=None, alias="resultTruncated")

    model_config = {"populate_by_name": True}

    @field_validator("data", mode="before")
    @classmethod
    def _null_data(cls, value):
        return value or []


class CacheEntry(BaseModel):
    """A complete result set stored under its fingerprint."""
    fingerprint: str
    records: list[VirtualMachine]
    fetched_at: datetime = Field(default_factory=utcnow)
