"""Tests for services/vminfo.py — cache-or-fetch query orchestration."""
from unittest.mock import MagicMock

import pytest

from azure_vminfo.models.query import QueryDescriptor, QueryResponse
from azure_vminfo.services.vminfo import VMInfoService
from azure_vminfo.utils.cache import ResultCache
from azure_vminfo.utils.errors import (
    AuthExpired,
    InvalidQuery,
    NetworkFailure,
    PartialFetchAborted,
)

from conftest import make_vm_row


def _fake_client(rows, fail_at_skip=None):
    """MagicMock standing in for ResourceGraphClient; serves ``rows`` by $skip / $top."""
    client = MagicMock()

    def query_page(request):
        skip, top = request.options.skip, request.options.top
        if fail_at_skip is not None and skip >= fail_at_skip:
            raise NetworkFailure("connection reset")
        page = rows[skip:skip + top]
        return QueryResponse.model_validate(
            {"totalRecords": len(rows), "count": len(page), "data": page}
        )

    client.query_page.side_effect = query_page
    return client


def _web_rows(n):
    return [make_vm_row(i, vmName=f"web{i:03d}") for i in range(n)]


@pytest.fixture
def cache(tmp_path) -> ResultCache:
    return ResultCache(tmp_path / "cache.json")


# ── Fetch and cache ──────────────────────────────────────────────────

def test_end_to_end_two_pages_then_cached(cache):
    client = _fake_client(_web_rows(150))
    service = VMInfoService(client, cache)
    descriptor = QueryDescriptor(terms=["web"], regexp_mode=True, top=100)

    first = service.query(descriptor)
    assert len(first) == 150
    assert client.query_page.call_count == 2

    second = service.query(descriptor)
    assert second == first
    assert client.query_page.call_count == 2


def test_cache_hit_ignores_term_case(cache):
    client = _fake_client(_web_rows(3))
    service = VMInfoService(client, cache)

    service.query(QueryDescriptor(terms=["WEB001"]))
    result = service.query(QueryDescriptor(terms=["web001"]))
    assert [vm.name for vm in result] == ["web001"]
    assert client.query_page.call_count == 1


def test_no_cache_always_fetches(cache):
    client = _fake_client(_web_rows(3))
    service = VMInfoService(client, cache)
    descriptor = QueryDescriptor(terms=["web001"])

    service.query(descriptor)
    service.query(descriptor, use_cache=False)
    assert client.query_page.call_count == 2


def test_no_cache_still_refreshes_entry(cache):
    rows = _web_rows(3)
    client = _fake_client(rows)
    service = VMInfoService(client, cache)
    descriptor = QueryDescriptor(terms=["web"], regexp_mode=True)

    service.query(descriptor)
    rows.append(make_vm_row(99, vmName="web099"))
    service.query(descriptor, use_cache=False)
    assert len(cache.get(descriptor.fingerprint()).records) == 4


def test_uses_service_page_size_without_top(cache):
    client = _fake_client(_web_rows(5))
    service = VMInfoService(client, cache, page_size=2)

    service.query(QueryDescriptor(terms=["web"], regexp_mode=True))
    assert client.query_page.call_count == 3
    assert client.query_page.call_args_list[0].args[0].options.top == 2


def test_local_filter_drops_non_matching_rows(cache):
    rows = _web_rows(2) + [make_vm_row(50, vmName="db050")]
    service = VMInfoService(_fake_client(rows), cache)

    result = service.query(QueryDescriptor(terms=["^web"], regexp_mode=True))
    assert [vm.name for vm in result] == ["web000", "web001"]


def test_tag_filter(cache):
    rows = [make_vm_row(1, vmName="web001", tags={"env": "prod"}),
            make_vm_row(2, vmName="web002", tags={"env": "dev"})]
    service = VMInfoService(_fake_client(rows), cache)

    result = service.query(QueryDescriptor(terms=["web"], regexp_mode=True, tags={"env": "dev"}))
    assert [vm.name for vm in result] == ["web002"]


def test_extensions_dropped_unless_requested(cache):
    rows = [make_vm_row(1, vmName="web001", extensions=[{"name": "ext"}])]
    service = VMInfoService(_fake_client(rows), cache)

    without = service.query(QueryDescriptor(terms=["web001"]))
    assert without[0].extensions == []
    with_ext = service.query(QueryDescriptor(terms=["web001"], include_extensions=True))
    assert [e.name for e in with_ext[0].extensions] == ["ext"]


# ── Windows ──────────────────────────────────────────────────────────

def test_skip_window_is_not_cached(cache):
    client = _fake_client(_web_rows(10))
    service = VMInfoService(client, cache)
    descriptor = QueryDescriptor(terms=["web"], regexp_mode=True, skip=4)

    result = service.query(descriptor)
    assert [vm.name for vm in result][:1] == ["web004"]
    assert len(result) == 6
    assert cache.get(descriptor.fingerprint()) is None


def test_skip_served_from_complete_cache(cache):
    client = _fake_client(_web_rows(10))
    service = VMInfoService(client, cache)

    service.query(QueryDescriptor(terms=["web"], regexp_mode=True))
    result = service.query(QueryDescriptor(terms=["web"], regexp_mode=True, skip=8))
    assert [vm.name for vm in result] == ["web008", "web009"]
    assert client.query_page.call_count == 1


# ── Failures ─────────────────────────────────────────────────────────

def test_invalid_regexp_never_touches_network(cache):
    client = _fake_client(_web_rows(3))
    service = VMInfoService(client, cache)
    with pytest.raises(InvalidQuery):
        service.query(QueryDescriptor(terms=["web["], regexp_mode=True))
    client.query_page.assert_not_called()


def test_empty_terms(cache):
    client = _fake_client([])
    with pytest.raises(InvalidQuery):
        VMInfoService(client, cache).query(QueryDescriptor(terms=["  "]))
    client.query_page.assert_not_called()


def test_partial_failure_leaves_no_cache_entry(cache):
    client = _fake_client(_web_rows(250), fail_at_skip=200)
    service = VMInfoService(client, cache)
    descriptor = QueryDescriptor(terms=["web"], regexp_mode=True, top=100)

    with pytest.raises(PartialFetchAborted) as exc_info:
        service.query(descriptor)
    assert exc_info.value.page == 3
    assert exc_info.value.fetched == 200
    assert cache.get(descriptor.fingerprint()) is None


def test_partial_failure_keeps_previous_entry(cache):
    rows = _web_rows(150)
    service = VMInfoService(_fake_client(rows), cache)
    descriptor = QueryDescriptor(terms=["web"], regexp_mode=True, top=100)
    service.query(descriptor)

    failing = VMInfoService(_fake_client(rows, fail_at_skip=100), cache)
    with pytest.raises(PartialFetchAborted):
        failing.query(descriptor, use_cache=False)
    assert len(cache.get(descriptor.fingerprint()).records) == 150


def test_first_page_auth_failure_propagates(cache):
    client = MagicMock()
    client.query_page.side_effect = AuthExpired("token rejected")
    with pytest.raises(AuthExpired):
        VMInfoService(client, cache).query(QueryDescriptor(terms=["web001"]))
    assert cache.size == 0


def test_clear_cache(cache):
    service = VMInfoService(_fake_client(_web_rows(2)), cache)
    service.query(QueryDescriptor(terms=["web000"]))
    assert service.clear_cache() == 1
    assert cache.size == 0
