"""VM inventory query service."""

from __future__ import annotations

import logging

from azure_vminfo.client import ResourceGraphClient
from azure_vminfo.models.query import QueryDescriptor, build_query_request
from azure_vminfo.models.vm import VirtualMachine
from azure_vminfo.utils.cache import ResultCache
from azure_vminfo.utils.pagination import paginate

logger = logging.getLogger(__name__)


class VMInfoService:
    """Answers VM queries from the result cache or by paging Resource Graph."""

    def __init__(
        self,
        client: ResourceGraphClient,
        cache: ResultCache,
        page_size: int = 1000,
    ) -> None:
        self._client = client
        self._cache = cache
        self._page_size = page_size

    def query(self, descriptor: QueryDescriptor, use_cache: bool = True) -> list[VirtualMachine]:
        """Return every VM matching the descriptor.

        A cache hit returns without touching the network. A fetch that starts
        at offset 0 and completes is written back to the cache; a failed or
        windowed fetch never is.

        Raises:
            InvalidQuery: No terms or a bad regular expression.
            PartialFetchAborted: A page after the first failed.
        """
        matches = descriptor.compile_matcher()
        fingerprint = self._cache.make_fingerprint(descriptor)
        start = descriptor.skip or 0

        if use_cache:
            entry = self._cache.get(fingerprint)
            if entry is not None:
                logger.info(
                    f"Cache hit: {len(entry.records)} records fetched at {entry.fetched_at}"
                )
                return entry.records[start:]

        records = paginate(
            lambda skip, top: self._client.query_page(
                build_query_request(descriptor, skip, top)
            ),
            skip=start,
            top=descriptor.top or self._page_size,
            key_fn=VirtualMachine.identity_key,
        )

        results = [vm for vm in records if matches(vm)]
        if len(results) != len(records):
            logger.debug(f"Dropped {len(records) - len(results)} rows not matching the query")
        if not descriptor.include_extensions:
            results = [
                vm.model_copy(update={"extensions": []}) if vm.extensions else vm
                for vm in results
            ]

        if start == 0:
            self._cache.put(fingerprint, results)
        return results

    def clear_cache(self) -> int:
        """Drop every cached result set."""
        return self._cache.clear()
