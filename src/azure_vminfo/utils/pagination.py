"""Pagination helpers for the Resource Graph API."""

from __future__ import annotations

import logging
from typing import Any, Callable, Hashable

from azure_vminfo.models.query import QueryResponse
from azure_vminfo.utils.errors import PartialFetchAborted, VMInfoError

logger = logging.getLogger(__name__)


def paginate(
    fetch_fn: Callable[[int, int], QueryResponse],
    *,
    skip: int = 0,
    top: int = 1000,
    key_fn: Callable[[Any], Hashable] | None = None,
) -> list[Any]:
    """Page through all results using $skip / $top.

    Args:
        fetch_fn: Called as ``fetch_fn(skip, top)``; returns one page.
        skip: Offset of the first record to fetch.
        top: Page size.
        key_fn: Identity of a record; repeats of a key already seen are dropped.

    Returns:
        All records in server order, de-duplicated.

    Raises:
        PartialFetchAborted: A page after the first failed. Nothing fetched so
            far is returned.
    """
    all_results: list[Any] = []
    seen: set[Hashable] = set()
    offset = skip
    page = 0

    while True:
        try:
            response = fetch_fn(offset, top)
        except VMInfoError as e:
            if page == 0:
                raise
            raise PartialFetchAborted(page + 1, len(all_results), e) from e
        page += 1

        for item in response.data:
            if key_fn is not None:
                key = key_fn(item)
                if key in seen:
                    logger.debug(f"Dropping duplicate record {key!r} on page {page}")
                    continue
                seen.add(key)
            all_results.append(item)

        received = response.count if response.count is not None else len(response.data)
        offset += received
        logger.info(
            f"Page {page}: {len(response.data)} records "
            f"(offset {offset} of {response.total_records if response.total_records is not None else '?'})"
        )

        if not response.data or received == 0:
            break
        if response.total_records is not None:
            if offset >= response.total_records:
                break
        elif len(response.data) < top:
            break

    return all_results
