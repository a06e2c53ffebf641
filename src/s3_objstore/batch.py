"""Windowed batch uploads/deletes and paginated bucket statistics."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional, Sequence
import logging

from s3_objstore.client import ObjectStoreClient, PutOptions, PutResult
from s3_objstore.errors import ListError, PaginationLimitError
from s3_objstore.parsing import ObjectSummary

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4

# Upper bound on ListObjectsV2 calls for one enumeration
MAX_LIST_PAGES = 10000


@dataclass
class BatchItem:
    key: str
    body: bytes
    options: Optional[PutOptions] = None


@dataclass
class BatchResult:
    """Outcome of one batch item; ``error`` is set when ``success`` is False."""
    key: str
    success: bool
    error: Optional[Exception] = None
    result: Optional[PutResult] = None

    def to_dict(self) -> dict:
        data = {"key": self.key, "success": self.success}
        if self.error is not None:
            data["error"] = str(self.error)
        return data


class BatchExecutor:
    """Run many operations with bounded concurrency.

    Items are processed in fixed windows of ``concurrency`` items: the next
    window starts only after every item of the current one has settled. A
    failing item is recorded and never stops the batch. Results come back in
    input order.
    """

    def __init__(self, client: ObjectStoreClient, concurrency: int = DEFAULT_CONCURRENCY):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.client = client
        self.concurrency = concurrency

    def _settle(self, key: str, operation: Callable[[], Optional[PutResult]]) -> BatchResult:
        try:
            result = operation()
        except Exception as exc:
            logger.warning("Batch item %r failed: %s", key, exc)
            return BatchResult(key=key, success=False, error=exc)
        return BatchResult(key=key, success=True, result=result)

    def _run(self, keys: Sequence[str], operations: Sequence[Callable]) -> List[BatchResult]:
        results: List[BatchResult] = []
        total = len(operations)
        for start in range(0, total, self.concurrency):
            window = range(start, min(start + self.concurrency, total))
            with ThreadPoolExecutor(max_workers=len(window)) as pool:
                futures = [pool.submit(self._settle, keys[i], operations[i]) for i in window]
                results.extend(future.result() for future in futures)
            logger.debug("Processed %d/%d batch items", len(results), total)
        return results

    def put_many(self, items: Iterable[BatchItem]) -> List[BatchResult]:
        """Upload items, one PUT each."""
        items = list(items)

        def upload(item: BatchItem):
            return lambda: self.client.put_object(item.key, item.body, item.options)

        return self._run([item.key for item in items], [upload(item) for item in items])

    def delete_many(self, keys: Iterable[str]) -> List[BatchResult]:
        """Delete keys; missing keys count as success."""
        keys = list(keys)

        def delete(key: str):
            return lambda: self.client.delete_object(key)

        return self._run(keys, [delete(key) for key in keys])


def iter_objects(
    client: ObjectStoreClient,
    prefix: Optional[str] = None,
    page_size: Optional[int] = None,
    max_pages: int = MAX_LIST_PAGES,
    on_page: Optional[Callable] = None,
) -> Iterator[ObjectSummary]:
    """Yield every object under ``prefix``, following continuation tokens.

    Raises:
        PaginationLimitError: the listing is still truncated after
            ``max_pages`` requests
        ListError: a truncated page came back without a continuation token
    """
    token = None
    for _ in range(max_pages):
        page = client.list_objects(prefix=prefix, max_keys=page_size, continuation_token=token)
        if on_page is not None:
            on_page(page)
        yield from page.objects
        if not page.is_truncated:
            return
        if not page.continuation_token:
            raise ListError(message="Truncated listing returned no continuation token")
        token = page.continuation_token
    raise PaginationLimitError(max_pages)


@dataclass
class BucketStats:
    prefix: Optional[str] = None
    object_count: int = 0
    total_bytes: int = 0
    page_count: int = 0
    skipped_entries: int = 0
    largest: Optional[ObjectSummary] = None
    newest_modified: Optional[datetime] = None
    sizes_by_prefix: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "prefix": self.prefix,
            "object_count": self.object_count,
            "total_bytes": self.total_bytes,
            "page_count": self.page_count,
            "skipped_entries": self.skipped_entries,
            "largest": self.largest.key if self.largest else None,
            "newest_modified": self.newest_modified.isoformat() if self.newest_modified else None,
            "sizes_by_prefix": dict(self.sizes_by_prefix),
        }


def collect_stats(
    client: ObjectStoreClient,
    prefix: Optional[str] = None,
    max_pages: int = MAX_LIST_PAGES,
) -> BucketStats:
    """Aggregate object count and sizes over a full paginated listing.

    ``sizes_by_prefix`` groups bytes by the first path segment after
    ``prefix``.
    """
    stats = BucketStats(prefix=prefix)

    def count_page(page):
        stats.page_count += 1
        stats.skipped_entries += page.skipped

    for summary in iter_objects(client, prefix=prefix, max_pages=max_pages, on_page=count_page):
        stats.object_count += 1
        stats.total_bytes += summary.size
        if stats.largest is None or summary.size > stats.largest.size:
            stats.largest = summary
        if stats.newest_modified is None or summary.last_modified > stats.newest_modified:
            stats.newest_modified = summary.last_modified
        relative = summary.key[len(prefix):] if prefix else summary.key
        group = relative.split("/", 1)[0] if "/" in relative else ""
        stats.sizes_by_prefix[group] = stats.sizes_by_prefix.get(group, 0) + summary.size

    return stats
