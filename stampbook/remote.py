"""
Remote collection adapter.

Wraps a RemoteCollectionProtocol wire client with the guarantees the
collection store relies on:
- load never hangs and never raises: timeout or failure yields []
- save is chunked below the backend's per-commit ceiling, each chunk is
  time-bounded, and every failure reaches the caller
- save refuses to write under an owner other than the signed-in one
- delete is best effort but failures are logged
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional

from .errors import NotSignedInError, OwnerMismatchError, RemoteTimeoutError
from .protocol import RemoteCollectionProtocol
from .types import LOCAL_OWNERS, StampRecord

logger = logging.getLogger(__name__)

# Timeouts
LOAD_TIMEOUT = 10.0
SAVE_TIMEOUT = 15.0

# Firestore allows 500 writes per commit; keep a margin
BATCH_MAX_OPS = 450


def chunk(items: list, size: int) -> list[list]:
    """Split items into consecutive groups of at most `size`."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive: {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]


def sort_by_recent_visit(records: list[StampRecord]) -> list[StampRecord]:
    """Newest last_visit_date first, unknown dates at the end."""
    dated = sorted(
        (r for r in records if r.last_visit_date is not None),
        key=lambda r: r.last_visit_date,
        reverse=True,
    )
    return dated + [r for r in records if r.last_visit_date is None]


class RemoteCollection:
    """Time-bounded, owner-checked access to remote stamp collections."""

    def __init__(
        self,
        client: RemoteCollectionProtocol,
        *,
        load_timeout: float = LOAD_TIMEOUT,
        save_timeout: float = SAVE_TIMEOUT,
        batch_size: int = BATCH_MAX_OPS,
    ):
        self._client = client
        self._load_timeout = load_timeout
        self._save_timeout = save_timeout
        self._batch_size = batch_size
        # Calls that overrun their timeout keep a worker busy until the
        # HTTP layer gives up, so allow a few in parallel
        self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="stampbook-remote")

    @property
    def client(self) -> RemoteCollectionProtocol:
        return self._client

    @property
    def current_uid(self) -> Optional[str]:
        return self._client.current_uid

    def load(self, owner_id: str) -> list[StampRecord]:
        """
        Fetch the owner's full collection.

        Returns:
            Records sorted by last visit (newest first); [] on timeout or error
        """
        future = self._pool.submit(self._client.list_documents, owner_id)
        try:
            docs = future.result(timeout=self._load_timeout)
        except FutureTimeoutError:
            logger.warning(
                "Remote load timed out after %.1fs (owner=%s); using empty collection",
                self._load_timeout, owner_id,
            )
            return []
        except Exception as e:
            logger.warning("Remote load failed (owner=%s): %s", owner_id, e)
            return []

        records = [StampRecord.from_dict(d, owner_id=owner_id) for d in docs]
        logger.info("Remote load: owner=%s docs=%d", owner_id, len(records))
        missing_name = sum(1 for r in records if not r.store_name)
        missing_count = sum(1 for r in records if r.visit_count is None)
        missing_date = sum(1 for r in records if r.last_visit_date is None)
        if missing_name or missing_count or missing_date:
            logger.info(
                "Remote load missing fields: storeName=%d visitCount=%d lastVisitDate=%d",
                missing_name, missing_count, missing_date,
            )
        return sort_by_recent_visit(records)

    def _check_owner(self, owner_id: str) -> None:
        uid = self._client.current_uid
        if not uid:
            raise NotSignedInError(
                f"Cannot write collection of {owner_id}: not signed in"
            )
        if uid != owner_id:
            raise OwnerMismatchError(
                f"Refusing to write collection of {owner_id} as {uid}"
            )

    def save(self, records: list[StampRecord], owner_id: str) -> None:
        """
        Upsert records into the owner's collection by id.

        Raises:
            NotSignedInError / OwnerMismatchError: session does not own owner_id
            ValueError: a record has no id
            RemoteTimeoutError: a chunk did not commit in time
            RemoteCollectionError: the wire client failed
        """
        if not records or owner_id in LOCAL_OWNERS:
            return
        self._check_owner(owner_id)

        seen: dict[str, int] = {}
        for r in records:
            if not r.id:
                raise ValueError(f"Record id is missing (storeName={r.store_name!r})")
            seen[r.id] = seen.get(r.id, 0) + 1
        duplicates = [rid for rid, n in seen.items() if n > 1]
        if duplicates:
            logger.warning(
                "Duplicate record ids in save (%d): %s", len(duplicates), duplicates[:10],
            )

        started = time.monotonic()
        groups = chunk(records, self._batch_size)
        logger.info("Remote save start: owner=%s records=%d chunks=%d",
                    owner_id, len(records), len(groups))
        for i, group in enumerate(groups, start=1):
            docs = [r.to_dict() for r in group]
            logger.debug("Committing chunk %d/%d: ops=%d", i, len(groups), len(docs))
            future = self._pool.submit(self._client.commit_upserts, owner_id, docs)
            try:
                future.result(timeout=self._save_timeout)
            except FutureTimeoutError as e:
                raise RemoteTimeoutError(
                    f"Commit of chunk {i}/{len(groups)} timed out after {self._save_timeout}s"
                ) from e
        logger.info("Remote save done: %dms", int((time.monotonic() - started) * 1000))

    def delete(self, owner_id: str, record_id: str) -> None:
        """Remove one record. Failures are logged, not raised."""
        if owner_id in LOCAL_OWNERS:
            return
        try:
            self._client.delete_document(owner_id, record_id)
        except Exception as e:
            logger.warning("Remote delete failed (owner=%s id=%s): %s", owner_id, record_id, e)

    def close(self) -> None:
        """Stop the worker pool and close the wire client."""
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._client.close()
