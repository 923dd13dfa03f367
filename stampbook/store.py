"""
Collection store: the owner of the in-memory stamp collection.

Responsibilities:
- pick the backend for the active identity (local cache or remote)
- load it on activation, migrating guest leftovers into a fresh sign-in
- reconcile extraction output through merge_records()
- track whether the remote collection lags behind (dirty) and sync it,
  debounced for bursts, immediately for edits, on demand via request_sync()

States::

    UNINITIALIZED -> LOADING -> READY_CLEAN <-> READY_DIRTY -> SYNCING
                                     ^                             |
                                     +------- success -------------+
                                  READY_DIRTY <---- failure -------+

While anonymous, every mutation is written straight to the local cache and
the store never leaves READY_CLEAN. No write is retried automatically.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from enum import Enum
from typing import Callable, Iterable, Optional

from .backends import create_backend
from .errors import RemoteCollectionError, StoreNotReadyError
from .identity import Identity, IdentityFeed
from .local_cache import LocalCache
from .merge import changed_records, merge_records
from .protocol import CollectionBackend
from .remote import RemoteCollection
from .types import (
    MergeTally,
    StampRecord,
    coerce_coordinate,
    coerce_visit_count,
    coerce_visit_date,
)

logger = logging.getLogger(__name__)

# Quiet period before a background sync of accumulated mutations
DEBOUNCE_SECONDS = 1.0


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY_CLEAN = "ready-clean"
    READY_DIRTY = "ready-dirty"
    SYNCING = "syncing"


class DebouncedTask:
    """
    Run a function once after a quiet period.

    Each schedule() cancels the pending timer and arms a new one, so a
    burst of calls results in a single run `delay` seconds after the last.
    """

    def __init__(self, delay: float, fn: Callable[[], None], name: str = "stampbook-debounce"):
        self._delay = delay
        self._fn = fn
        self._name = name
        self._timer: Optional[threading.Timer] = None
        self._seq = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._seq += 1
            self._timer = threading.Timer(self._delay, self._fire, args=(self._seq,))
            self._timer.name = self._name
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> bool:
        """Cancel the pending run. Returns True if one was pending."""
        with self._lock:
            timer, self._timer = self._timer, None
            # A timer that already fired but hasn't taken the lock sees a stale seq
            self._seq += 1
        if timer is None:
            return False
        timer.cancel()
        return True

    def _fire(self, seq: int) -> None:
        with self._lock:
            if seq != self._seq:
                return
            self._timer = None
        self._fn()


StoreListener = Callable[["CollectionStore"], None]


class CollectionStore:
    """
    In-memory stamp collection mirrored to the backend of the active identity.

    Args:
        cache: Local cache (guest collection and migration source)
        remote: Remote collection adapter; required to activate a signed-in identity
        debounce_seconds: Quiet period before an automatic background sync
    """

    def __init__(
        self,
        cache: LocalCache,
        remote: Optional[RemoteCollection] = None,
        *,
        debounce_seconds: float = DEBOUNCE_SECONDS,
    ):
        self._cache = cache
        self._remote = remote
        self._lock = threading.RLock()

        self._records: list[StampRecord] = []
        self._state = SyncState.UNINITIALIZED
        self._identity: Optional[Identity] = None
        self._backend: Optional[CollectionBackend] = None

        # Bumped on identity change; stale background results are dropped
        self._generation = 0
        # Bumped on every mutation; a sync is clean only if none happened meanwhile
        self._revision = 0

        self._debounce = DebouncedTask(debounce_seconds, self._debounced_sync)
        self._workers = ThreadPoolExecutor(max_workers=2, thread_name_prefix="stampbook-sync")
        self._pending: set[Future] = set()
        self._closed = False
        # (generation, record id) deletes waiting for the in-flight sync to land
        self._held_deletes: list[tuple[int, str]] = []
        self._listeners: list[StoreListener] = []
        self._detach: Optional[Callable[[], None]] = None

    # -------------------------------------------------------------------------
    # Observable state
    # -------------------------------------------------------------------------

    @property
    def records(self) -> list[StampRecord]:
        with self._lock:
            return list(self._records)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_loading(self) -> bool:
        return self._state in (SyncState.UNINITIALIZED, SyncState.LOADING)

    @property
    def is_syncing(self) -> bool:
        return self._state == SyncState.SYNCING

    @property
    def is_dirty(self) -> bool:
        """True while the remote collection has not confirmed local changes."""
        return self._state in (SyncState.READY_DIRTY, SyncState.SYNCING)

    def get(self, record_id: str) -> Optional[StampRecord]:
        with self._lock:
            return next((r for r in self._records if r.id == record_id), None)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Call `listener(store)` after every state or collection change."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception as e:
                logger.warning("Store listener %r failed: %s", listener, e)

    # -------------------------------------------------------------------------
    # Identity activation and migration
    # -------------------------------------------------------------------------

    def attach(self, feed: IdentityFeed) -> None:
        """Follow an identity feed: every change re-activates the store."""
        if self._detach is not None:
            self._detach()
        self._detach = feed.subscribe(self.activate)

    def activate(self, identity: Identity) -> None:
        """
        Load the collection for an identity.

        Anonymous: the local cache is the collection. Signed in: the remote
        collection, with any guest leftovers migrated into it first.
        Failures degrade to the best available data and never raise, except
        for a signed-in identity with no remote collection configured.
        """
        with self._lock:
            if identity == self._identity and self._state != SyncState.UNINITIALIZED:
                return
            if self._state in (SyncState.READY_DIRTY, SyncState.SYNCING):
                logger.warning(
                    "Identity changing from %s with unsynced changes; they are not carried over",
                    self._identity,
                )
            backend = create_backend(identity, self._cache, self._remote)
            self._debounce.cancel()
            self._generation += 1
            generation = self._generation
            self._identity = identity
            self._backend = backend
            self._records = []
            self._state = SyncState.LOADING
        self._notify()

        if identity.is_anonymous:
            records = backend.load()
            state = SyncState.READY_CLEAN
        else:
            records, state = self._load_and_migrate(identity, backend)

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding load for %s: identity changed meanwhile", identity)
                return
            self._records = records
            self._state = state
            self._revision += 1
        logger.info("Activated %s: %d records (%s)", identity, len(records), state.value)
        self._notify()

    def _load_and_migrate(
        self,
        identity: Identity,
        backend: CollectionBackend,
    ) -> tuple[list[StampRecord], SyncState]:
        """Fetch the remote collection and fold guest leftovers into it once."""
        remote_records = backend.load()
        leftovers = self._cache.load()
        if not leftovers:
            return remote_records, SyncState.READY_CLEAN

        merged, tally = merge_records(remote_records, leftovers, identity.owner_id)
        to_push = changed_records(remote_records, merged)
        logger.info(
            "Migrating %d local records for %s: added=%d updated=%d skipped=%d",
            len(leftovers), identity, tally.added, tally.updated, tally.skipped,
        )
        try:
            backend.save(to_push)
        except RemoteCollectionError as e:
            # Local leftovers stay in place; a later sign-in merges them again
            logger.warning("Migration push failed, keeping local records: %s", e)
            return merged, SyncState.READY_DIRTY

        self._cache.clear()
        logger.info("Migration complete: %d records integrated", len(to_push))
        return merged, SyncState.READY_CLEAN

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _require_ready(self) -> None:
        if self._state in (SyncState.UNINITIALIZED, SyncState.LOADING):
            raise StoreNotReadyError(
                f"Collection is not ready ({self._state.value}); wait for activation"
            )

    def _after_mutation(self) -> bool:
        """Persist or mark dirty after a change. Caller holds the lock.

        Returns True when the change still has to reach the remote backend.
        """
        self._revision += 1
        if not self._backend.is_remote:
            self._backend.save(self._records)
            return False
        if self._state == SyncState.READY_CLEAN:
            self._state = SyncState.READY_DIRTY
        self._debounce.schedule()
        return True

    def ingest(self, candidates: Iterable[StampRecord]) -> MergeTally:
        """
        Merge extraction candidates into the collection.

        Returns:
            Counts of added, updated and skipped candidates
        """
        candidates = list(candidates)
        with self._lock:
            self._require_ready()
            merged, tally = merge_records(self._records, candidates, self._identity.owner_id)
            if tally.changed:
                self._records = merged
                self._after_mutation()
        logger.info(
            "Ingested %d candidates: added=%d updated=%d skipped=%d",
            len(candidates), tally.added, tally.updated, tally.skipped,
        )
        if tally.changed:
            self._notify()
        return tally

    def update(self, record: StampRecord) -> StampRecord:
        """
        Replace a record by id (direct user edit).

        The id and owner are kept from the stored record. When signed in, a
        background sync is started right away.

        Raises:
            KeyError: no record with that id
        """
        with self._lock:
            self._require_ready()
            index = next(
                (i for i, r in enumerate(self._records) if r.id == record.id), None
            )
            if index is None:
                raise KeyError(record.id)
            current = self._records[index]
            updated = replace(
                record,
                id=current.id,
                owner_id=current.owner_id,
                visit_count=coerce_visit_count(record.visit_count),
                last_visit_date=coerce_visit_date(record.last_visit_date),
                latitude=coerce_coordinate(record.latitude),
                longitude=coerce_coordinate(record.longitude),
            )
            records = list(self._records)
            records[index] = updated
            self._records = records
            needs_remote = self._after_mutation()
        if needs_remote:
            self._submit(self._background_sync)
        self._notify()
        return updated

    def delete(self, record_id: str) -> bool:
        """
        Remove a record from the collection.

        Takes effect in memory immediately; when signed in, one remote
        delete is attempted in the background.
        While a sync is in flight the delete waits for its write to return,
        since that write still carries the record.

        Returns:
            False if no record had that id
        """
        with self._lock:
            self._require_ready()
            remaining = [r for r in self._records if r.id != record_id]
            if len(remaining) == len(self._records):
                return False
            self._records = remaining
            backend = self._backend
            needs_remote = self._after_mutation()
            if needs_remote and self._state == SyncState.SYNCING:
                self._held_deletes.append((self._generation, record_id))
                needs_remote = False
        if needs_remote:
            self._submit(backend.delete, record_id)
        self._notify()
        return True

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def request_sync(self, *, force: bool = False) -> None:
        """
        Write the collection to the remote backend now.

        No-op when already syncing or anonymous, and when clean unless
        `force` is set (full re-push of the loaded collection).

        Raises:
            RemoteCollectionError: the write failed; the store stays dirty
        """
        self._sync(raise_errors=True, force=force)

    def _background_sync(self) -> None:
        self._sync(raise_errors=False)

    def _debounced_sync(self) -> None:
        # Runs on the timer thread; hand off so wait_idle() sees the sync
        with self._lock:
            if self._closed:
                return
            self._submit(self._background_sync)

    def _sync(self, *, raise_errors: bool, force: bool = False) -> None:
        with self._lock:
            if self._state == SyncState.SYNCING:
                logger.debug("Sync already in flight, skipping")
                return
            ready = (SyncState.READY_DIRTY, SyncState.READY_CLEAN) if force else (SyncState.READY_DIRTY,)
            if self._state not in ready or not self._backend.is_remote:
                return
            self._debounce.cancel()
            self._state = SyncState.SYNCING
            backend = self._backend
            snapshot = list(self._records)
            revision = self._revision
            generation = self._generation
        self._notify()

        try:
            backend.save(snapshot)
        except Exception as e:
            self._release_held_deletes(backend, generation)
            with self._lock:
                if generation == self._generation:
                    self._state = SyncState.READY_DIRTY
            logger.warning("Sync failed, collection stays dirty: %s", e)
            self._notify()
            if raise_errors:
                raise
            return

        self._release_held_deletes(backend, generation)
        with self._lock:
            if generation != self._generation:
                return
            if revision == self._revision:
                self._state = SyncState.READY_CLEAN
            else:
                self._state = SyncState.READY_DIRTY
            state = self._state
        logger.info("Synced %d records (%s)", len(snapshot), state.value)
        self._notify()

    def _release_held_deletes(self, backend: CollectionBackend, generation: int) -> None:
        """Issue deletes that were requested while this sync's write was running."""
        with self._lock:
            record_ids = [rid for gen, rid in self._held_deletes if gen == generation]
            self._held_deletes = [(gen, rid) for gen, rid in self._held_deletes if gen != generation]
        for record_id in record_ids:
            logger.debug("Issuing delete held back by sync: %s", record_id)
            backend.delete(record_id)

    # -------------------------------------------------------------------------
    # Background work and shutdown
    # -------------------------------------------------------------------------

    def _submit(self, fn: Callable, *args) -> Future:
        future = self._workers.submit(fn, *args)
        with self._lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._lock:
                self._pending.discard(f)

        future.add_done_callback(_done)
        return future

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for background syncs and deletes. Returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def flush(self) -> None:
        """Sync now instead of waiting for the debounce. Errors are logged.

        Waits for a sync already in flight first; its write does not carry
        changes made after it started.
        """
        self._debounce.cancel()
        self.wait_idle()
        self._sync(raise_errors=False)
        self.wait_idle()

    def close(self) -> None:
        """Stop background work. Call flush() first to push pending changes."""
        if self._detach is not None:
            self._detach()
            self._detach = None
        with self._lock:
            self._closed = True
        self._debounce.cancel()
        self._workers.shutdown(wait=True)
        if self.is_dirty:
            logger.warning("Closing with unsynced changes (%s)", self._identity)
