"""
Shared pytest fixtures for stampbook tests.

Provides an in-memory remote collection so no test talks to Firestore.
"""

import threading
from typing import Optional

import pytest

from stampbook.errors import RemoteCollectionError
from stampbook.identity import Identity
from stampbook.local_cache import LocalCache
from stampbook.remote import RemoteCollection
from stampbook.store import CollectionStore
from stampbook.types import StampRecord


class FakeRemoteClient:
    """
    In-memory RemoteCollectionProtocol.

    Documents live in ``collections[owner_id][doc_id]``. Every call is
    recorded; failures and hangs are switched on per operation.
    """

    def __init__(self, uid: Optional[str] = None):
        self.uid = uid
        self.collections: dict[str, dict[str, dict]] = {}
        self.commits: list[tuple[str, list[dict]]] = []
        self.deletes: list[tuple[str, str]] = []
        self.list_calls = 0
        self.commit_attempts = 0
        self.fail_list = False
        self.fail_commit = False
        self.fail_delete = False
        # While set, list/commit block until released (simulates a hung backend)
        self.hang = threading.Event()
        self.release = threading.Event()
        self.closed = False

    @property
    def current_uid(self) -> Optional[str]:
        return self.uid

    def seed(self, owner_id: str, records: list[StampRecord]) -> None:
        coll = self.collections.setdefault(owner_id, {})
        for r in records:
            coll[r.id] = r.to_dict()

    def docs(self, owner_id: str) -> dict[str, dict]:
        return self.collections.get(owner_id, {})

    def _maybe_hang(self) -> None:
        if self.hang.is_set():
            self.release.wait(timeout=5)

    def list_documents(self, owner_id: str) -> list[dict]:
        self.list_calls += 1
        self._maybe_hang()
        if self.fail_list:
            raise RemoteCollectionError("list unavailable")
        return [dict(d) for d in self.docs(owner_id).values()]

    def commit_upserts(self, owner_id: str, docs: list[dict]) -> None:
        self.commit_attempts += 1
        self._maybe_hang()
        if self.fail_commit:
            raise RemoteCollectionError("commit rejected")
        self.commits.append((owner_id, [dict(d) for d in docs]))
        coll = self.collections.setdefault(owner_id, {})
        for d in docs:
            coll.setdefault(d["id"], {}).update(d)

    def delete_document(self, owner_id: str, doc_id: str) -> None:
        self.deletes.append((owner_id, doc_id))
        if self.fail_delete:
            raise RemoteCollectionError("delete rejected")
        self.docs(owner_id).pop(doc_id, None)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def cache(tmp_path):
    c = LocalCache(tmp_path / "local.db")
    yield c
    c.close()


@pytest.fixture
def fake_client():
    client = FakeRemoteClient(uid="alice")
    yield client
    client.release.set()


@pytest.fixture
def remote(fake_client):
    r = RemoteCollection(fake_client, load_timeout=0.5, save_timeout=0.5, batch_size=450)
    yield r
    r.close()


@pytest.fixture
def make_store(cache, remote):
    """Factory for stores sharing the cache and fake remote; closed at teardown."""
    stores = []

    def _make(identity: Optional[Identity] = None, debounce_seconds: float = 0.05):
        store = CollectionStore(cache, remote, debounce_seconds=debounce_seconds)
        stores.append(store)
        if identity is not None:
            store.activate(identity)
        return store

    yield _make
    for store in stores:
        store.close()
