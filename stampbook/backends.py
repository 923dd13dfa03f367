"""
Collection backends.

CollectionStore mirrors its in-memory collection to exactly one backend,
chosen by identity: the local cache while anonymous, the owner's remote
collection when signed in. Only the sign-in migration touches both.
"""

from typing import Optional

from .identity import Identity
from .local_cache import LocalCache
from .protocol import CollectionBackend
from .remote import RemoteCollection
from .types import StampRecord


class LocalBackend:
    """Guest collection in the local cache. Writes are synchronous."""

    is_remote = False

    def __init__(self, cache: LocalCache):
        self._cache = cache

    def load(self) -> list[StampRecord]:
        return self._cache.load()

    def save(self, records: list[StampRecord]) -> None:
        self._cache.save(records)

    def delete(self, record_id: str) -> None:
        # The whole collection is one value; delete is a rewrite without it
        self._cache.save([r for r in self._cache.load() if r.id != record_id])


class RemoteBackend:
    """One owner's remote collection."""

    is_remote = True

    def __init__(self, remote: RemoteCollection, owner_id: str):
        self._remote = remote
        self._owner_id = owner_id

    @property
    def owner_id(self) -> str:
        return self._owner_id

    def load(self) -> list[StampRecord]:
        return self._remote.load(self._owner_id)

    def save(self, records: list[StampRecord]) -> None:
        self._remote.save(records, self._owner_id)

    def delete(self, record_id: str) -> None:
        self._remote.delete(self._owner_id, record_id)


def create_backend(
    identity: Identity,
    cache: LocalCache,
    remote: Optional[RemoteCollection],
) -> CollectionBackend:
    """
    Backend for an identity context.

    Raises:
        ValueError: signed in, but no remote collection is configured
    """
    if identity.is_anonymous:
        return LocalBackend(cache)
    if remote is None:
        raise ValueError(
            f"Signed in as {identity.uid} but no remote collection is configured"
        )
    return RemoteBackend(remote, identity.owner_id)
