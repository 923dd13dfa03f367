"""
Protocol definitions for stampbook storage.

Defines interface contracts at two levels:
- CollectionBackend: where CollectionStore mirrors its collection
  (local cache while anonymous, remote collection when signed in)
- RemoteCollectionProtocol: the wire client behind the remote backend
  (Firestore REST, or an in-memory fake in tests)
"""

from typing import Optional, Protocol, runtime_checkable

from .types import StampRecord


@runtime_checkable
class CollectionBackend(Protocol):
    """
    A mirror of the in-memory collection for one identity context.

    Implemented by:
    - LocalBackend (guest collection in the local cache)
    - RemoteBackend (one owner's remote collection)
    """

    @property
    def is_remote(self) -> bool:
        """True when writes leave the device (and may lag or fail)."""
        ...

    def load(self) -> list[StampRecord]:
        """Full collection; never raises for unavailable data."""
        ...

    def save(self, records: list[StampRecord]) -> None:
        """Write records. Raises when the write did not happen."""
        ...

    def delete(self, record_id: str) -> None:
        """Remove one record. Best effort for remote backends."""
        ...


@runtime_checkable
class RemoteCollectionProtocol(Protocol):
    """
    Networked per-owner document collection, keyed by record id.

    Documents are plain wire dicts (see StampRecord.to_dict). Methods raise
    RemoteCollectionError on transport or server failures.
    """

    @property
    def current_uid(self) -> Optional[str]:
        """uid of the authenticated session, None when signed out."""
        ...

    def list_documents(self, owner_id: str) -> list[dict]: ...

    def commit_upserts(self, owner_id: str, docs: list[dict]) -> None:
        """Atomically merge-upsert documents by id."""
        ...

    def delete_document(self, owner_id: str, doc_id: str) -> None: ...

    def close(self) -> None: ...
