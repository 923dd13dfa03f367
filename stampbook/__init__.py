"""
Stampbook

A personal collection of store "passport" stamps, read from photos and
kept in sync with a per-user remote collection.

Quick Start:
    from stampbook import CollectionStore, Identity, LocalCache

    store = CollectionStore(LocalCache(path))
    store.activate(Identity.anonymous())
    store.ingest(candidates)

CLI Usage:
    stampbook scan passport.jpg
    stampbook list --sort visit_count
    stampbook login --uid UID --token ID_TOKEN
    stampbook sync

Environment Variables:
    STAMPBOOK_HOME                 - Override default home (~/.stampbook)
    STAMPBOOK_FIREBASE_PROJECT_ID  - Remote project (overrides config)
    STAMPBOOK_UID, STAMPBOOK_ID_TOKEN - Session (overrides session file)
    GEMINI_API_KEY                 - API key for photo extraction
    STAMPBOOK_VERBOSE              - Set to 1 for debug logging

While signed out, stamps live in a local cache; the first sign-in merges
them into the remote collection and clears the cache.
"""

from .identity import AuthSession, Identity, IdentityFeed
from .local_cache import LocalCache
from .merge import merge_records
from .remote import RemoteCollection
from .store import CollectionStore, SyncState
from .types import MergeTally, StampRecord, normalize_store_name

__version__ = "0.1.0"
__all__ = [
    "AuthSession",
    "CollectionStore",
    "Identity",
    "IdentityFeed",
    "LocalCache",
    "MergeTally",
    "RemoteCollection",
    "StampRecord",
    "SyncState",
    "merge_records",
    "normalize_store_name",
]
