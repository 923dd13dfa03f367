"""
HTTP client for a per-user Firestore document collection.

Speaks the Firestore REST API for documents under
``users/{uid}/stamps/{id}``: list, batched commit, delete. Knows nothing
about merging or timeouts beyond the HTTP layer; see remote.py for the
collection contract built on top of it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import httpx

from .errors import NotSignedInError, RemoteCollectionError
from .identity import AuthSession

logger = logging.getLogger(__name__)

FIRESTORE_API_URL = "https://firestore.googleapis.com/v1"
DEFAULT_DATABASE = "(default)"

DEFAULT_TIMEOUT = 15.0
PAGE_SIZE = 300

# Server-assigned field, written on every upsert, never read back into records
UPDATED_AT_FIELD = "updatedAt"


# -----------------------------------------------------------------------------
# Typed value encoding
# -----------------------------------------------------------------------------

def encode_value(value: Any) -> dict:
    """Encode a plain Python value as a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, dict):
        return {"mapValue": {"fields": {k: encode_value(v) for k, v in value.items()}}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"Cannot encode {type(value).__name__} for Firestore")


def decode_value(value: dict) -> Any:
    """Decode a Firestore typed value to a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "mapValue" in value:
        fields = value["mapValue"].get("fields", {})
        return {k: decode_value(v) for k, v in fields.items()}
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    # referenceValue, geoPointValue, bytesValue: not used by this collection
    return None


def decode_document(doc: dict) -> dict:
    """Plain dict of a REST document; ``id`` comes from the document name."""
    data = {k: decode_value(v) for k, v in doc.get("fields", {}).items()}
    data["id"] = doc["name"].rsplit("/", 1)[-1]
    return data


class FirestoreCollectionClient:
    """HTTP client for ``users/{uid}/stamps`` in one Firestore database."""

    def __init__(
        self,
        project_id: str,
        session_provider: Callable[[], Optional[AuthSession]],
        *,
        api_url: str = FIRESTORE_API_URL,
        database: str = DEFAULT_DATABASE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if not project_id:
            raise ValueError("Firestore project id is required")
        self._api_url = api_url.rstrip("/")
        self._project_id = project_id
        self._database = database
        self._session_provider = session_provider

        # Bearer tokens only over HTTPS, except the local emulator
        if not self._api_url.startswith("https://"):
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ValueError(
                    f"Firestore API URL must use HTTPS (got {self._api_url}). "
                    "Use localhost for the emulator."
                )

        self._client = httpx.Client(
            base_url=self._api_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    @property
    def _root(self) -> str:
        return f"projects/{self._project_id}/databases/{self._database}/documents"

    def _collection_path(self, owner_id: str) -> str:
        return f"{self._root}/users/{owner_id}/stamps"

    def _session(self) -> AuthSession:
        session = self._session_provider()
        if session is None:
            raise NotSignedInError("Not signed in: no session for the remote collection")
        return session

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._session().id_token}"}

    @property
    def current_uid(self) -> Optional[str]:
        """uid of the active session, None when signed out."""
        session = self._session_provider()
        return session.uid if session else None

    def list_documents(self, owner_id: str) -> list[dict]:
        """GET every document in the owner's collection, following pages."""
        path = f"/{self._collection_path(owner_id)}"
        docs: list[dict] = []
        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {"pageSize": PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            try:
                resp = self._client.get(path, params=params, headers=self._headers())
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise RemoteCollectionError(
                    f"List failed: {e.response.status_code} {e.response.text[:200]}"
                ) from e
            except httpx.HTTPError as e:
                raise RemoteCollectionError(f"List failed: {e}") from e
            data = resp.json()
            docs.extend(decode_document(d) for d in data.get("documents", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return docs

    def _write_for(self, owner_id: str, doc: dict) -> dict:
        fields = {k: encode_value(v) for k, v in doc.items() if v is not None}
        return {
            "update": {
                "name": f"{self._collection_path(owner_id)}/{doc['id']}",
                "fields": fields,
            },
            # Merge semantics: only listed fields are touched remotely
            "updateMask": {"fieldPaths": sorted(fields)},
            "updateTransforms": [
                {"fieldPath": UPDATED_AT_FIELD, "setToServerValue": "REQUEST_TIME"},
            ],
        }

    def commit_upserts(self, owner_id: str, docs: list[dict]) -> None:
        """POST one atomic :commit with a merge-upsert per document."""
        if not docs:
            return
        payload = {"writes": [self._write_for(owner_id, d) for d in docs]}
        try:
            resp = self._client.post(
                f"/{self._root}:commit", json=payload, headers=self._headers(),
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteCollectionError(
                f"Commit failed: {e.response.status_code} {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteCollectionError(f"Commit failed: {e}") from e

    def delete_document(self, owner_id: str, doc_id: str) -> None:
        """DELETE one document. Missing documents count as deleted."""
        try:
            resp = self._client.delete(
                f"/{self._collection_path(owner_id)}/{doc_id}", headers=self._headers(),
            )
            if resp.status_code != 404:
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteCollectionError(
                f"Delete failed: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteCollectionError(f"Delete failed: {e}") from e

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()
