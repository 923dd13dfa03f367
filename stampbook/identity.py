"""
Identity state and sign-in sessions.

Authentication itself happens elsewhere; this module only carries its
result (a stable uid and a bearer token) and announces changes to
subscribers such as CollectionStore.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .types import ANONYMOUS_OWNER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Who owns the collection: a uid, or nobody (guest)."""
    uid: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "Identity":
        return cls(None)

    @property
    def is_anonymous(self) -> bool:
        return not self.uid

    @property
    def owner_id(self) -> str:
        return self.uid or ANONYMOUS_OWNER

    def __str__(self) -> str:
        return self.uid or "anonymous"


@dataclass(frozen=True)
class AuthSession:
    """Result of a sign-in: uid plus an ID token for the remote store."""
    uid: str
    id_token: str

    @property
    def identity(self) -> Identity:
        return Identity(self.uid)


class SessionFile:
    """
    Persisted sign-in session.

    STAMPBOOK_UID and STAMPBOOK_ID_TOKEN, when both set, take precedence
    over the file.
    """

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[AuthSession]:
        uid = os.environ.get("STAMPBOOK_UID")
        token = os.environ.get("STAMPBOOK_ID_TOKEN")
        if uid and token:
            return AuthSession(uid, token)
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text())
            return AuthSession(str(data["uid"]), str(data["id_token"]))
        except (json.JSONDecodeError, KeyError, TypeError, OSError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self._path, e)
            return None

    def save(self, session: AuthSession) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"uid": session.uid, "id_token": session.id_token})
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(payload)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


IdentityCallback = Callable[[Identity], None]


class IdentityFeed:
    """Stream of identity-change events.

    publish() notifies subscribers only when the identity actually changes.
    Callbacks run on the publishing thread.
    """

    def __init__(self, initial: Optional[Identity] = None):
        self._current = initial
        self._subscribers: list[IdentityCallback] = []
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    def subscribe(self, callback: IdentityCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it.

        A subscriber joining after an identity was published is called
        immediately with it.
        """
        with self._lock:
            self._subscribers.append(callback)
            current = self._current
        if current is not None:
            callback(current)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, identity: Identity) -> None:
        with self._lock:
            if identity == self._current:
                return
            self._current = identity
            subscribers = list(self._subscribers)
        logger.info("Identity changed: %s", identity)
        for callback in subscribers:
            callback(identity)
