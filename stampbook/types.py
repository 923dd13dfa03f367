"""
Data types for the stamp collection.
"""

import math
import re
import unicodedata
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# Owner id used for records collected without signing in
ANONYMOUS_OWNER = "guest"

# Owner ids that never address a remote collection
LOCAL_OWNERS = frozenset({ANONYMOUS_OWNER, "local", ""})

_WHITESPACE_RE = re.compile(r"\s+")
_OPEN_PAREN_RE = re.compile(r"[（(]")
_CLOSE_PAREN_RE = re.compile(r"[）)]")

# Loose date: 2024/5/1, 2024-05-01, 2024.05.01 (optional trailing time)
_DATE_RE = re.compile(r"^(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})(?:[T\s].*)?$")


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def new_record_id() -> str:
    """Generate an opaque record id."""
    return uuid.uuid4().hex


def normalize_store_name(name: Optional[str]) -> str:
    """Canonical form of a store name, used as the deduplication key.

    Trims, applies NFKC (full/half width collapse), removes all whitespace
    and unifies parenthesis variants. Never fails: None maps to "".
    """
    text = (name or "").strip()
    text = unicodedata.normalize("NFKC", text)
    text = _WHITESPACE_RE.sub("", text)
    text = _OPEN_PAREN_RE.sub("(", text)
    return _CLOSE_PAREN_RE.sub(")", text)


def coerce_visit_date(value: Any) -> Optional[str]:
    """Normalize a visit date to zero-padded YYYY/MM/DD.

    Zero padding keeps lexical order chronological. Strings that don't
    look like a date are kept verbatim; empty values become None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    m = _DATE_RE.match(text)
    if not m:
        return text
    year, month, day = (int(g) for g in m.groups())
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return text
    return f"{year:04d}/{month:02d}/{day:02d}"


def coerce_visit_count(value: Any) -> Optional[int]:
    """Non-negative int, or None when unknown or unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            return None
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value) or value < 0:
            return None
        return int(value)
    if isinstance(value, int):
        return value if value >= 0 else None
    return None


def coerce_coordinate(value: Any) -> Optional[float]:
    """Finite float or None. NaN is never stored."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass
class StampRecord:
    """
    One visited-store entry.

    Optional fields use None for "unknown" at every layer: an unknown
    visit count is not zero and an unknown date is not "".

    Attributes:
        id: Opaque identifier, the storage key in both backends
        owner_id: Owning uid, or ANONYMOUS_OWNER
        store_name: Display name (deduplicated via normalize_store_name)
        prefecture: Prefecture, may be empty
        address: Street address, may be empty
        last_visit_date: YYYY/MM/DD or None
        visit_count: Visit count or None
        latitude: Finite latitude or None
        longitude: Finite longitude or None
    """
    id: str
    owner_id: str
    store_name: str
    prefecture: str = ""
    address: str = ""
    last_visit_date: Optional[str] = None
    visit_count: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def normalized_name(self) -> str:
        return normalize_store_name(self.store_name)

    def to_dict(self) -> dict:
        """Serialize to the wire form (camelCase, None fields omitted)."""
        d: dict[str, Any] = {
            "id": self.id,
            "userId": self.owner_id,
            "storeName": self.store_name,
            "prefecture": self.prefecture,
            "address": self.address,
        }
        if self.last_visit_date is not None:
            d["lastVisitDate"] = self.last_visit_date
        if self.visit_count is not None:
            d["visitCount"] = self.visit_count
        if self.latitude is not None:
            d["latitude"] = self.latitude
        if self.longitude is not None:
            d["longitude"] = self.longitude
        return d

    @classmethod
    def from_dict(cls, d: dict, *, owner_id: Optional[str] = None) -> "StampRecord":
        """Deserialize from the wire form, coercing loose values.

        Args:
            d: Wire dict (camelCase keys; missing or null means unknown)
            owner_id: Owner to use when the dict carries none
        """
        record_id = d.get("id")
        return cls(
            id=str(record_id) if record_id else new_record_id(),
            owner_id=str(d.get("userId") or owner_id or ANONYMOUS_OWNER),
            store_name=str(d.get("storeName") or "").strip(),
            prefecture=str(d.get("prefecture") or "").strip(),
            address=str(d.get("address") or "").strip(),
            last_visit_date=coerce_visit_date(d.get("lastVisitDate")),
            visit_count=coerce_visit_count(d.get("visitCount")),
            latitude=coerce_coordinate(d.get("latitude")),
            longitude=coerce_coordinate(d.get("longitude")),
        )

    def __str__(self) -> str:
        count = self.visit_count if self.visit_count is not None else "?"
        date = self.last_visit_date or "----/--/--"
        return f"{self.store_name} [{self.prefecture}] x{count} {date}"


@dataclass
class MergeTally:
    """Outcome counts of one merge."""
    added: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def changed(self) -> int:
        return self.added + self.updated

    def to_dict(self) -> dict[str, int]:
        return {"added": self.added, "updated": self.updated, "skipped": self.skipped}


@dataclass(frozen=True)
class CollectionSummary:
    """Progress counts for display."""
    stores: int
    prefectures: int
    total_visits: int
    unknown_counts: int = 0
    prefecture_counts: dict[str, int] = field(default_factory=dict)
