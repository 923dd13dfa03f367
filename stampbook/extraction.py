"""
Stamp extraction from passport photos.

Extractors turn an image into candidate StampRecords. The vision model is
an external collaborator: this module only builds the request, validates
the JSON it returns, and coerces it into records (unknown values become
None, never 0, "" or NaN). Candidates are not merged here; see
CollectionStore.ingest().
"""

import json
import logging
import mimetypes
import os
import time
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from .errors import ExtractionError
from .types import StampRecord

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

EXTRACTION_PROMPT = """
You are an OCR engine for Starbucks Japan "My Store Passport".
The input can be a SINGLE stamp detail page OR a GRID/LIST of multiple stamps.

EXTRACTION FIELDS:
1. storeName: EXACT name (e.g., "目黒店").
2. prefecture: e.g., "東京都"
3. lastVisitDate: "YYYY/MM/DD" or null if not visible.
4. visitCount: Integer or null if not visible.
5. address: Full Japanese address.
6. coordinates: Numeric latitude/longitude.

Return JSON with a "stamps" array.
"""

# Sample output used by --mock (no API call)
MOCK_STAMPS = [
    {
        "storeName": "函館五稜郭公園前店",
        "prefecture": "北海道",
        "address": "北海道 函館市 五稜郭町30-14",
        "lastVisitDate": "2024/05/20",
        "visitCount": 3,
        "latitude": 41.7946,
        "longitude": 140.7541,
    },
    {
        "storeName": "スターバックス リザーブ ロースタリー 東京",
        "prefecture": "東京都",
        "address": "東京都 目黒区 青葉台2-19-23",
        "lastVisitDate": None,
        "visitCount": None,
        "latitude": 35.6491,
        "longitude": 139.6925,
    },
    {
        "storeName": "太宰府天満宮表参道店",
        "prefecture": "福岡県",
        "address": "福岡県 太宰府市 宰府3-2-43",
        "lastVisitDate": "2024/01/10",
        "visitCount": 1,
        "latitude": 33.5215,
        "longitude": 130.5310,
    },
]


@runtime_checkable
class StampExtractor(Protocol):
    """
    Extracts candidate stamp records from a passport image.

    Raises ExtractionError when the image yields nothing usable.
    """

    def extract(self, image: bytes, mime_type: str) -> list[StampRecord]: ...


def candidates_from_payload(payload: Any) -> list[StampRecord]:
    """
    Coerce model output into candidate records.

    Accepts ``{"stamps": [...]}`` or a bare list. Entries without a store
    name are dropped. Ids are freshly generated; owners are assigned on merge.
    """
    if isinstance(payload, dict):
        items = payload.get("stamps") or []
    elif isinstance(payload, list):
        items = payload
    else:
        raise ExtractionError(f"Unexpected extraction payload: {type(payload).__name__}")

    records = []
    for entry in items:
        if not isinstance(entry, dict):
            logger.warning("Dropping non-object candidate: %r", entry)
            continue
        fields = {k: v for k, v in entry.items() if k not in ("id", "userId")}
        record = StampRecord.from_dict(fields)
        if not record.store_name:
            logger.warning("Dropping candidate without store name: %r", entry)
            continue
        records.append(record)
    return records


def read_image(path: Path) -> tuple[bytes, str]:
    """Read an image file and guess its MIME type."""
    mime_type, _ = mimetypes.guess_type(str(path))
    if not mime_type or not mime_type.startswith("image/"):
        raise ExtractionError(f"Not an image file: {path}")
    try:
        return path.read_bytes(), mime_type
    except OSError as e:
        raise ExtractionError(f"Cannot read {path}: {e}") from e


class GeminiStampExtractor:
    """
    Extractor using Google's Gemini vision models with a JSON response schema.

    Authentication: api_key parameter, else GEMINI_API_KEY or GOOGLE_API_KEY.
    """

    def __init__(self, model: str = DEFAULT_MODEL, api_key: Optional[str] = None):
        from google import genai

        key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
        if not key:
            raise ExtractionError(
                "Gemini API key not configured (set GEMINI_API_KEY or GOOGLE_API_KEY)"
            )
        self.model = model
        self._client = genai.Client(api_key=key)

    @staticmethod
    def _response_schema():
        from google.genai import types

        stamp = types.Schema(
            type=types.Type.OBJECT,
            properties={
                "storeName": types.Schema(type=types.Type.STRING),
                "prefecture": types.Schema(type=types.Type.STRING),
                "lastVisitDate": types.Schema(type=types.Type.STRING, nullable=True),
                "visitCount": types.Schema(type=types.Type.NUMBER, nullable=True),
                "address": types.Schema(type=types.Type.STRING),
                "latitude": types.Schema(type=types.Type.NUMBER, nullable=True),
                "longitude": types.Schema(type=types.Type.NUMBER, nullable=True),
            },
            required=["storeName", "prefecture", "address"],
        )
        return types.Schema(
            type=types.Type.OBJECT,
            properties={"stamps": types.Schema(type=types.Type.ARRAY, items=stamp)},
            required=["stamps"],
        )

    def extract(self, image: bytes, mime_type: str) -> list[StampRecord]:
        """Send the image to Gemini and return candidate records."""
        from google.genai import types

        logger.info("Gemini extraction start: model=%s bytes=%d", self.model, len(image))
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=image, mime_type=mime_type),
                    EXTRACTION_PROMPT,
                ],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=self._response_schema(),
                ),
            )
        except Exception as e:
            raise ExtractionError(f"Gemini request failed: {e}") from e

        text = response.text
        if not text:
            raise ExtractionError("Gemini returned an empty response")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Gemini returned invalid JSON: {e}") from e

        records = candidates_from_payload(payload)
        if not records:
            raise ExtractionError("No stamps found in the image")
        logger.info("Gemini extraction done: %d candidates", len(records))
        return records


class MockStampExtractor:
    """Returns the sample stamps without calling any API."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    def extract(self, image: bytes, mime_type: str) -> list[StampRecord]:
        if self.delay:
            time.sleep(self.delay)
        return candidates_from_payload(MOCK_STAMPS)


def create_extractor(
    provider: str = "gemini",
    *,
    model: str = DEFAULT_MODEL,
    api_key: Optional[str] = None,
    mock: bool = False,
) -> StampExtractor:
    """Instantiate the configured extractor."""
    if mock or provider == "mock":
        return MockStampExtractor()
    if provider == "gemini":
        return GeminiStampExtractor(model=model, api_key=api_key)
    raise ValueError(f"Unknown extraction provider: {provider!r}")
