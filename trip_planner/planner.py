"""Trip workflows.

Every operation that changes a trip record or its retrieval index runs inside
``locks.with_lock(trip_id, ...)``: load, call out to the model/embedding
services, mutate, save.  Read-only operations (get, search, export) go
straight to the store.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional

from .chunking import ChunkingConfig, chunk_with_config
from .config import Config
from .embeddings import OpenAIEmbeddings
from .extraction import require_json
from .index import SearchMode, VectorIndex
from .llm import OpenAIClient
from .locks import LockRegistry
from .models import (
    Chunk,
    DiscoverResult,
    NoteChunk,
    Trip,
    TripDay,
    TripPreferences,
    utc_now_iso,
)
from .store import TripStore, safe_filename
from .text_extract import ALLOWED_DOC_TYPES, extract_text

logger = logging.getLogger(__name__)

MAX_DESTINATION_LEN = 200
MAX_NOTE_LEN = 2000
MAX_NOTE_QUERY_LEN = 300
MAX_DOC_QUERY_LEN = 500
MAX_PREF_LEN = 500
MAX_INSTRUCTION_LEN = 1000
MAX_DISCOVER_QUERY_LEN = 300
MAX_PLACE_LEN = 200
MAX_IMAGES = 5
MAX_VOICE_SCRIPT = 4000

_SLUG_DROP_RE = re.compile(r"[^a-zA-Z0-9-]")


class TripNotFound(LookupError):
    def __init__(self, trip_id: str) -> None:
        super().__init__(f"Trip not found: {trip_id}")
        self.trip_id = trip_id


class DayNotFound(LookupError):
    def __init__(self, trip_id: str, day_index: int) -> None:
        super().__init__(f"Day {day_index} not found in trip {trip_id}")
        self.trip_id = trip_id
        self.day_index = day_index


class ContentFlagged(Exception):
    """Input was flagged by the moderation endpoint."""


class InvalidInput(ValueError):
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def _itinerary_days(value: Any) -> Optional[List[Dict[str, Any]]]:
    """Pull the list of day objects out of a model payload, if present."""
    days = value.get("itinerary") if isinstance(value, dict) else value
    if not isinstance(days, list):
        return None
    days = [d for d in days if isinstance(d, dict)]
    return days or None


def _discover_items(value: Any) -> Optional[List[Dict[str, Any]]]:
    items = value.get("results") if isinstance(value, dict) else value
    if not isinstance(items, list):
        return None
    return [i for i in items if isinstance(i, dict)]


GENERATE_PROMPT = """You are a travel planner. Create a day-by-day itinerary for a trip to {destination} from {start} to {end}.
{preferences}

Respond with exactly one JSON object of this shape (no other text):
{{ "itinerary": [ {{ "date": "YYYY-MM-DD", "title": "Day N - ...", "activities": [ {{ "id": "short-id", "time": "09:00", "title": "...", "description": "...", "place": "...", "duration": "1h" }} ] }} ] }}

Rules: 3-6 activities per day. Use exact date format YYYY-MM-DD. Keep all string values short. Escape quotes inside strings (use \\"). No newlines inside string values."""

REFINE_PROMPT = """You are a travel planner. Refine this itinerary based on the user's instruction.

Current itinerary (JSON):
{current}

User instruction: {instruction}

Respond with ONLY a JSON array of days. Each element: {{ "date": "YYYY-MM-DD", "title": "Day N - ...", "activities": [ {{ "id": "string", "time": "09:00", "title": "...", "description": "...", "place": "...", "duration": "1h" }} ] }}. Preserve or generate activity ids. No other text."""

DEFAULT_REFINE_INSTRUCTION = "Improve the itinerary to be more balanced and interesting."

POSTCARD_PROMPT = (
    "A beautiful travel postcard-style image of {subject}, scenic, professional "
    "photography, vibrant colors, suitable for a travel guide. No text in the image."
)


class TripPlanner:
    """Trip operations over the store, lock registry, index and model clients."""

    def __init__(
        self,
        store: TripStore,
        locks: LockRegistry,
        embedder: OpenAIEmbeddings,
        llm: OpenAIClient,
        config: Optional[Config] = None,
    ) -> None:
        self.store = store
        self.locks = locks
        self.embedder = embedder
        self.llm = llm
        self.config = config or Config()
        self.index = VectorIndex(store)
        self.chunking = ChunkingConfig(self.config.chunk_size, self.config.chunk_overlap)
        self.chunking.validate()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_trip(self, trip_id: str) -> Trip:
        trip = self.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFound(trip_id)
        return trip

    async def _ensure_clean(self, text: str) -> None:
        result = await self.llm.moderate(text)
        if result.flagged:
            raise ContentFlagged("Content flagged by moderation")

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    async def create_trip(
        self,
        destination: str,
        start_date: str,
        end_date: str,
        preferences: Any = None,
    ) -> Trip:
        destination = (destination or "").strip()[:MAX_DESTINATION_LEN]
        if not destination or not start_date or not end_date:
            raise InvalidInput("destination, start_date, and end_date are required")

        await self._ensure_clean(destination)

        now = utc_now_iso()
        trip = Trip(
            id=str(uuid.uuid4()),
            destination=destination,
            start_date=start_date,
            end_date=end_date,
            preferences=TripPreferences.sanitize(preferences),
            created_at=now,
            updated_at=now,
        )
        self.store.save_trip(trip)
        logger.info("Created trip %s (%s)", trip.id, destination)
        return trip

    def get_trip(self, trip_id: str) -> Trip:
        return self._require_trip(trip_id)

    def export_trip(self, trip_id: str) -> Dict[str, Any]:
        trip = self._require_trip(trip_id)
        return {
            "trip": trip.to_dict(),
            "files": self.store.list_uploads(trip_id),
            "index_summary": self.index.summary(trip_id),
            "exported_at": utc_now_iso(),
        }

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def add_note(self, trip_id: str, text: str) -> List[str]:
        """Append a note to the trip and index it for semantic search."""
        text = (text or "").strip()[:MAX_NOTE_LEN]
        if not text:
            raise InvalidInput("Note text required")
        self._require_trip(trip_id)

        await self._ensure_clean(text)

        async def _op() -> List[str]:
            trip = self._require_trip(trip_id)
            embedding = await self.embedder.embed(text)
            trip.notes = [*trip.notes, text]
            trip.touch()
            # Trip record is written first; a failed index write leaves the note
            # saved but absent from note search.
            self.store.save_trip(trip)
            self.index.append_note_chunk(
                trip_id,
                NoteChunk(id=f"note-{_now_ms()}-{uuid.uuid4().hex[:6]}", text=text, embedding=embedding),
            )
            return trip.notes

        return await self.locks.with_lock(trip_id, _op)

    async def search_notes(self, trip_id: str, query: str) -> List[Dict[str, Any]]:
        self._require_trip(trip_id)
        q = (query or "").strip()[:MAX_NOTE_QUERY_LEN]
        hits = await self.index.search_notes(trip_id, q, self.embedder.embed)
        return [{"id": n.id, "text": n.text, "score": score} for n, score in hits]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def upload_document(
        self,
        trip_id: str,
        filename: str,
        content: bytes,
        mime_type: str,
    ) -> Dict[str, Any]:
        """Store an upload, chunk and embed its text, append chunks to the index."""
        self._require_trip(trip_id)
        if len(content) > self.config.max_upload_bytes:
            raise InvalidInput(f"File too large (max {self.config.max_upload_mb}MB)")
        if mime_type not in ALLOWED_DOC_TYPES:
            raise InvalidInput("Invalid file type. Allowed: PDF, TXT, MD, CSV")

        safe_name = safe_filename(filename) or "upload.txt"
        self.store.save_upload(trip_id, safe_name, content)

        text = await asyncio.to_thread(extract_text, content, safe_name, mime_type)
        if not text.strip():
            raise InvalidInput("No text could be extracted from file")

        pieces = chunk_with_config(text, self.chunking)
        embeddings = await self.embedder.embed_batch(pieces)
        file_id = f"file-{_now_ms()}-{uuid.uuid4().hex[:6]}-{safe_name}"
        chunks = [
            Chunk(
                id=f"{file_id}-chunk-{i}",
                owner_id=trip_id,
                source_id=file_id,
                source_label=safe_name,
                text=piece,
                embedding=embeddings[i],
                position=i,
            )
            for i, piece in enumerate(pieces)
        ]

        async def _op() -> None:
            self.index.append_chunks(trip_id, chunks)

        await self.locks.with_lock(trip_id, _op)
        logger.info("Indexed %s for trip %s: %d chunks", safe_name, trip_id, len(chunks))
        return {"filename": safe_name, "chunks": len(chunks)}

    def list_documents(self, trip_id: str) -> List[Dict[str, Any]]:
        self._require_trip(trip_id)
        return self.store.list_uploads(trip_id)

    async def search_documents(
        self,
        trip_id: str,
        query: str,
        mode: str = SearchMode.KEYWORD.value,
    ) -> Dict[str, Any]:
        self._require_trip(trip_id)
        q = (query or "").strip()[:MAX_DOC_QUERY_LEN]
        search_mode = SearchMode.parse(mode)
        outcome = await self.index.search(trip_id, q, search_mode, self.embedder.embed)
        response: Dict[str, Any] = {
            "mode": search_mode.value,
            "search_mode": outcome.mode,
            "results": [c.to_result() for c in outcome.results],
        }
        if outcome.degraded:
            response["degraded"] = True
        return response

    # ------------------------------------------------------------------
    # Itinerary
    # ------------------------------------------------------------------

    async def generate_itinerary(self, trip_id: str) -> List[TripDay]:
        async def _op() -> List[TripDay]:
            trip = self._require_trip(trip_id)
            prefs = trip.preferences.describe()[:MAX_PREF_LEN]
            await self._ensure_clean(f"{trip.destination} {prefs}")

            prompt = GENERATE_PROMPT.format(
                destination=trip.destination,
                start=trip.start_date,
                end=trip.end_date,
                preferences=f"Preferences: {prefs}" if prefs else "",
            )
            raw = await self.llm.chat(
                [{"role": "user", "content": prompt}],
                temperature=0.5,
                max_tokens=4096,
                response_format="json_object",
            )
            payload = require_json(raw, accept=lambda v: _itinerary_days(v) is not None)
            days = [TripDay.from_dict(d) for d in _itinerary_days(payload) or []]
            for day in days:
                day.notes = ""

            trip.itinerary = days
            trip.touch()
            self.store.save_trip(trip)
            logger.info("Generated %d-day itinerary for trip %s", len(days), trip_id)
            return days

        return await self.locks.with_lock(trip_id, _op)

    async def refine_itinerary(self, trip_id: str, instruction: str = "") -> List[TripDay]:
        instruction = (instruction or "")[:MAX_INSTRUCTION_LEN]

        async def _op() -> List[TripDay]:
            trip = self._require_trip(trip_id)
            await self._ensure_clean(instruction or trip.destination)

            current = json.dumps([
                {"date": d.date, "title": d.title, "activities": [a.to_dict() for a in d.activities]}
                for d in trip.itinerary
            ])
            prompt = REFINE_PROMPT.format(
                current=current,
                instruction=instruction or DEFAULT_REFINE_INSTRUCTION,
            )
            raw = await self.llm.chat([{"role": "user", "content": prompt}], temperature=0.5)
            payload = require_json(raw, accept=lambda v: _itinerary_days(v) is not None)

            previous_notes = {d.date: d.notes for d in trip.itinerary}
            days = [TripDay.from_dict(d) for d in _itinerary_days(payload) or []]
            for day in days:
                day.notes = previous_notes.get(day.date, "")

            trip.itinerary = days
            trip.touch()
            self.store.save_trip(trip)
            return days

        return await self.locks.with_lock(trip_id, _op)

    # ------------------------------------------------------------------
    # Discover / visualize / voice
    # ------------------------------------------------------------------

    async def discover(
        self,
        trip_id: str,
        query: str = "",
        update_itinerary: bool = False,
    ) -> List[DiscoverResult]:
        """Ask the model for research-style findings; optionally note a suggestion."""
        query = (query or "").strip()[:MAX_DISCOVER_QUERY_LEN]

        async def _op() -> List[DiscoverResult]:
            trip = self._require_trip(trip_id)
            await self._ensure_clean(query or trip.destination)

            if query:
                ask = (
                    f'Research "{query}" in the context of a trip to {trip.destination} '
                    f"({trip.start_date} to {trip.end_date}). Provide 5-8 concise findings "
                    "as if from web search results."
                )
            else:
                ask = (
                    f"Research {trip.destination} for a trip from {trip.start_date} to "
                    f"{trip.end_date}. Provide 5-8 key travel tips, attractions, and "
                    "practical info as search-style results."
                )
            raw = await self.llm.chat(
                [{"role": "user", "content": (
                    f"{ask} Respond with a JSON array only. Each item: "
                    '{ "title": "...", "snippet": "...", "url": "optional-url" }. No markdown.'
                )}],
                temperature=0.5,
            )
            payload = require_json(raw, accept=lambda v: _discover_items(v) is not None)
            results = [DiscoverResult.from_dict(i) for i in _discover_items(payload) or []]

            if update_itinerary and results and trip.itinerary:
                summary = "\n".join(f"{r.title}: {r.snippet}" for r in results[:5])
                suggestion = await self.llm.chat(
                    [{"role": "user", "content": (
                        "Based on these research findings, suggest one small improvement "
                        f"to the itinerary. Findings:\n{summary}\n\nCurrent itinerary "
                        f"(first day only): {json.dumps(trip.itinerary[0].to_dict())}. "
                        "Respond with a single sentence suggestion only."
                    )}],
                    max_tokens=150,
                )
                trip.notes = [*trip.notes, f"Discover: {suggestion.strip()}"]
                trip.touch()
                self.store.save_trip(trip)

            return results

        return await self.locks.with_lock(trip_id, _op)

    async def visualize(self, trip_id: str, place: str = "") -> Dict[str, str]:
        """Generate a postcard image, save it under uploads, keep the last 5."""
        place = (place or "").strip()[:MAX_PLACE_LEN]

        async def _op() -> Dict[str, str]:
            trip = self._require_trip(trip_id)
            subject = place or trip.destination
            await self._ensure_clean(subject)

            b64 = await self.llm.generate_image(POSTCARD_PROMPT.format(subject=subject))
            slug = _SLUG_DROP_RE.sub("", re.sub(r"\s+", "-", subject))[:40] or "image"
            filename = f"postcard-{slug}-{_now_ms()}.png"
            self.store.save_upload(trip_id, filename, base64.b64decode(b64))

            trip.images = [*trip.images, filename][-MAX_IMAGES:]
            trip.touch()
            self.store.save_trip(trip)
            return {"image": b64, "filename": filename}

        return await self.locks.with_lock(trip_id, _op)

    async def voice(self, trip_id: str, day_index: int = 0) -> Dict[str, Any]:
        """Narrate one itinerary day as MP3 into the trip's uploads."""
        trip = self._require_trip(trip_id)
        if day_index < 0 or day_index >= len(trip.itinerary):
            raise DayNotFound(trip_id, day_index)
        day = trip.itinerary[day_index]

        parts = [f"{day.title}. " if day.title else f"Day {day_index + 1}. "]
        for a in day.activities:
            line = f"{a.time or ''} {a.title}. {a.description or ''} {f'At {a.place}.' if a.place else ''}"
            parts.append(line.strip())
        script = " ".join(parts)[:MAX_VOICE_SCRIPT]

        await self._ensure_clean(script)
        audio = await self.llm.text_to_speech(script)
        filename = f"voice-day-{day_index + 1}-{_now_ms()}.mp3"
        self.store.save_upload(trip_id, filename, audio)
        return {"filename": filename, "size": len(audio)}
