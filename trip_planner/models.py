"""Domain records: trips, itineraries and index chunks.

Persisted as JSON (snake_case keys).  ``from_dict`` is lenient about missing
or malformed fields so records written by older builds, or shaped by model
output, still load.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

PACE_VALUES = ("relaxed", "moderate", "packed")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed); None if unparseable."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_activity_id() -> str:
    return "act-" + "".join(random.choices(_ID_ALPHABET, k=7))


def _str_list(value: Any, max_items: int, max_len: int) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v[:max_len] for v in value[:max_items] if isinstance(v, str)]


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _opt_vector(value: Any) -> Optional[List[float]]:
    if not isinstance(value, list) or not value:
        return None
    return [float(v) for v in value]


# ---------------------------------------------------------------------------
# Trip
# ---------------------------------------------------------------------------

@dataclass
class TripPreferences:
    budget: Optional[str] = None
    pace: Optional[str] = None
    interests: List[str] = field(default_factory=list)
    dietary: List[str] = field(default_factory=list)
    accessibility: List[str] = field(default_factory=list)

    @classmethod
    def sanitize(cls, raw: Any) -> "TripPreferences":
        """Build preferences from untrusted input, truncating and capping lists."""
        p = raw if isinstance(raw, dict) else {}
        budget = p.get("budget")
        pace = p.get("pace")
        return cls(
            budget=budget[:100] if isinstance(budget, str) else None,
            pace=pace if pace in PACE_VALUES else None,
            interests=_str_list(p.get("interests"), 20, 50),
            dietary=_str_list(p.get("dietary"), 10, 50),
            accessibility=_str_list(p.get("accessibility"), 10, 50),
        )

    def describe(self) -> str:
        parts = []
        if self.budget:
            parts.append(f"Budget: {self.budget}")
        if self.pace:
            parts.append(f"Pace: {self.pace}")
        if self.interests:
            parts.append(f"Interests: {', '.join(self.interests)}")
        if self.dietary:
            parts.append(f"Dietary: {', '.join(self.dietary)}")
        return ". ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "budget": self.budget,
            "pace": self.pace,
            "interests": list(self.interests),
            "dietary": list(self.dietary),
            "accessibility": list(self.accessibility),
        }


@dataclass
class TripActivity:
    id: str
    title: str
    time: Optional[str] = None
    description: Optional[str] = None
    place: Optional[str] = None
    duration: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TripActivity":
        act_id = d.get("id")
        title = d.get("title")
        return cls(
            id=str(act_id) if act_id else new_activity_id(),
            title=str(title) if title is not None else "",
            time=_opt_str(d.get("time")),
            description=_opt_str(d.get("description")),
            place=_opt_str(d.get("place")),
            duration=_opt_str(d.get("duration")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "time": self.time,
            "title": self.title,
            "description": self.description,
            "place": self.place,
            "duration": self.duration,
        }


@dataclass
class TripDay:
    date: str
    title: Optional[str] = None
    activities: List[TripActivity] = field(default_factory=list)
    notes: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TripDay":
        acts = d.get("activities")
        return cls(
            date=str(d.get("date") or ""),
            title=_opt_str(d.get("title")),
            activities=[TripActivity.from_dict(a) for a in acts if isinstance(a, dict)]
            if isinstance(acts, list) else [],
            notes=d.get("notes") if isinstance(d.get("notes"), str) else "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "title": self.title,
            "activities": [a.to_dict() for a in self.activities],
            "notes": self.notes,
        }


@dataclass
class Trip:
    id: str
    destination: str
    start_date: str
    end_date: str
    preferences: TripPreferences = field(default_factory=TripPreferences)
    itinerary: List[TripDay] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def touch(self) -> None:
        self.updated_at = utc_now_iso()

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Trip":
        itinerary = d.get("itinerary")
        return cls(
            id=str(d["id"]),
            destination=str(d.get("destination", "")),
            start_date=str(d.get("start_date", "")),
            end_date=str(d.get("end_date", "")),
            preferences=TripPreferences.sanitize(d.get("preferences")),
            itinerary=[TripDay.from_dict(x) for x in itinerary if isinstance(x, dict)]
            if isinstance(itinerary, list) else [],
            notes=[n for n in d.get("notes") or [] if isinstance(n, str)],
            images=[i for i in d.get("images") or [] if isinstance(i, str)],
            created_at=str(d.get("created_at") or ""),
            updated_at=str(d.get("updated_at") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "destination": self.destination,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "preferences": self.preferences.to_dict(),
            "itinerary": [day.to_dict() for day in self.itinerary],
            "notes": list(self.notes),
            "images": list(self.images),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class DiscoverResult:
    title: str
    snippet: str
    url: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DiscoverResult":
        return cls(
            title=str(d.get("title") or ""),
            snippet=str(d.get("snippet") or ""),
            url=_opt_str(d.get("url")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "snippet": self.snippet, "url": self.url}


# ---------------------------------------------------------------------------
# Retrieval index
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Chunk:
    """A bounded window of an uploaded document."""
    id: str
    owner_id: str
    source_id: str
    source_label: str
    text: str
    embedding: Optional[List[float]] = None
    position: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Chunk":
        position = d.get("position")
        return cls(
            id=str(d["id"]),
            owner_id=str(d.get("owner_id", "")),
            source_id=str(d.get("source_id", "")),
            source_label=str(d.get("source_label", "")),
            text=str(d.get("text", "")),
            embedding=_opt_vector(d.get("embedding")),
            position=position if isinstance(position, int) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "source_id": self.source_id,
            "source_label": self.source_label,
            "text": self.text,
            "embedding": self.embedding,
            "position": self.position,
        }

    def to_result(self) -> Dict[str, Any]:
        """Public search-result shape (no embedding)."""
        return {
            "id": self.id,
            "source_label": self.source_label,
            "text": self.text,
            "position": self.position,
        }


@dataclass(frozen=True)
class NoteChunk:
    id: str
    text: str
    embedding: Optional[List[float]] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "NoteChunk":
        return cls(
            id=str(d["id"]),
            text=str(d.get("text", "")),
            embedding=_opt_vector(d.get("embedding")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "embedding": self.embedding}


@dataclass
class IndexEntry:
    owner_id: str
    chunks: List[Chunk] = field(default_factory=list)
    note_chunks: List[NoteChunk] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "IndexEntry":
        return cls(
            owner_id=str(d.get("owner_id", "")),
            chunks=[Chunk.from_dict(c) for c in d.get("chunks") or []],
            note_chunks=[NoteChunk.from_dict(n) for n in d.get("note_chunks") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "chunks": [c.to_dict() for c in self.chunks],
            "note_chunks": [n.to_dict() for n in self.note_chunks],
        }
