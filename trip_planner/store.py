"""File-backed trip store.

Layout under ``data_dir``::

    trips/{trip_id}.json      -- Trip record
    index/{trip_id}.json      -- IndexEntry (document + note chunks)
    uploads/{trip_id}/...     -- uploaded documents, generated images/audio

Every JSON write goes to a temp file in the target directory and is swapped
in with ``os.replace``, so a concurrent reader sees either the previous or
the new record, never a partial one.  Read-modify-write sequences still need
the trip's lock (see :mod:`trip_planner.locks`).
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import IndexEntry, Trip, parse_iso

logger = logging.getLogger(__name__)

# Valid trip ID: alphanumeric start, then alphanumerics, hyphens, underscores (1-64 chars).
_TRIP_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._-]")


class InvalidTripId(ValueError):
    """Raised for trip IDs that are not safe to use as file names."""


def safe_filename(name: str, max_len: int = 200) -> str:
    """Replace anything outside ``[a-zA-Z0-9._-]`` with ``_``."""
    return _UNSAFE_NAME_RE.sub("_", name or "")[:max_len]


def _atomic_write_json(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable record %s: %s", path, exc)
        return None


class TripStore:
    """Key-by-id JSON store for trips, their retrieval index and uploads."""

    def __init__(self, data_dir: str) -> None:
        self.data_dir = Path(data_dir)
        self.trips_dir = self.data_dir / "trips"
        self.index_dir = self.data_dir / "index"
        self.uploads_dir = self.data_dir / "uploads"
        self.ensure_dirs()

    @staticmethod
    def validate_id(trip_id: Optional[str]) -> str:
        """Validate a trip ID before it is used in any path.

        Raises InvalidTripId for empty IDs or anything that could escape the
        data directory.
        """
        if not trip_id or not _TRIP_ID_RE.match(trip_id):
            raise InvalidTripId(
                f"Invalid trip ID {trip_id!r}: must match [A-Za-z0-9][A-Za-z0-9_-]{{0,63}}"
            )
        return trip_id

    def ensure_dirs(self) -> None:
        for d in (self.trips_dir, self.index_dir, self.uploads_dir):
            d.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    def _trip_path(self, trip_id: str) -> Path:
        return self.trips_dir / f"{self.validate_id(trip_id)}.json"

    def save_trip(self, trip: Trip) -> None:
        _atomic_write_json(self._trip_path(trip.id), trip.to_dict())

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        data = _read_json(self._trip_path(trip_id))
        if data is None:
            return None
        try:
            return Trip.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed trip record %s: %s", trip_id, exc)
            return None

    def list_trip_ids(self) -> List[str]:
        self.trips_dir.mkdir(parents=True, exist_ok=True)
        return sorted(p.stem for p in self.trips_dir.glob("*.json") if p.is_file())

    def delete_trip(self, trip_id: str) -> None:
        """Remove the trip record, its index and its uploads."""
        self._trip_path(trip_id).unlink(missing_ok=True)
        self._index_path(trip_id).unlink(missing_ok=True)
        shutil.rmtree(self.uploads_dir / trip_id, ignore_errors=True)
        logger.info("Deleted trip %s", trip_id)

    def cleanup_old_trips(
        self,
        ttl_days: int,
        now: Optional[datetime] = None,
        dry_run: bool = False,
    ) -> int:
        """Delete trips whose ``updated_at`` is older than *ttl_days*. Returns the count.

        With *dry_run* the stale trips are only counted and logged.
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=ttl_days)
        deleted = 0
        for trip_id in self.list_trip_ids():
            try:
                trip = self.get_trip(trip_id)
            except InvalidTripId:
                continue
            if trip is None:
                continue
            updated = parse_iso(trip.updated_at)
            if updated is not None and updated < cutoff:
                if dry_run:
                    logger.info("Would delete trip %s (updated %s)", trip_id, trip.updated_at)
                else:
                    self.delete_trip(trip_id)
                deleted += 1
        return deleted

    # ------------------------------------------------------------------
    # Retrieval index
    # ------------------------------------------------------------------

    def _index_path(self, trip_id: str) -> Path:
        return self.index_dir / f"{self.validate_id(trip_id)}.json"

    def load_index(self, trip_id: str) -> Optional[IndexEntry]:
        data = _read_json(self._index_path(trip_id))
        if data is None:
            return None
        entry = IndexEntry.from_dict(data)
        entry.owner_id = trip_id
        return entry

    def save_index(self, entry: IndexEntry) -> None:
        _atomic_write_json(self._index_path(entry.owner_id), entry.to_dict())

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def get_upload_dir(self, trip_id: str) -> Path:
        d = self.uploads_dir / self.validate_id(trip_id)
        d.mkdir(parents=True, exist_ok=True)
        return d

    def save_upload(self, trip_id: str, filename: str, content: bytes) -> Path:
        """Write *content* under the trip's upload dir; returns the file path."""
        path = self.get_upload_dir(trip_id) / safe_filename(filename)
        fd, tmp = tempfile.mkstemp(prefix=".upload.", dir=path.parent)
        with os.fdopen(fd, "wb") as fh:
            fh.write(content)
        os.replace(tmp, path)
        return path

    def get_upload_path(self, trip_id: str, filename: str) -> Optional[Path]:
        """Resolve an existing upload, or None if the name is unsafe or missing."""
        if not filename or safe_filename(filename) != filename or filename.startswith("."):
            return None
        path = self.uploads_dir / self.validate_id(trip_id) / filename
        return path if path.is_file() else None

    def list_uploads(self, trip_id: str) -> List[Dict[str, Any]]:
        d = self.uploads_dir / self.validate_id(trip_id)
        if not d.is_dir():
            return []
        files = []
        for p in sorted(d.iterdir()):
            if p.is_file() and not p.name.startswith("."):
                files.append({"name": p.name, "size": p.stat().st_size})
        return files
