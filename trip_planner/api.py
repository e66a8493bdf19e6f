"""FastAPI HTTP API for the trip planner.

Endpoints:
    GET    /v1/health                                -- Liveness + uptime
    POST   /v1/trips                                 -- Create trip
    GET    /v1/trips/{trip_id}                       -- Fetch trip
    POST   /v1/trips/{trip_id}/notes                 -- Add note (indexed)
    POST   /v1/trips/{trip_id}/notes/search          -- Semantic note search
    POST   /v1/trips/{trip_id}/docs                  -- Upload + index document
    GET    /v1/trips/{trip_id}/docs                  -- List uploads
    POST   /v1/trips/{trip_id}/docs/search           -- keyword / semantic / both
    POST   /v1/trips/{trip_id}/itinerary/generate    -- Generate itinerary
    POST   /v1/trips/{trip_id}/itinerary/refine      -- Refine itinerary
    POST   /v1/trips/{trip_id}/discover              -- Research findings
    POST   /v1/trips/{trip_id}/visualize             -- Postcard image
    POST   /v1/trips/{trip_id}/voice                 -- Day narration (MP3)
    GET    /v1/trips/{trip_id}/files/{filename}      -- Serve an upload
    GET    /v1/trips/{trip_id}/export                -- Trip + files + index summary

Run: ``python -m trip_planner.api``
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from .config import Config, load_config
from .embeddings import OpenAIEmbeddings
from .extraction import ExtractionFailed
from .llm import OpenAIClient
from .locks import LockRegistry
from .middleware import APIKeyMiddleware, AuditLogMiddleware, RateLimitMiddleware
from .planner import ContentFlagged, DayNotFound, InvalidInput, TripNotFound, TripPlanner
from .store import InvalidTripId, TripStore, safe_filename

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared state (initialised in lifespan)
# ---------------------------------------------------------------------------

_config: Optional[Config] = None
_planner: Optional[TripPlanner] = None
_start_time: float = 0.0

logging.getLogger("audit").setLevel(logging.INFO)

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".mp3": "audio/mpeg",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
}


def _get_planner() -> TripPlanner:
    if _planner is None:
        raise HTTPException(503, "Planner not initialised")
    return _planner


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown logic."""
    global _config, _planner, _start_time

    _config = load_config()
    errors = _config.validate()
    if errors:
        logger.warning("Config validation warnings: %s", errors)
    if not _config.openai_api_key:
        logger.warning("No OPENAI_API_KEY -- model and embedding calls will fail")

    store = TripStore(_config.data_dir)
    embedder = OpenAIEmbeddings(
        api_key=_config.openai_api_key,
        model=_config.embedding_model,
        base_url=_config.openai_base_url,
        max_retries=_config.max_retries,
        cache_size=_config.embed_cache_size,
    )
    llm = OpenAIClient(
        api_key=_config.openai_api_key,
        base_url=_config.openai_base_url,
        chat_model=_config.chat_model,
        image_model=_config.image_model,
        tts_model=_config.tts_model,
        max_retries=_config.max_retries,
    )
    _planner = TripPlanner(store, LockRegistry(), embedder, llm, _config)
    _start_time = time.time()

    logger.info(
        "Trip planner API ready -- data_dir=%s chat_model=%s emb_model=%s chunk=%d/%d",
        _config.data_dir,
        _config.chat_model,
        _config.embedding_model,
        _config.chunk_size,
        _config.chunk_overlap,
    )

    yield

    _planner = None


app = FastAPI(
    title="Trip Planner API",
    version="0.1.0",
    lifespan=lifespan,
)

# --- Security middleware (order matters: last added = first to run) ---
app.add_middleware(AuditLogMiddleware)

# 120 requests/minute per IP, 20 of them model-backed
app.add_middleware(RateLimitMiddleware, max_requests=120, max_expensive=20, window_seconds=60)

_api_key = os.environ.get("TRIP_PLANNER_API_KEY", "")
if _api_key:
    app.add_middleware(APIKeyMiddleware, api_key=_api_key)
    logger.info("API key authentication enabled")
else:
    logger.warning("No TRIP_PLANNER_API_KEY set -- API is UNAUTHENTICATED")


# --- Centralized error handling ---

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "status_code": status_code},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    logger.warning("HTTP %d: %s (path=%s)", exc.status_code, exc.detail, request.url.path)
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    logger.warning("Validation error: %s (path=%s)", str(exc)[:200], request.url.path)
    return JSONResponse(
        status_code=422,
        content={"error": "Validation error", "detail": exc.errors()},
    )


@app.exception_handler(TripNotFound)
@app.exception_handler(DayNotFound)
async def not_found_handler(request, exc):
    logger.info("Not found: %s (path=%s)", exc, request.url.path)
    return _error(404, str(exc))


@app.exception_handler(InvalidTripId)
async def invalid_trip_id_handler(request, exc):
    return _error(400, str(exc))


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request, exc):
    return _error(400, str(exc))


@app.exception_handler(ContentFlagged)
async def content_flagged_handler(request, exc):
    logger.info("Moderation rejected request (path=%s)", request.url.path)
    return _error(400, str(exc))


@app.exception_handler(ExtractionFailed)
async def extraction_failed_handler(request, exc):
    logger.warning("Model output not usable (path=%s len=%d)", request.url.path, exc.raw_length)
    return _error(502, "Model returned invalid output. Please try again.")


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.exception("Unhandled error: %s (path=%s)", exc, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class CreateTripRequest(BaseModel):
    destination: str = Field(..., min_length=1, max_length=500)
    start_date: str = Field(..., min_length=1, max_length=32)
    end_date: str = Field(..., min_length=1, max_length=32)
    preferences: Optional[Dict[str, Any]] = None


class NoteRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=10000)


class NoteSearchRequest(BaseModel):
    query: str = Field(..., max_length=2000)


class DocSearchRequest(BaseModel):
    query: str = Field(..., max_length=2000)
    mode: str = "keyword"


class RefineRequest(BaseModel):
    instruction: str = Field(default="", max_length=5000)


class DiscoverRequest(BaseModel):
    query: str = Field(default="", max_length=2000)
    update_itinerary: bool = False


class VisualizeRequest(BaseModel):
    place: str = Field(default="", max_length=1000)


class VoiceRequest(BaseModel):
    day_index: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/v1/health")
async def health() -> Dict[str, Any]:
    """Liveness; public, so no trip data is exposed."""
    return {
        "status": "ok" if _planner is not None else "down",
        "active_locks": len(_planner.locks) if _planner is not None else 0,
        "uptime_seconds": round(time.time() - _start_time, 1),
    }


@app.post("/v1/trips")
async def create_trip(req: CreateTripRequest) -> Dict[str, Any]:
    trip = await _get_planner().create_trip(
        req.destination, req.start_date, req.end_date, req.preferences,
    )
    return {"trip_id": trip.id, "trip": trip.to_dict()}


@app.get("/v1/trips/{trip_id}")
async def get_trip(trip_id: str) -> Dict[str, Any]:
    return _get_planner().get_trip(trip_id).to_dict()


@app.post("/v1/trips/{trip_id}/notes")
async def add_note(trip_id: str, req: NoteRequest) -> Dict[str, Any]:
    notes = await _get_planner().add_note(trip_id, req.text)
    return {"notes": notes}


@app.post("/v1/trips/{trip_id}/notes/search")
async def search_notes(trip_id: str, req: NoteSearchRequest) -> Dict[str, Any]:
    results = await _get_planner().search_notes(trip_id, req.query)
    return {"results": results}


@app.post("/v1/trips/{trip_id}/docs")
async def upload_document(trip_id: str, file: UploadFile = File(...)) -> Dict[str, Any]:
    planner = _get_planner()
    content = await file.read()
    return await planner.upload_document(
        trip_id,
        file.filename or "upload.txt",
        content,
        file.content_type or "",
    )


@app.get("/v1/trips/{trip_id}/docs")
async def list_documents(trip_id: str) -> Dict[str, List[Dict[str, Any]]]:
    return {"files": _get_planner().list_documents(trip_id)}


@app.post("/v1/trips/{trip_id}/docs/search")
async def search_documents(trip_id: str, req: DocSearchRequest) -> Dict[str, Any]:
    return await _get_planner().search_documents(trip_id, req.query, req.mode)


@app.post("/v1/trips/{trip_id}/itinerary/generate")
async def generate_itinerary(trip_id: str) -> Dict[str, Any]:
    days = await _get_planner().generate_itinerary(trip_id)
    return {"itinerary": [d.to_dict() for d in days]}


@app.post("/v1/trips/{trip_id}/itinerary/refine")
async def refine_itinerary(trip_id: str, req: Optional[RefineRequest] = None) -> Dict[str, Any]:
    days = await _get_planner().refine_itinerary(trip_id, req.instruction if req else "")
    return {"itinerary": [d.to_dict() for d in days]}


@app.post("/v1/trips/{trip_id}/discover")
async def discover(trip_id: str, req: Optional[DiscoverRequest] = None) -> Dict[str, Any]:
    req = req or DiscoverRequest()
    results = await _get_planner().discover(trip_id, req.query, req.update_itinerary)
    return {"results": [r.to_dict() for r in results]}


@app.post("/v1/trips/{trip_id}/visualize")
async def visualize(trip_id: str, req: Optional[VisualizeRequest] = None) -> Dict[str, str]:
    return await _get_planner().visualize(trip_id, req.place if req else "")


@app.post("/v1/trips/{trip_id}/voice")
async def voice(trip_id: str, req: Optional[VoiceRequest] = None) -> Dict[str, Any]:
    return await _get_planner().voice(trip_id, req.day_index if req else 0)


@app.get("/v1/trips/{trip_id}/files/{filename}")
async def get_file(trip_id: str, filename: str) -> FileResponse:
    planner = _get_planner()
    planner.get_trip(trip_id)
    if safe_filename(filename) != filename:
        raise HTTPException(400, "Invalid filename")
    path = planner.store.get_upload_path(trip_id, filename)
    if path is None:
        raise HTTPException(404, "File not found")
    media_type = CONTENT_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")
    return FileResponse(path, media_type=media_type)


@app.get("/v1/trips/{trip_id}/export")
async def export_trip(trip_id: str) -> Dict[str, Any]:
    return _get_planner().export_trip(trip_id)


# ---------------------------------------------------------------------------
# CLI entry-point
# ---------------------------------------------------------------------------

def main() -> None:
    """Run the API server via uvicorn."""
    import uvicorn

    cfg = load_config()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    logger.info("Starting Trip Planner API on %s:%d", cfg.api_host, cfg.api_port)
    uvicorn.run(
        "trip_planner.api:app",
        host=cfg.api_host,
        port=cfg.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
