"""Tests for the FastAPI HTTP API.

Uses httpx AsyncClient against the FastAPI app.  The module-level planner
that normally comes from the lifespan handler is wired to a temp store and
fake model clients.
"""

from __future__ import annotations

import time

import pytest
from httpx import AsyncClient, ASGITransport

import trip_planner.api as api_module
from trip_planner.api import app
from trip_planner.config import Config


@pytest.fixture(autouse=True)
def _init_api_state(planner):
    """Wire the api module globals to the test planner so every test starts clean."""
    api_module._planner = planner
    api_module._config = Config(openai_api_key="test-key")
    api_module._start_time = time.time()

    yield

    api_module._planner = None
    api_module._config = None


@pytest.fixture
async def client():
    """Create a test HTTP client against the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _create(client, destination="Kyoto"):
    resp = await client.post("/v1/trips", json={
        "destination": destination,
        "start_date": "2026-04-01",
        "end_date": "2026-04-02",
        "preferences": {"pace": "packed", "interests": ["temples"]},
    })
    assert resp.status_code == 200
    return resp.json()["trip_id"]


# ---------------------------------------------------------------------------
# /v1/health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestHealth:
    async def test_health_ok(self, client):
        resp = await client.get("/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["active_locks"] == 0
        assert data["uptime_seconds"] >= 0

    async def test_health_down_without_planner(self, client):
        api_module._planner = None
        resp = await client.get("/v1/health")
        assert resp.json()["status"] == "down"


# ---------------------------------------------------------------------------
# Trips
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestTrips:
    async def test_create_and_get(self, client):
        trip_id = await _create(client)
        resp = await client.get(f"/v1/trips/{trip_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["destination"] == "Kyoto"
        assert data["preferences"]["pace"] == "packed"
        assert data["itinerary"] == []

    async def test_unknown_trip_404(self, client):
        resp = await client.get("/v1/trips/no-such-trip")
        assert resp.status_code == 404
        assert resp.json()["status_code"] == 404

    async def test_invalid_trip_id_400(self, client):
        resp = await client.get("/v1/trips/bad.id")
        assert resp.status_code == 400

    async def test_missing_destination_422(self, client):
        resp = await client.post("/v1/trips", json={"start_date": "a", "end_date": "b"})
        assert resp.status_code == 422
        assert resp.json()["error"] == "Validation error"

    async def test_flagged_destination_400(self, client):
        resp = await client.post("/v1/trips", json={
            "destination": "forbidden zone", "start_date": "a", "end_date": "b",
        })
        assert resp.status_code == 400
        assert "moderation" in resp.json()["error"]


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestNotes:
    async def test_note_round_trip(self, client):
        trip_id = await _create(client)
        resp = await client.post(f"/v1/trips/{trip_id}/notes", json={"text": "Visit the temple at dawn"})
        assert resp.status_code == 200
        assert resp.json()["notes"] == ["Visit the temple at dawn"]

        resp = await client.post(f"/v1/trips/{trip_id}/notes/search", json={"query": "temple"})
        assert resp.status_code == 200
        results = resp.json()["results"]
        assert results[0]["text"] == "Visit the temple at dawn"

    async def test_note_on_unknown_trip(self, client):
        resp = await client.post("/v1/trips/ghost/notes", json={"text": "hi"})
        assert resp.status_code == 404

    async def test_empty_note_422(self, client):
        trip_id = await _create(client)
        resp = await client.post(f"/v1/trips/{trip_id}/notes", json={"text": ""})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestDocuments:
    async def test_upload_list_search(self, client):
        trip_id = await _create(client)
        resp = await client.post(
            f"/v1/trips/{trip_id}/docs",
            files={"file": ("guide.txt", b"The golden temple opens at 9. Buy museum tickets online.", "text/plain")},
        )
        assert resp.status_code == 200
        assert resp.json() == {"filename": "guide.txt", "chunks": 1}

        resp = await client.get(f"/v1/trips/{trip_id}/docs")
        assert resp.json()["files"][0]["name"] == "guide.txt"

        resp = await client.post(f"/v1/trips/{trip_id}/docs/search", json={"query": "museum tickets"})
        data = resp.json()
        assert data["mode"] == "keyword"
        assert len(data["results"]) == 1

        resp = await client.post(
            f"/v1/trips/{trip_id}/docs/search", json={"query": "temple", "mode": "both"},
        )
        assert resp.json()["mode"] == "both"
        assert len(resp.json()["results"]) == 1

    async def test_upload_wrong_type(self, client):
        trip_id = await _create(client)
        resp = await client.post(
            f"/v1/trips/{trip_id}/docs",
            files={"file": ("x.png", b"\x89PNG", "image/png")},
        )
        assert resp.status_code == 400

    async def test_serve_file(self, client):
        trip_id = await _create(client)
        await client.post(
            f"/v1/trips/{trip_id}/docs",
            files={"file": ("plan.txt", b"day one: temple", "text/plain")},
        )
        resp = await client.get(f"/v1/trips/{trip_id}/files/plan.txt")
        assert resp.status_code == 200
        assert resp.content == b"day one: temple"
        assert resp.headers["content-type"].startswith("text/plain")

    async def test_serve_missing_and_unsafe(self, client):
        trip_id = await _create(client)
        assert (await client.get(f"/v1/trips/{trip_id}/files/missing.txt")).status_code == 404
        assert (await client.get(f"/v1/trips/{trip_id}/files/a%20b.txt")).status_code == 400


# ---------------------------------------------------------------------------
# Itinerary / discover / media
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestItinerary:
    async def test_generate_from_prose_output(self, client, fake_llm, sample_itinerary_json):
        trip_id = await _create(client)
        fake_llm.chat_replies = [f"Sure! {sample_itinerary_json} Have fun."]

        resp = await client.post(f"/v1/trips/{trip_id}/itinerary/generate")
        assert resp.status_code == 200
        days = resp.json()["itinerary"]
        assert len(days) == 2
        assert days[0]["activities"][0]["title"] == "Tsukiji breakfast"

    async def test_generate_unusable_output_502(self, client, fake_llm):
        trip_id = await _create(client)
        fake_llm.chat_replies = ["no json here"]

        resp = await client.post(f"/v1/trips/{trip_id}/itinerary/generate")
        assert resp.status_code == 502
        assert "try again" in resp.json()["error"]

        trip = (await client.get(f"/v1/trips/{trip_id}")).json()
        assert trip["itinerary"] == []

    async def test_refine_without_body(self, client, fake_llm, sample_itinerary_json):
        trip_id = await _create(client)
        fake_llm.chat_replies = [
            sample_itinerary_json,
            '[{"date": "2026-04-01", "title": "Day 1", "activities": []}]',
        ]
        await client.post(f"/v1/trips/{trip_id}/itinerary/generate")

        resp = await client.post(f"/v1/trips/{trip_id}/itinerary/refine")
        assert resp.status_code == 200
        assert [d["date"] for d in resp.json()["itinerary"]] == ["2026-04-01"]

    async def test_discover(self, client, fake_llm):
        trip_id = await _create(client)
        fake_llm.chat_replies = ['[{"title": "Gion", "snippet": "Evening walk"}]']
        resp = await client.post(f"/v1/trips/{trip_id}/discover", json={"query": "nightlife"})
        assert resp.status_code == 200
        assert resp.json()["results"] == [{"title": "Gion", "snippet": "Evening walk", "url": None}]

    async def test_visualize_and_fetch(self, client):
        trip_id = await _create(client)
        resp = await client.post(f"/v1/trips/{trip_id}/visualize", json={"place": "Fushimi Inari"})
        assert resp.status_code == 200
        filename = resp.json()["filename"]

        img = await client.get(f"/v1/trips/{trip_id}/files/{filename}")
        assert img.status_code == 200
        assert img.headers["content-type"] == "image/png"

    async def test_voice_missing_day_404(self, client):
        trip_id = await _create(client)
        resp = await client.post(f"/v1/trips/{trip_id}/voice", json={"day_index": 0})
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestExport:
    async def test_export(self, client):
        trip_id = await _create(client)
        await client.post(f"/v1/trips/{trip_id}/notes", json={"text": "bring an umbrella"})

        resp = await client.get(f"/v1/trips/{trip_id}/export")
        assert resp.status_code == 200
        data = resp.json()
        assert data["trip"]["notes"] == ["bring an umbrella"]
        assert data["index_summary"]["note_chunk_count"] == 1
        assert "exported_at" in data
