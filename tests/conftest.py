"""Shared fixtures for trip planner tests."""

from __future__ import annotations

import json
from typing import Dict, List, Optional

import pytest

from trip_planner.config import Config
from trip_planner.llm import ModerationResult
from trip_planner.locks import LockRegistry
from trip_planner.planner import TripPlanner
from trip_planner.store import TripStore


# ---------------------------------------------------------------------------
# Ensure no real API calls leak out
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch, tmp_path):
    """Dummy API key and a temp data dir so nothing touches the real ones."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-key-for-pytest")
    monkeypatch.setenv("TRIP_PLANNER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("TRIP_PLANNER_CONFIG", raising=False)


# ---------------------------------------------------------------------------
# Store fixture (temporary data dir)
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_store(tmp_path):
    return TripStore(str(tmp_path / "store"))


# ---------------------------------------------------------------------------
# Mock embedder
# ---------------------------------------------------------------------------

class FakeEmbedder:
    """Deterministic mock embedder.

    Each vocabulary word owns one dimension; a text's vector counts the
    vocabulary words it contains, so related texts score higher.  Texts
    with no vocabulary words get a small constant vector.
    """

    VOCAB = ("museum", "tickets", "food", "beach", "train", "hotel", "sushi", "temple")

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.call_count = 0
        self.texts: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.call_count += 1
        self.texts.append(text)
        if self.fail:
            raise RuntimeError("embedding service down")
        return self._vector(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.call_count += 1
        self.texts.extend(texts)
        if self.fail:
            raise RuntimeError("embedding service down")
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> List[float]:
        lower = text.lower()
        vec = [float(lower.count(w)) for w in self.VOCAB]
        if not any(vec):
            vec = [0.1] * len(self.VOCAB)
        return vec


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


# ---------------------------------------------------------------------------
# Scripted LLM
# ---------------------------------------------------------------------------

class FakeLLM:
    """Returns queued chat replies in order; records every call."""

    def __init__(self, chat_replies: Optional[List[str]] = None, flag_words=()):
        self.chat_replies = list(chat_replies or [])
        self.flag_words = tuple(flag_words)
        self.chat_calls: List[Dict] = []
        self.moderated: List[str] = []
        self.image_prompts: List[str] = []
        self.speech_inputs: List[str] = []

    async def chat(self, messages, temperature=0.7, max_tokens=2048, response_format=None):
        self.chat_calls.append({
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": response_format,
        })
        return self.chat_replies.pop(0) if self.chat_replies else ""

    async def moderate(self, text):
        self.moderated.append(text)
        flagged = any(w in text for w in self.flag_words)
        return ModerationResult(flagged=flagged, categories={"violence": flagged})

    async def generate_image(self, prompt):
        self.image_prompts.append(prompt)
        return "iVBORw0KGgo="  # PNG magic, base64

    async def text_to_speech(self, text, voice="alloy"):
        self.speech_inputs.append(text)
        return b"ID3fake-mp3"


@pytest.fixture
def fake_llm():
    return FakeLLM(flag_words=("forbidden",))


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

@pytest.fixture
def planner(tmp_store, fake_embedder, fake_llm):
    cfg = Config(openai_api_key="test-key", chunk_size=100, chunk_overlap=10)
    return TripPlanner(tmp_store, LockRegistry(), fake_embedder, fake_llm, cfg)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

SAMPLE_ITINERARY = {
    "itinerary": [
        {
            "date": "2026-04-01",
            "title": "Day 1 - Arrival",
            "activities": [
                {"id": "a1", "time": "09:00", "title": "Tsukiji breakfast",
                 "description": "Sushi at the outer market", "place": "Tsukiji", "duration": "1h"},
                {"time": "14:00", "title": "Senso-ji", "place": "Asakusa"},
            ],
        },
        {
            "date": "2026-04-02",
            "title": "Day 2 - Culture",
            "activities": [{"id": "b1", "time": "10:00", "title": "National Museum"}],
        },
    ]
}


@pytest.fixture
def sample_itinerary_json():
    return json.dumps(SAMPLE_ITINERARY)


@pytest.fixture
def make_trip(planner):
    async def _make(destination="Tokyo", start="2026-04-01", end="2026-04-02", preferences=None):
        return await planner.create_trip(destination, start, end, preferences)
    return _make
