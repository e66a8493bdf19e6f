"""OpenAI-compatible generative client: chat, moderation, images, speech.

Same approach as :mod:`trip_planner.embeddings`: raw ``requests`` calls
wrapped in ``asyncio.to_thread`` with retry/back-off.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import load_config
from .http import post_with_retries

logger = logging.getLogger(__name__)

TTS_MAX_CHARS = 4096
TTS_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


class LLMError(Exception):
    """Raised when a generative endpoint fails or returns an unusable payload."""


@dataclass
class ModerationResult:
    flagged: bool
    categories: Dict[str, bool] = field(default_factory=dict)


class OpenAIClient:
    """Async wrapper around the chat / moderation / image / speech endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        chat_model: Optional[str] = None,
        image_model: Optional[str] = None,
        tts_model: Optional[str] = None,
        max_retries: int = 3,
        timeout: float = 120,
    ) -> None:
        cfg = load_config()
        self.api_key = api_key or cfg.openai_api_key
        self.base_url = (base_url or cfg.openai_base_url).rstrip("/")
        self.chat_model = chat_model or cfg.chat_model
        self.image_model = image_model or cfg.image_model
        self.tts_model = tts_model or cfg.tts_model
        self.max_retries = max_retries
        self.timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, payload: Dict[str, Any]):
        return post_with_retries(
            f"{self.base_url}{path}",
            self._headers,
            payload,
            max_retries=self.max_retries,
            error_cls=LLMError,
            timeout=self.timeout,
            label="OpenAI",
        )

    def _json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._post(path, payload)
        try:
            return resp.json()
        except ValueError as exc:
            raise LLMError(f"Non-JSON response from {path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def _chat_sync(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        response_format: Optional[str],
    ) -> str:
        payload: Dict[str, Any] = {
            "model": self.chat_model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = {"type": response_format}
        data = self._json("/chat/completions", payload)
        choices = data.get("choices") or []
        if not choices:
            return ""
        content = (choices[0].get("message") or {}).get("content")
        return content if isinstance(content, str) else ""

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2048,
        response_format: Optional[str] = None,
    ) -> str:
        """Single chat completion; returns the first choice's text ('' if none).

        ``response_format`` is ``"text"`` or ``"json_object"``.
        """
        return await asyncio.to_thread(
            self._chat_sync, messages, temperature, max_tokens, response_format,
        )

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    def _moderate_sync(self, text: str) -> ModerationResult:
        data = self._json("/moderations", {"input": text})
        results = data.get("results") or []
        if not results:
            raise LLMError("Moderation response had no results")
        first = results[0]
        categories = first.get("categories") or {}
        return ModerationResult(
            flagged=bool(first.get("flagged")),
            categories={k: bool(v) for k, v in categories.items()},
        )

    async def moderate(self, text: str) -> ModerationResult:
        result = await asyncio.to_thread(self._moderate_sync, text)
        if result.flagged:
            flagged = [k for k, v in result.categories.items() if v]
            logger.info("Moderation flagged input (categories=%s)", flagged)
        return result

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def _image_sync(self, prompt: str) -> str:
        data = self._json("/images/generations", {
            "model": self.image_model,
            "prompt": prompt,
            "n": 1,
            "size": "1024x1024",
            "response_format": "b64_json",
        })
        items = data.get("data") or []
        b64 = items[0].get("b64_json") if items else None
        if not b64:
            raise LLMError("No image generated")
        return b64

    async def generate_image(self, prompt: str) -> str:
        """Generate one 1024x1024 image; returns base64-encoded PNG data."""
        return await asyncio.to_thread(self._image_sync, prompt)

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    def _speech_sync(self, text: str, voice: str) -> bytes:
        resp = self._post("/audio/speech", {
            "model": self.tts_model,
            "voice": voice,
            "input": text[:TTS_MAX_CHARS],
        })
        return resp.content

    async def text_to_speech(self, text: str, voice: str = "alloy") -> bytes:
        """Synthesize MP3 audio for *text* (truncated to 4096 chars)."""
        if voice not in TTS_VOICES:
            raise ValueError(f"Unknown voice {voice!r}")
        return await asyncio.to_thread(self._speech_sync, text, voice)
