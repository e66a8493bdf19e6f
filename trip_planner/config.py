"""Configuration for the Trip Planner service.

Loads from environment variables with sensible defaults.
Optionally reads a config.json file.

Note:
    Environment variables use the ``TRIP_PLANNER_*`` prefix, except for the
    provider credentials (``OPENAI_API_KEY`` / ``OPENAI_BASE_URL``) and the
    cleanup TTL (``TRIP_TTL_DAYS``).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class Config:
    """Central configuration for all planner sub-systems."""

    # OpenAI-compatible provider
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4o-mini"
    image_model: str = "dall-e-3"
    tts_model: str = "tts-1-hd"

    # Storage: trips/, index/, uploads/ live under data_dir
    data_dir: str = ""  # resolved in load_config()

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8790
    api_key: str = ""

    # Chunking
    chunk_size: int = 500
    chunk_overlap: int = 50

    # Uploads
    max_upload_mb: int = 10

    # Cleanup
    trip_ttl_days: int = 14

    # Provider retry
    max_retries: int = 3
    embed_cache_size: int = 1024

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty == OK)."""
        errors: list[str] = []
        if not self.openai_api_key:
            errors.append("OPENAI_API_KEY is required")
        if self.chunk_size < 1:
            errors.append("TRIP_PLANNER_CHUNK_SIZE must be >= 1")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            errors.append("TRIP_PLANNER_CHUNK_OVERLAP must be >= 0 and < chunk size")
        if self.api_port < 1 or self.api_port > 65535:
            errors.append("TRIP_PLANNER_PORT must be 1-65535")
        if self.trip_ttl_days < 1:
            errors.append("TRIP_TTL_DAYS must be >= 1")
        return errors

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def load_config(config_path: Optional[str] = None) -> Config:
    """Build a Config from environment variables, optionally overlaid with a JSON file.

    Environment variables (all optional except OPENAI_API_KEY):
        OPENAI_API_KEY
        OPENAI_BASE_URL
        TRIP_PLANNER_DATA_DIR
        TRIP_PLANNER_EMBED_MODEL
        TRIP_PLANNER_CHAT_MODEL
        TRIP_PLANNER_IMAGE_MODEL
        TRIP_PLANNER_TTS_MODEL
        TRIP_PLANNER_HOST
        TRIP_PLANNER_PORT
        TRIP_PLANNER_API_KEY
        TRIP_PLANNER_CHUNK_SIZE
        TRIP_PLANNER_CHUNK_OVERLAP
        TRIP_PLANNER_MAX_UPLOAD_MB
        TRIP_TTL_DAYS
    """
    cfg = Config()

    # --- JSON file overlay ------------------------------------------------
    json_path = config_path or os.environ.get("TRIP_PLANNER_CONFIG")
    if json_path and Path(json_path).is_file():
        with open(json_path, "r") as fh:
            data = json.load(fh)
        for key, val in data.items():
            if hasattr(cfg, key):
                expected_type = type(getattr(cfg, key))
                try:
                    setattr(cfg, key, expected_type(val))
                except (ValueError, TypeError):
                    pass  # skip bad values

    # --- Environment variable overlay -------------------------------------
    env_map: dict[str, tuple[str, type]] = {
        "OPENAI_API_KEY": ("openai_api_key", str),
        "OPENAI_BASE_URL": ("openai_base_url", str),
        "TRIP_PLANNER_DATA_DIR": ("data_dir", str),
        "TRIP_PLANNER_EMBED_MODEL": ("embedding_model", str),
        "TRIP_PLANNER_CHAT_MODEL": ("chat_model", str),
        "TRIP_PLANNER_IMAGE_MODEL": ("image_model", str),
        "TRIP_PLANNER_TTS_MODEL": ("tts_model", str),
        "TRIP_PLANNER_HOST": ("api_host", str),
        "TRIP_PLANNER_PORT": ("api_port", int),
        "TRIP_PLANNER_API_KEY": ("api_key", str),
        "TRIP_PLANNER_CHUNK_SIZE": ("chunk_size", int),
        "TRIP_PLANNER_CHUNK_OVERLAP": ("chunk_overlap", int),
        "TRIP_PLANNER_MAX_UPLOAD_MB": ("max_upload_mb", int),
        "TRIP_TTL_DAYS": ("trip_ttl_days", int),
    }

    for env_key, (attr, cast) in env_map.items():
        val = os.environ.get(env_key)
        if val is not None:
            try:
                setattr(cfg, attr, cast(val))
            except (ValueError, TypeError):
                pass

    # --- Default data_dir resolution --------------------------------------
    if not cfg.data_dir:
        cfg.data_dir = str(Path.cwd() / "data")

    return cfg
