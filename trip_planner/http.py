"""Blocking POST with exponential back-off, shared by the provider clients."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional, Type

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


def post_with_retries(
    url: str,
    headers: Dict[str, str],
    payload: Dict[str, Any],
    *,
    max_retries: int,
    error_cls: Type[Exception],
    timeout: float = 60,
    label: str = "Provider",
) -> requests.Response:
    """POST *payload* as JSON; retry 429/5xx and network errors.

    Returns the 200 response.  Raises *error_cls* for non-retryable HTTP
    errors immediately, and after *max_retries* failed attempts otherwise.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(max_retries):
        try:
            resp = requests.post(url, headers=headers, json=payload, timeout=timeout)
            if resp.status_code == 200:
                return resp

            if resp.status_code in RETRYABLE_STATUS:
                wait = 2 ** attempt
                logger.warning(
                    "%s %s (attempt %d/%d) - retrying in %ds",
                    label, resp.status_code, attempt + 1, max_retries, wait,
                )
                time.sleep(wait)
                last_exc = error_cls(f"HTTP {resp.status_code}: {resp.text[:200]}")
                continue

            # Non-retryable
            raise error_cls(f"HTTP {resp.status_code}: {resp.text[:500]}")

        except requests.RequestException as exc:
            wait = 2 ** attempt
            logger.warning(
                "%s request error (attempt %d/%d): %s - retrying in %ds",
                label, attempt + 1, max_retries, exc, wait,
            )
            time.sleep(wait)
            last_exc = exc

    raise error_cls(f"Failed after {max_retries} retries: {last_exc}")
