"""Gemini generation client over the Generative Language REST API.

Configuration via environment variables:
- GEMINI_API_KEY: Required. Fail-closed if missing.
- CASETRACE_GEMINI_MODEL: Model id (default: gemini-3-flash-preview).
- CASETRACE_GEMINI_BASE_URL: API base (default: the public v1beta endpoint).
- CASETRACE_GENERATION_TIMEOUT_SECONDS: Per-call timeout (default: 120).

Classification: HTTP 429 raises RateLimitedError; every other failure,
including timeouts, transport errors and unparseable responses, raises
FatalGenerationError. Retries are left to the caller's backoff executor.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from casetrace.services.generation.client import (
    FatalGenerationError,
    GeneratedResult,
    GenerationUsage,
    RateLimitedError,
    get_timeout_seconds,
)
from casetrace.services.generation.prompts import (
    StepContextLoader,
    build_prompt,
    step_number_from_name,
)

logger = logging.getLogger(__name__)

GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
GEMINI_MODEL_ENV = "CASETRACE_GEMINI_MODEL"
GEMINI_BASE_URL_ENV = "CASETRACE_GEMINI_BASE_URL"
DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _extract_text(body: dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""
    candidates = body.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))


class GeminiGenerationClient:
    """GenerationClient backed by Gemini ``generateContent``.

    Args:
        context_loader: Supplies the prompt context for each step.
        api_key: Overrides GEMINI_API_KEY.
        model: Overrides CASETRACE_GEMINI_MODEL.
        base_url: Overrides CASETRACE_GEMINI_BASE_URL.
        http_client: Shared AsyncClient; when omitted a client is opened per call.

    Raises:
        ValueError: If no API key is configured.
    """

    def __init__(
        self,
        *,
        context_loader: StepContextLoader,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        key = api_key or os.environ.get(GEMINI_API_KEY_ENV, "")
        if not key:
            raise ValueError(
                "GEMINI_API_KEY environment variable is required when using the Gemini backend. "
                "Set CASETRACE_GENERATION_BACKEND=deterministic to use the deterministic client."
            )
        self._api_key = key
        self._model = model or os.environ.get(GEMINI_MODEL_ENV, DEFAULT_GEMINI_MODEL)
        self._base_url = (
            base_url or os.environ.get(GEMINI_BASE_URL_ENV, DEFAULT_GEMINI_BASE_URL)
        ).rstrip("/")
        self._context_loader = context_loader
        self._http_client = http_client
        self._timeout = get_timeout_seconds()

    async def generate(self, case_id: str, step_name: str) -> GeneratedResult:
        """Render the step prompt and call ``generateContent``."""
        step_number = step_number_from_name(step_name)
        prompt = build_prompt(step_number, self._context_loader(case_id, step_number))

        url = f"{self._base_url}/models/{self._model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0, "responseMimeType": "application/json"},
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    url, params={"key": self._api_key}, json=payload, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        url, params={"key": self._api_key}, json=payload
                    )
        except httpx.TimeoutException as exc:
            raise FatalGenerationError(f"Gemini request timed out for {step_name}") from exc
        except httpx.HTTPError as exc:
            raise FatalGenerationError(
                f"Gemini transport error for {step_name}: {type(exc).__name__}"
            ) from exc

        if response.status_code == 429:
            logger.warning("Gemini rate limit for case %s %s", case_id, step_name)
            raise RateLimitedError(
                f"Gemini rate limit exceeded for {step_name}",
                retry_after_seconds=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code >= 400:
            raise FatalGenerationError(
                f"Gemini API error {response.status_code} for {step_name}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise FatalGenerationError(f"Gemini returned non-JSON body for {step_name}") from exc

        text = _extract_text(body)
        if not text:
            raise FatalGenerationError(f"Gemini returned no content for {step_name}")

        usage = body.get("usageMetadata") or {}
        tokens = int(usage.get("totalTokenCount") or 0)
        return GeneratedResult(content=text, usage=GenerationUsage(tokens=tokens))
