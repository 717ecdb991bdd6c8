"""Anthropic generation client using the official async SDK.

Configuration via environment variables:
- ANTHROPIC_API_KEY: Required. Fail-closed if missing.
- CASETRACE_ANTHROPIC_MODEL: Model id (default: claude-sonnet-4-20250514).

The SDK's own retries are disabled (max_retries=0) so that the run
orchestrator's backoff executor is the single place retries happen.
"""

from __future__ import annotations

import logging
import os

import anthropic

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

ANTHROPIC_MODEL_ENV = "CASETRACE_ANTHROPIC_MODEL"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
MAX_TOKENS = 8192

_SYSTEM_PROMPT = (
    "You MUST respond with valid JSON only. No markdown, no explanation, "
    "no code fences. Output raw JSON."
)


class AnthropicGenerationClient:
    """GenerationClient backed by Claude via the Anthropic SDK.

    Args:
        context_loader: Supplies the prompt context for each step.
        model: Overrides CASETRACE_ANTHROPIC_MODEL.
        max_tokens: Maximum output tokens per call.

    Raises:
        ValueError: If ANTHROPIC_API_KEY is not set.
    """

    def __init__(
        self,
        *,
        context_loader: StepContextLoader,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        api_key = os.environ.get("ANTHROPIC_API_KEY", "")
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY environment variable is required "
                "when using the Anthropic backend. "
                "Set CASETRACE_GENERATION_BACKEND=deterministic to use the deterministic client."
            )

        self._model = model or os.environ.get(ANTHROPIC_MODEL_ENV, DEFAULT_ANTHROPIC_MODEL)
        self._max_tokens = max_tokens or MAX_TOKENS
        self._context_loader = context_loader
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=get_timeout_seconds(),
            max_retries=0,
        )

    async def generate(self, case_id: str, step_name: str) -> GeneratedResult:
        """Render the step prompt and call the Messages API."""
        step_number = step_number_from_name(step_name)
        prompt = build_prompt(step_number, self._context_loader(case_id, step_number))

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=0,
                system=_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as exc:
            logger.warning("Anthropic rate limit for case %s %s", case_id, step_name)
            raise RateLimitedError(f"Anthropic rate limit exceeded for {step_name}") from exc
        except anthropic.APIStatusError as exc:
            raise FatalGenerationError(
                f"Anthropic API error {exc.status_code} for {step_name}"
            ) from exc
        except anthropic.APIError as exc:
            raise FatalGenerationError(
                f"Anthropic request failed for {step_name}: {type(exc).__name__}"
            ) from exc

        text = "".join(
            str(block.text) for block in response.content if getattr(block, "type", "") == "text"
        )
        if not text:
            raise FatalGenerationError(f"Anthropic returned no content for {step_name}")

        tokens = response.usage.input_tokens + response.usage.output_tokens
        return GeneratedResult(content=text, usage=GenerationUsage(tokens=tokens))
