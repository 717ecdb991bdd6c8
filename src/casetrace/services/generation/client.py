"""Provider-agnostic generation client interface and error classification.

GenerationClient: Protocol the orchestrator calls once per step attempt.
RateLimitedError / FatalGenerationError: the only two failure classes a
client may raise. The orchestrator retries on the first and halts on the
second; it never inspects error message text.

Backend selection via environment:
- CASETRACE_GENERATION_BACKEND: deterministic (default) | gemini | anthropic
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from casetrace.services.generation.prompts import StepContextLoader

logger = logging.getLogger(__name__)

GENERATION_BACKEND_ENV = "CASETRACE_GENERATION_BACKEND"
GENERATION_TIMEOUT_ENV = "CASETRACE_GENERATION_TIMEOUT_SECONDS"
DEFAULT_TIMEOUT_SECONDS = 120.0


class GenerationError(Exception):
    """Base class for classified generation failures."""


class RateLimitedError(GenerationError):
    """The provider rejected the call for quota/rate reasons. Retryable.

    Attributes:
        retry_after_seconds: Provider-suggested wait, when supplied.
    """

    def __init__(self, message: str, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class FatalGenerationError(GenerationError):
    """Any non-rate-limit failure. Not retried."""


def is_retryable_generation_error(exc: BaseException) -> bool:
    """Classifier used with the backoff executor."""
    return isinstance(exc, RateLimitedError)


@dataclass(frozen=True)
class GenerationUsage:
    """Usage metadata reported by the provider."""

    tokens: int = 0


@dataclass(frozen=True)
class GeneratedResult:
    """Content plus usage for one successful generation call."""

    content: str
    usage: GenerationUsage = field(default_factory=GenerationUsage)


@runtime_checkable
class GenerationClient(Protocol):
    """Adapter to the external generative AI service."""

    async def generate(self, case_id: str, step_name: str) -> GeneratedResult:
        """Generate the output of ``step_name`` for a case.

        Args:
            case_id: Case being analyzed.
            step_name: ``step1`` .. ``step6``.

        Returns:
            GeneratedResult with raw content and token usage.

        Raises:
            RateLimitedError: On a provider rate limit.
            FatalGenerationError: On any other failure.
        """
        ...


def get_timeout_seconds() -> float:
    """Per-call timeout from CASETRACE_GENERATION_TIMEOUT_SECONDS."""
    raw = os.environ.get(GENERATION_TIMEOUT_ENV, "")
    return float(raw) if raw.strip() else DEFAULT_TIMEOUT_SECONDS


def build_generation_client(
    context_loader: StepContextLoader | None = None,
) -> GenerationClient:
    """Build the generation client selected by CASETRACE_GENERATION_BACKEND.

    Fail-closed: a provider backend without its API key raises instead of
    silently falling back to the deterministic client.

    Args:
        context_loader: Supplies prompt context for provider backends.
            Defaults to a loader reading the configured repositories.

    Returns:
        A GenerationClient implementation.

    Raises:
        ValueError: If the backend is unknown or its API key is missing.
    """
    backend = os.environ.get(GENERATION_BACKEND_ENV, "deterministic").strip().lower()

    if backend == "deterministic":
        from casetrace.services.generation.deterministic import DeterministicGenerationClient

        return DeterministicGenerationClient()

    if backend not in ("gemini", "anthropic"):
        raise ValueError(
            f"Unknown {GENERATION_BACKEND_ENV} value {backend!r}; "
            "expected deterministic, gemini or anthropic"
        )

    loader: StepContextLoader
    if context_loader is None:
        from casetrace.services.generation.prompts import RepositoryContextLoader

        loader = RepositoryContextLoader()
    else:
        loader = context_loader

    if backend == "gemini":
        from casetrace.services.generation.gemini_client import GeminiGenerationClient

        return GeminiGenerationClient(context_loader=loader)

    from casetrace.services.generation.anthropic_client import AnthropicGenerationClient

    return AnthropicGenerationClient(context_loader=loader)

