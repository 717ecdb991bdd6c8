"""Generation backends for the six analysis steps."""

from casetrace.services.generation.client import (
    FatalGenerationError,
    GeneratedResult,
    GenerationClient,
    GenerationError,
    GenerationUsage,
    RateLimitedError,
    build_generation_client,
    is_retryable_generation_error,
)
from casetrace.services.generation.deterministic import DeterministicGenerationClient

__all__ = [
    "DeterministicGenerationClient",
    "FatalGenerationError",
    "GeneratedResult",
    "GenerationClient",
    "GenerationError",
    "GenerationUsage",
    "RateLimitedError",
    "build_generation_client",
    "is_retryable_generation_error",
]
