"""Per-run fault injection for exercising failure, retry and resume paths.

A FaultPlan is handed to a single run through RunContext and owns its own
attempt counters, so concurrent runs never share injected state.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from casetrace.services.generation.client import FatalGenerationError, RateLimitedError


class InjectedFailureError(FatalGenerationError):
    """Fatal failure raised on purpose by a FaultPlan."""


@dataclass
class FaultPlan:
    """Faults to inject before generation attempts.

    Attributes:
        fail_step: Step that fails fatally on every attempt.
        rate_limited_attempts: Step number -> how many leading attempts
            raise RateLimitedError before the real call is allowed through.
    """

    fail_step: int | None = None
    rate_limited_attempts: dict[int, int] = field(default_factory=dict)
    _attempts: dict[int, int] = field(default_factory=dict, init=False, repr=False)

    def before_attempt(self, step_number: int) -> None:
        """Count an attempt and raise the configured fault, if any.

        Raises:
            InjectedFailureError: If step_number is the fail step.
            RateLimitedError: While the step's rate-limit budget lasts.
        """
        count = self._attempts.get(step_number, 0) + 1
        self._attempts[step_number] = count

        if self.fail_step == step_number:
            raise InjectedFailureError(f"Injected failure at step {step_number}")
        if count <= self.rate_limited_attempts.get(step_number, 0):
            raise RateLimitedError(
                f"Injected rate limit at step {step_number} (attempt {count})"
            )

    def attempts_for(self, step_number: int) -> int:
        """Attempts observed for a step so far."""
        return self._attempts.get(step_number, 0)
