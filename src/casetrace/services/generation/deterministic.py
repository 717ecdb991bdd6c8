"""Deterministic generation client: canned step outputs, no network.

Used as the default backend for development and tests. Every call returns
valid JSON for the requested step and reports a fixed token count.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from casetrace.services.generation.client import GeneratedResult, GenerationUsage
from casetrace.services.generation.prompts import step_number_from_name

logger = logging.getLogger(__name__)

DETERMINISTIC_TOKENS_PER_CALL = 300

_CANNED_DATA: dict[int, dict[str, Any]] = {
    1: {
        "has_clear_decision": True,
        "decision_candidates": [
            {"decision_text": "Proceed with the proposed change", "type": "explicit"}
        ],
        "fragments": [
            {"quote": "We agreed to proceed", "classification": "evidence", "context": ""},
            {"quote": "Timeline may slip", "classification": "risk", "context": ""},
        ],
    },
    2: {
        "inferredDecision": "Adopt the proposed change",
        "decisionType": "other",
        "decisionOwnerCandidates": [{"name": "Decision owner", "confidence": 0.8}],
        "decisionCriteria": [{"criterion": "Expected benefit", "inferredFrom": "evidence"}],
        "confidence": {"score": 0.75, "reasons": ["Consistent evidence fragments"]},
    },
    3: {
        "businessContext": "Routine operational decision",
        "stakeholders": [{"name": "Team", "signal": "supportive"}],
        "organizationalFactors": ["Limited budget"],
    },
    4: {
        "expectedOutcomes": ["Change delivered on time"],
        "actualOutcomes": ["Change delivered with minor delay"],
        "successIndicators": ["Adoption"],
        "failureIndicators": ["Schedule slip"],
    },
    5: {
        "materializedRisks": [{"risk": "Timeline slip", "severity": "low"}],
        "unmaterializedRisks": [],
        "riskScore": 0.3,
    },
    6: {
        "narrative": "The team adopted the change and delivered it with a minor delay.",
        "lessons_learned": ["Plan schedule buffers for dependent work"],
        "recommendations": ["Track timeline risks explicitly at kickoff"],
    },
}


class DeterministicGenerationClient:
    """Returns canned JSON for each step with a fixed token count."""

    def __init__(self, tokens_per_call: int = DETERMINISTIC_TOKENS_PER_CALL) -> None:
        self._tokens = tokens_per_call

    async def generate(self, case_id: str, step_name: str) -> GeneratedResult:
        """Return the canned output for ``step_name``."""
        step_number = step_number_from_name(step_name)
        content = json.dumps(
            {
                "step": step_number,
                "status": "success",
                "data": _CANNED_DATA[step_number],
                "errors": [],
                "warnings": [],
            },
            sort_keys=True,
        )
        logger.debug("Deterministic generation for case %s %s", case_id, step_name)
        return GeneratedResult(content=content, usage=GenerationUsage(tokens=self._tokens))
