"""
Violation classifiers — Does this code violate these intents?

The drift detector depends only on ViolationClassifier.detect_drift();
any implementation (LLM, rule engine, test stub) can be plugged in.

LLMViolationClassifier renders the intents and code into a prompt, asks the
configured provider for JSON and turns each well-formed entry into a
Violation. Malformed entries are dropped with a log line; provider errors
propagate to the detector, which treats them as "no violations".
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..content.prompts import drift_system_prompt, format_drift_check_input
from ..core.models import DriftAnalysis, DriftCheckRequest, Severity, Violation, coerce_enum
from .llm_json import parse_json_object
from .providers import LLMProvider

logger = logging.getLogger(__name__)


class ViolationClassifier(ABC):
    """Given intents and a code excerpt, report violations."""

    @abstractmethod
    def detect_drift(self, request: DriftCheckRequest) -> DriftAnalysis:
        """
        Check code against intents.

        Line numbers in the result are relative to request.code (1-indexed),
        unless request.absolute_line_numbers is set, in which case they are
        the numbers printed in the excerpt.
        """


class LLMViolationClassifier(ViolationClassifier):
    """Classifier backed by an LLM provider."""

    def __init__(self, provider: LLMProvider, max_tokens: int = 4096):
        self.provider = provider
        self.max_tokens = max_tokens

    def detect_drift(self, request: DriftCheckRequest) -> DriftAnalysis:
        if not request.intents or not request.code.strip():
            return DriftAnalysis()

        response = self.provider.complete(
            system=drift_system_prompt(request.absolute_line_numbers),
            user=format_drift_check_input(
                request.intents, request.code, request.file_path, request.language
            ),
            max_tokens=self.max_tokens,
        )
        logger.debug("Drift check for %s used %d tokens", request.file_path, response.total_tokens)
        return self._parse_response(response.text)

    def _parse_response(self, text: str) -> DriftAnalysis:
        try:
            data = parse_json_object(text)
        except ValueError as e:
            logger.warning("Unparseable classifier response: %s", e)
            return DriftAnalysis()

        analysis = DriftAnalysis()
        for raw in data.get("violations") or []:
            violation = _to_violation(raw)
            if violation is None:
                logger.warning("Skipping malformed violation: %r", raw)
                continue
            analysis.violations.append(violation)
        return analysis


def _to_violation(raw: Any) -> Optional[Violation]:
    if not isinstance(raw, dict):
        return None
    try:
        line_start = int(raw["lineStart"])
        line_end = int(raw.get("lineEnd", line_start))
        confidence = float(raw.get("confidence", 0.5))
    except (KeyError, TypeError, ValueError):
        return None
    if line_start < 1 or line_end < line_start:
        return None

    return Violation(
        intent_id=str(raw.get("intentId", "")),
        summary=str(raw.get("summary", "")).strip() or "Intent violation",
        explanation=str(raw.get("explanation", "")),
        line_start=line_start,
        line_end=line_end,
        severity=coerce_enum(Severity, raw.get("severity"), Severity.WARNING),
        confidence=min(max(confidence, 0.0), 1.0),
        suggested_fix=raw.get("suggestedFix") or None,
    )

