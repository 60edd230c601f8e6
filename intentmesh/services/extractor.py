"""
Intent extractors — Candidate intents from conversation transcripts

Capture is conversational; structuring is system-proposed.
An extractor reads the messages of one conversation and proposes
ExtractedIntent records backed by an evidence quote. It never persists
anything: the orchestrator decides what becomes an Intent.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from ..content.prompts import EXTRACT_INTENTS_SYSTEM_PROMPT, format_conversation_for_extraction
from ..core.models import ConversationMessage, ExtractedIntent, ExtractionConfidence, coerce_enum
from .llm_json import parse_json_object
from .providers import LLMProvider

logger = logging.getLogger(__name__)

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize(text: Any) -> str:
    """Strip control characters from model output before it is stored."""
    return CONTROL_CHARS.sub("", str(text or "")).strip()


class IntentExtractor(ABC):
    """Proposes intents from conversation messages."""

    @abstractmethod
    def extract_intents(self, messages: Sequence[ConversationMessage]) -> List[ExtractedIntent]:
        """Return candidate intents; an empty list when none are found."""


class LLMIntentExtractor(IntentExtractor):
    """Extractor backed by an LLM provider."""

    def __init__(self, provider: LLMProvider, max_tokens: int = 4096):
        self.provider = provider
        self.max_tokens = max_tokens

    def extract_intents(self, messages: Sequence[ConversationMessage]) -> List[ExtractedIntent]:
        if not any(m.role == "user" and m.content.strip() for m in messages):
            return []

        response = self.provider.complete(
            system=EXTRACT_INTENTS_SYSTEM_PROMPT,
            user=format_conversation_for_extraction(messages),
            max_tokens=self.max_tokens,
        )
        return self._parse_response(response.text)

    def _parse_response(self, text: str) -> List[ExtractedIntent]:
        try:
            data = parse_json_object(text)
        except ValueError as e:
            logger.warning("Unparseable extractor response: %s", e)
            return []

        intents = []
        for raw in data.get("intents") or []:
            intent = _to_extracted(raw)
            if intent is None:
                logger.warning("Skipping malformed extracted intent: %r", raw)
                continue
            intents.append(intent)
        return intents


def _to_extracted(raw: Any) -> Optional[ExtractedIntent]:
    if not isinstance(raw, dict):
        return None
    title = sanitize(raw.get("title"))
    statement = sanitize(raw.get("statement"))
    if not title or not statement:
        return None

    tags = raw.get("tags") or []
    if not isinstance(tags, list):
        tags = [tags]

    return ExtractedIntent(
        title=title,
        statement=statement,
        confidence=coerce_enum(ExtractionConfidence, raw.get("confidence"), ExtractionConfidence.MEDIUM),
        evidence=sanitize(raw.get("evidence")),
        tags=[sanitize(t) for t in tags if sanitize(t)],
    )
