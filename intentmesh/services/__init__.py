"""
Services — External integration layer for IntentMesh

- Providers: LLM backends
- Classifier: LLM-backed violation classifier
- Extractor: LLM-backed intent extractor
- Conversations: transcript loading and trace correlation
- Git: changed files and diffs
"""

from .providers import LLMProvider, LLMResponse, MockProvider, get_provider
from .classifier import ViolationClassifier, LLMViolationClassifier
from .extractor import IntentExtractor, LLMIntentExtractor
from .conversations import (
    ConversationLoader, TraceConversationLoader,
    TranscriptProvider, JsonTranscriptProvider,
)
from .git import GitIntegration

__all__ = [
    # Providers
    "LLMProvider", "LLMResponse", "MockProvider", "get_provider",
    # Classifier
    "ViolationClassifier", "LLMViolationClassifier",
    # Extractor
    "IntentExtractor", "LLMIntentExtractor",
    # Conversations
    "ConversationLoader", "TraceConversationLoader",
    "TranscriptProvider", "JsonTranscriptProvider",
    # Git
    "GitIntegration",
]
