"""
Conversation loading — Which conversations touched these files, and what was said

Two halves:
- correlation: the AttributionIndex knows which conversation ids authored
  which line ranges
- content: a TranscriptProvider returns the messages of a conversation id

TraceConversationLoader joins them. Transcripts are read from a directory of
exported chats, one file per conversation id:

    <dir>/<id>.json   {"title", "messages": [{"role", "content"}]}
                      {"conversation": [...]}            (same entries)
                      {"title", "mapping": {node: {"message": {...}}}}   (ChatGPT export)
    <dir>/<id>.md     "User: ...\\nAssistant: ..." turns
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.attribution import AttributionIndex
from ..core.models import ConversationMessage, FileRange, LoadedConversation

logger = logging.getLogger(__name__)

ROLE_ALIASES = {
    "user": "user",
    "human": "user",
    "assistant": "assistant",
    "ai": "assistant",
    "bot": "assistant",
    "gpt": "assistant",
    "claude": "assistant",
    "system": "system",
}

MARKDOWN_TURN = re.compile(r"^(User|Human|Assistant|AI|Bot|System|GPT|Claude):[ \t]*", re.IGNORECASE | re.MULTILINE)


def normalize_role(role: Any) -> str:
    """Map exporter-specific role names to user / assistant / system."""
    return ROLE_ALIASES.get(str(role or "").strip().lower(), "assistant")


def _content_text(content: Any) -> str:
    """Message content may be a string, a list of parts, or a {"parts": [...]} object."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        if "parts" in content:
            return _content_text(content["parts"])
        return str(content.get("text", ""))
    if isinstance(content, list):
        return "\n".join(t for t in (_content_text(p) for p in content) if t)
    return str(content)


def parse_json_transcript(data: Dict[str, Any]) -> Tuple[Optional[str], List[ConversationMessage]]:
    """
    Parse an exported chat.

    Returns:
        (conversation name or None, messages in order)

    Raises:
        ValueError: if the document is in no known format
    """
    if not isinstance(data, dict):
        raise ValueError("Transcript must be a JSON object")
    name = data.get("title") or data.get("name")

    entries = data.get("messages")
    if entries is None:
        entries = data.get("conversation")
    if isinstance(entries, list):
        messages = [
            ConversationMessage(role=normalize_role(e.get("role") or e.get("author")),
                                content=_content_text(e.get("content")))
            for e in entries if isinstance(e, dict)
        ]
        return name, [m for m in messages if m.content.strip()]

    mapping = data.get("mapping")
    if isinstance(mapping, dict):
        nodes = []
        for node in mapping.values():
            message = (node or {}).get("message") or {}
            text = _content_text(message.get("content"))
            if not text.strip():
                continue
            role = (message.get("author") or {}).get("role")
            nodes.append((message.get("create_time") or 0, ConversationMessage(normalize_role(role), text)))
        nodes.sort(key=lambda pair: pair[0])
        return name, [message for _, message in nodes]

    raise ValueError("Unknown transcript format")


def parse_markdown_transcript(text: str) -> List[ConversationMessage]:
    """Split "Role: text" turns; text before the first marker is ignored."""
    matches = list(MARKDOWN_TURN.finditer(text))
    messages = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        content = text[match.end():end].strip()
        if content:
            messages.append(ConversationMessage(normalize_role(match.group(1)), content))
    return messages


# =============================================================================
# Transcript providers
# =============================================================================

class TranscriptProvider(ABC):
    """Returns the content of a conversation by id."""

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Optional[LoadedConversation]:
        """None when the conversation is unknown."""


class JsonTranscriptProvider(TranscriptProvider):
    """Reads exported chats from a directory."""

    EXTENSIONS = (".json", ".md", ".markdown")

    def __init__(self, directory: Path, project_path: Optional[str] = None):
        self.directory = Path(directory)
        self.project_path = project_path

    def _find(self, conversation_id: str) -> Optional[Path]:
        if "/" in conversation_id or "\\" in conversation_id:
            return None
        for ext in self.EXTENSIONS:
            candidate = self.directory / f"{conversation_id}{ext}"
            if candidate.is_file():
                return candidate
        return None

    def conversation_ids(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted({p.stem for p in self.directory.iterdir() if p.suffix in self.EXTENSIONS})

    def get_conversation(self, conversation_id: str) -> Optional[LoadedConversation]:
        path = self._find(conversation_id)
        if path is None:
            return None

        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix == ".json":
                name, messages = parse_json_transcript(json.loads(text))
            else:
                name, messages = None, parse_markdown_transcript(text)
        except (OSError, ValueError) as e:
            logger.warning("Skipping malformed transcript %s: %s", path, e)
            return None

        return LoadedConversation(
            id=conversation_id,
            name=name or path.stem,
            messages=messages,
            project_path=self.project_path,
        )


# =============================================================================
# Conversation loaders
# =============================================================================

class ConversationLoader(ABC):
    """Conversations relevant to a set of files."""

    @abstractmethod
    def load_conversations_for_files(self, paths: Iterable[str]) -> List[LoadedConversation]:
        """Conversations that touched any of the paths, with their file ranges."""

    @abstractmethod
    def load_conversation_by_id(self, conversation_id: str) -> Optional[LoadedConversation]:
        """A single conversation, or None."""

    @abstractmethod
    def file_ranges_for_conversation(self, conversation_id: str) -> List[FileRange]:
        """Every file range a conversation touched."""


class TraceConversationLoader(ConversationLoader):
    """Correlates through agent traces, reads content from transcripts."""

    def __init__(self, index: AttributionIndex, transcripts: TranscriptProvider):
        self.index = index
        self.transcripts = transcripts

    def load_conversations_for_files(self, paths: Iterable[str]) -> List[LoadedConversation]:
        paths = list(paths)
        conversations = []
        for conversation_id, ranges in self.index.ranges_by_conversation(paths).items():
            conversation = self.load_conversation_by_id(conversation_id)
            if conversation is None:
                continue
            conversation.file_ranges = ranges
            conversations.append(conversation)
        logger.debug("Found %d conversations for %d files", len(conversations), len(paths))
        return conversations

    def load_conversation_by_id(self, conversation_id: str) -> Optional[LoadedConversation]:
        conversation = self.transcripts.get_conversation(conversation_id)
        if conversation is None:
            logger.debug("No transcript for conversation %s", conversation_id)
            return None
        if conversation.file_ranges is None:
            conversation.file_ranges = self.index.ranges_for_conversation(conversation_id)
        return conversation

    def file_ranges_for_conversation(self, conversation_id: str) -> List[FileRange]:
        return self.index.ranges_for_conversation(conversation_id)
