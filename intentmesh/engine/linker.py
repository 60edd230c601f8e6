"""
IntentLinker — Intent <-> code location associations

Two directions:
- file -> intents: which active intents govern this file?
- intent -> code: which ranges did the conversations behind an intent touch?

The second direction correlates conversation ids found in an intent's
sources with the file ranges a conversation loader reports for them.
"""

import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Iterable, List, Optional

from ..core.attribution import extract_conversation_id
from ..core.models import CreatedBy, FileRange, Intent, IntentLink, LinkType
from ..core.store import IntentStore

if TYPE_CHECKING:
    from ..services.conversations import ConversationLoader

logger = logging.getLogger(__name__)

INFERRED_CONFIDENCE = 0.8


def conversation_ids_for(intent: Intent) -> List[str]:
    """Conversation ids referenced by an intent's conversation sources."""
    ids = OrderedDict()
    for source in intent.conversation_sources():
        conversation_id = extract_conversation_id(source.uri) or source.source_id
        if conversation_id:
            ids[conversation_id] = None
    return list(ids)


class IntentLinker:
    """Discovers and records which code an intent governs."""

    def __init__(self, store: IntentStore, loader: Optional['ConversationLoader'] = None):
        self.store = store
        self.loader = loader

    def get_intents_for_file(self, file_uri: str) -> List[Intent]:
        """
        Active intents linked to a file (whole-file or line-scoped).

        Returned in the order their first link to the file was created.
        """
        seen = OrderedDict()
        for link in self.store.links_for_file(file_uri):
            seen[link.intent_id] = None

        intents = []
        for intent_id in seen:
            intent = self.store.get_intent(intent_id)
            if intent is not None and intent.is_active:
                intents.append(intent)
        return intents

    def create_link(
        self,
        intent_id: str,
        file_uri: str,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
        rationale: Optional[str] = None,
    ) -> IntentLink:
        """Persist a system link; line-scoped links are "inferred", others "manual"."""
        link_type = LinkType.INFERRED if start_line is not None else LinkType.MANUAL
        link = IntentLink(
            intent_id=intent_id,
            file_uri=file_uri,
            start_line=start_line,
            end_line=end_line,
            link_type=link_type,
            confidence=INFERRED_CONFIDENCE,
            rationale=rationale,
            created_by=CreatedBy.SYSTEM,
        )
        return self.store.save_link(link)

    def link_ranges(
        self,
        intent_id: str,
        ranges: Iterable[FileRange],
        link_type: LinkType,
        confidence: float,
        rationale: Optional[str] = None,
        created_by: CreatedBy = CreatedBy.SYSTEM,
    ) -> List[IntentLink]:
        """One persisted link per file range."""
        links = []
        for rng in ranges:
            links.append(self.store.save_link(IntentLink(
                intent_id=intent_id,
                file_uri=rng.file_path,
                start_line=rng.start_line,
                end_line=rng.end_line,
                link_type=link_type,
                confidence=confidence,
                rationale=rationale,
                created_by=created_by,
            )))
        return links

    def link_intent_by_conversation(self, intent: Intent) -> List[IntentLink]:
        """
        Link an intent to every range touched by its source conversations.

        Best effort: a conversation whose ranges cannot be fetched is logged
        and skipped, links for the others are still created.
        """
        if self.loader is None:
            logger.debug("No conversation loader, cannot link intent %s", intent.id)
            return []

        links: List[IntentLink] = []
        for conversation_id in conversation_ids_for(intent):
            try:
                ranges = self.loader.file_ranges_for_conversation(conversation_id)
                links.extend(self.link_ranges(
                    intent.id,
                    ranges,
                    link_type=LinkType.INFERRED,
                    confidence=INFERRED_CONFIDENCE,
                    rationale=f"Auto-linked from conversation {conversation_id}",
                ))
            except Exception:
                logger.warning("Could not link intent %s via conversation %s",
                               intent.id, conversation_id, exc_info=True)
        return links

    def get_links_for_range(self, file_uri: str, start_line: int, end_line: int) -> List[IntentLink]:
        """Whole-file links plus line-scoped links overlapping [start_line, end_line]."""
        return [
            link for link in self.store.links_for_file(file_uri)
            if link.overlaps(start_line, end_line)
        ]
