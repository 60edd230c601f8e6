"""
Tests for IntentLinker — File <-> intent associations
"""

from intentmesh.core.models import (
    CreatedBy,
    FileRange,
    IntentStatus,
    LinkType,
    SourceReference,
    SourceType,
)
from intentmesh.engine.linker import INFERRED_CONFIDENCE, conversation_ids_for


class TestIntentsForFile:

    def test_active_only_in_first_link_order(self, mesh_factory):
        first = mesh_factory.add_intent("first", "s")
        second = mesh_factory.add_intent("second", "s")
        archived = mesh_factory.add_intent("archived", "s", status=IntentStatus.ARCHIVED)
        mesh_factory.link(second, "a.ts", 1, 2)
        mesh_factory.link(first, "a.ts")
        mesh_factory.link(second, "a.ts", 10, 12)
        mesh_factory.link(archived, "a.ts")

        intents = mesh_factory.linker.get_intents_for_file("a.ts")
        assert [i.title for i in intents] == ["second", "first"]

    def test_unlinked_file(self, mesh_factory):
        assert mesh_factory.linker.get_intents_for_file("nothing.ts") == []


class TestCreateLink:

    def test_line_scoped_is_inferred(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        link = mesh_factory.linker.create_link(intent.id, "a.ts", 3, 9, rationale="why")
        assert link.link_type == LinkType.INFERRED
        assert link.confidence == INFERRED_CONFIDENCE
        assert link.created_by == CreatedBy.SYSTEM
        assert mesh_factory.store.get_link(link.id) == link

    def test_whole_file_is_manual(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        link = mesh_factory.linker.create_link(intent.id, "a.ts")
        assert link.link_type == LinkType.MANUAL
        assert not link.is_line_scoped


class TestLinkByConversation:

    def test_conversation_ids_from_sources(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s", sources=[
            SourceReference(source_id="c1", source_type=SourceType.CONVERSATION, uri="conversation://c1"),
            SourceReference(source_id="c2", source_type=SourceType.CONVERSATION),
            SourceReference(source_id="doc", source_type=SourceType.SPECIFICATION),
        ])
        assert conversation_ids_for(intent) == ["c1", "c2"]

    def test_links_every_touched_range(self, mesh_factory):
        mesh_factory.loader.add("c1", ["only admins"], file_ranges=[
            FileRange("src/refund.ts", 40, 60),
            FileRange("src/audit.ts", 1, 5),
        ])
        intent = mesh_factory.add_intent("t", "s", conversation_id="c1")

        links = mesh_factory.linker.link_intent_by_conversation(intent)
        assert [(l.file_uri, l.start_line, l.end_line) for l in links] == [
            ("src/refund.ts", 40, 60),
            ("src/audit.ts", 1, 5),
        ]
        assert all(l.link_type == LinkType.INFERRED for l in links)
        assert links[0].rationale == "Auto-linked from conversation c1"

    def test_failing_conversation_skipped(self, mesh_factory, monkeypatch):
        mesh_factory.loader.add("good", ["x"], file_ranges=[FileRange("a.ts", 1, 2)])
        intent = mesh_factory.add_intent("t", "s", sources=[
            SourceReference(source_id="bad", source_type=SourceType.CONVERSATION),
            SourceReference(source_id="good", source_type=SourceType.CONVERSATION),
        ])
        original = mesh_factory.loader.file_ranges_for_conversation

        def flaky(conversation_id):
            if conversation_id == "bad":
                raise OSError("transcript gone")
            return original(conversation_id)

        monkeypatch.setattr(mesh_factory.loader, "file_ranges_for_conversation", flaky)
        links = mesh_factory.linker.link_intent_by_conversation(intent)
        assert [l.file_uri for l in links] == ["a.ts"]

    def test_no_loader(self, mesh_factory):
        mesh_factory.linker.loader = None
        intent = mesh_factory.add_intent("t", "s", conversation_id="c1")
        assert mesh_factory.linker.link_intent_by_conversation(intent) == []


class TestLinksForRange:

    def test_overlap_and_whole_file(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        whole = mesh_factory.link(intent, "a.ts")
        inside = mesh_factory.link(intent, "a.ts", 10, 20)
        mesh_factory.link(intent, "a.ts", 30, 40)

        assert mesh_factory.linker.get_links_for_range("a.ts", 15, 25) == [whole, inside]
