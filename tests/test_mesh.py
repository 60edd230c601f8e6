"""
Tests for IntentMesh — Orchestration of analysis, capture and resolution

These tests validate:
- analyze_changes: targets, capture candidates, notifications
- Batches: parallel inside a batch, sequential across, cancellation between
- capture_intents: blocked while drift is open, per-conversation isolation
- resolve_drift: dispositions, validation before mutation
- Intent and link management
"""

import threading

import pytest

from intentmesh.core.errors import (
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    OperationCancelled,
    PreconditionError,
)
from intentmesh.core.models import (
    CreatedBy,
    DriftStatus,
    ExtractedIntent,
    FileRange,
    IntentStatus,
    LinkType,
    SourceType,
    Strength,
)
from intentmesh.core.notifications import NotificationType
from intentmesh.mesh import EXTRACTED_LINK_CONFIDENCE, IntentMesh, ResolveAction
from tests.factories import violation


def drifting_file(factory, name: str, summary: str = "Violation"):
    """A linked file whose classifier call reports one violation."""
    intent = factory.add_intent(f"intent for {name}", "s")
    factory.write_numbered_file(name, 5)
    factory.link(intent, name)
    factory.classifier.respond(name, [violation(intent.id, 1, summary=summary)])
    return intent


def clean_file(factory, name: str):
    intent = factory.add_intent(f"intent for {name}", "s")
    factory.write_numbered_file(name, 5)
    factory.link(intent, name)
    return intent


# =============================================================================
# Analysis
# =============================================================================

class TestAnalyzeChanges:

    def test_no_changes(self, mesh_factory):
        mesh = mesh_factory.create_mesh()
        seen = []
        mesh.subscribe(seen.append)

        result = mesh.analyze_changes()

        assert result.drifts == []
        assert result.can_capture is True
        assert result.files_analyzed == 0
        assert [n.type for n in seen] == [NotificationType.ANALYSIS_COMPLETE]

    def test_no_changes_with_open_drift_cannot_capture(self, mesh_factory):
        mesh_factory.add_drift("old.ts")
        result = mesh_factory.create_mesh().analyze_changes()
        assert result.can_capture is False

    def test_drift_found(self, mesh_factory):
        drifting_file(mesh_factory, "a.ts")
        clean_file(mesh_factory, "b.ts")
        mesh_factory.vcs.changed_files = ["a.ts", "b.ts"]
        mesh = mesh_factory.create_mesh()
        seen = []
        mesh.subscribe(seen.append)

        result = mesh.analyze_changes()

        assert len(result.drifts) == 1
        assert result.can_capture is False
        assert result.files_analyzed == 2
        assert result.intents_checked == 2
        assert result.pending_conversations is None
        assert [n.type for n in seen] == [NotificationType.ANALYSIS_COMPLETE, NotificationType.DRIFTS_DETECTED]

    def test_clean_run_lists_capture_candidates(self, mesh_factory):
        clean_file(mesh_factory, "a.ts")
        mesh_factory.loader.add("c1", ["hello", "world"], name="Refund work")

        result = mesh_factory.create_mesh().analyze_changes(files=["a.ts"])

        assert result.can_capture is True
        assert [(p.id, p.name, p.message_count) for p in result.pending_conversations] == [("c1", "Refund work", 2)]
        assert mesh_factory.loader.file_calls == [["a.ts"]]

    def test_explicit_files_skip_vcs(self, mesh_factory):
        drifting_file(mesh_factory, "a.ts")
        mesh_factory.vcs.changed_files = ["other.ts"]
        result = mesh_factory.create_mesh().analyze_changes(files=["a.ts"])
        assert [d.file_uri for d in result.drifts] == ["a.ts"]

    def test_diff_mode_uses_vcs_diff(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        mesh_factory.link(intent, "a.ts")
        mesh_factory.vcs.diffs["a.ts"] = "@@ -1 +7 @@\n+changed\n"
        mesh_factory.classifier.respond("a.ts", [violation(intent.id, 7)])

        result = mesh_factory.create_mesh(use_diff=True).analyze_changes(files=["a.ts"])

        assert mesh_factory.vcs.diff_requests == ["a.ts"]
        assert mesh_factory.classifier.requests[0].code == "7: changed"
        assert result.drifts[0].range.start_line == 7

    def test_cancelled_before_start(self, mesh_factory):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            mesh_factory.create_mesh().analyze_changes(files=["a.ts"], cancel=cancel)
        assert mesh_factory.classifier.requests == []


class TestBatches:

    def test_parallel_within_batch_sequential_across(self, mesh_factory):
        mesh_factory.classifier.delay = 0.05
        files = [f"f{n}.ts" for n in range(6)]
        for name in files:
            clean_file(mesh_factory, name)

        mesh_factory.create_mesh(batch_size=3).detect_drift(files)

        assert len(mesh_factory.classifier.requests) == 6
        assert mesh_factory.classifier.max_active <= 3

    def test_events_ordered_by_file(self, mesh_factory):
        files = ["a.ts", "b.ts", "c.ts"]
        for name in files:
            drifting_file(mesh_factory, name)
        result = mesh_factory.create_mesh(batch_size=2).detect_drift(files)
        assert [e.file_uri for e in result.drift_events] == files

    def test_cancel_between_batches(self, mesh_factory):
        files = ["a.ts", "b.ts", "c.ts"]
        for name in files:
            clean_file(mesh_factory, name)
        cancel = threading.Event()

        def cancel_after_first(request):
            cancel.set()
            return []

        for name in files:
            mesh_factory.classifier.respond(name, cancel_after_first)

        with pytest.raises(OperationCancelled) as info:
            mesh_factory.create_mesh(batch_size=1).detect_drift(files, cancel=cancel)
        assert len(mesh_factory.classifier.requests) == 1
        assert "batch 2" in str(info.value)

    def test_failed_file_contributes_nothing(self, mesh_factory, monkeypatch):
        drifting_file(mesh_factory, "a.ts")
        drifting_file(mesh_factory, "b.ts")
        mesh = mesh_factory.create_mesh()
        original = mesh.detector.analyze_file

        def broken_for_a(path, diff=None):
            if path == "a.ts":
                raise OSError("disk gone")
            return original(path, diff)

        monkeypatch.setattr(mesh.detector, "analyze_file", broken_for_a)
        result = mesh.detect_drift(["a.ts", "b.ts"])
        assert [e.file_uri for e in result.drift_events] == ["b.ts"]

    def test_invalid_batch_size(self, mesh_factory):
        with pytest.raises(ValueError):
            mesh_factory.create_mesh(batch_size=0)


# =============================================================================
# Capture
# =============================================================================

class TestCaptureIntents:

    def test_blocked_while_drift_open(self, mesh_factory):
        mesh_factory.add_drift("a.ts")
        mesh_factory.add_drift("b.ts")
        mesh_factory.loader.add("c1", ["refunds are admin only"])
        mesh_factory.extractor.script("refunds are admin only", [ExtractedIntent("t", "s")])

        result = mesh_factory.create_mesh().capture_intents(conversation_ids=["c1"])

        assert result.intents_imported == 0
        assert result.errors == ["Cannot capture intents: 2 unresolved drift(s). Fix or dismiss them first."]
        assert mesh_factory.store.all_intents() == []
        assert mesh_factory.extractor.calls == []

    def test_dispositioned_drift_does_not_block(self, mesh_factory):
        mesh_factory.add_drift("a.ts", status=DriftStatus.ACKNOWLEDGED)
        assert mesh_factory.create_mesh().can_capture()

    def test_imports_and_links(self, mesh_factory):
        mesh_factory.loader.add("c1", ["Only admins may refund"], file_ranges=[
            FileRange("src/refund.ts", 40, 60),
        ])
        mesh_factory.extractor.script("Only admins may refund", [
            ExtractedIntent("Admin refunds", "Only admins may issue refunds",
                            evidence="Only admins may refund", tags=["payments"]),
        ])
        mesh = mesh_factory.create_mesh()
        seen = []
        mesh.subscribe(seen.append)

        result = mesh.capture_intents()

        assert (result.intents_imported, result.links_created, result.errors) == (1, 1, [])
        intent = mesh_factory.store.all_intents()[0]
        assert intent.strength == Strength.STRONG
        assert intent.tags == ["payments"]
        source = intent.sources[0]
        assert source.source_type == SourceType.CONVERSATION
        assert source.uri == "conversation://c1"
        assert source.metadata == {"evidence": "Only admins may refund"}

        link = mesh_factory.store.links_for_intent(intent.id)[0]
        assert link.link_type == LinkType.EXTRACTED
        assert link.confidence == EXTRACTED_LINK_CONFIDENCE
        assert (link.start_line, link.end_line) == (40, 60)
        assert [n.type for n in seen] == [NotificationType.INTENTS_CHANGED]

    def test_auto_link_off(self, mesh_factory):
        mesh_factory.loader.add("c1", ["m"], file_ranges=[FileRange("a.ts", 1, 2)])
        mesh_factory.extractor.script("m", [ExtractedIntent("t", "s")])
        result = mesh_factory.create_mesh().capture_intents(auto_link=False)
        assert (result.intents_imported, result.links_created) == (1, 0)

    def test_filter_by_conversation_id(self, mesh_factory):
        mesh_factory.loader.add("c1", ["one"])
        mesh_factory.loader.add("c2", ["two"])
        mesh_factory.extractor.script("one", [ExtractedIntent("first", "s")])
        mesh_factory.extractor.script("two", [ExtractedIntent("second", "s")])

        mesh_factory.create_mesh().capture_intents(conversation_ids=["c2"])
        assert [i.title for i in mesh_factory.store.all_intents()] == ["second"]

    def test_failing_conversation_reported(self, mesh_factory):
        mesh_factory.loader.add("bad", ["boom"])
        mesh_factory.loader.add("good", ["fine"])
        mesh_factory.extractor.script("boom", RuntimeError("rate limited"))
        mesh_factory.extractor.script("fine", [ExtractedIntent("t", "s")])

        result = mesh_factory.create_mesh().capture_intents()

        assert result.intents_imported == 1
        assert result.errors == ["Failed to extract from bad: rate limited"]

    def test_missing_collaborators(self, mesh_factory):
        mesh = mesh_factory.create_mesh()
        mesh.extractor = None
        assert mesh.capture_intents().errors == ["No intent extractor configured"]
        mesh.loader = None
        assert mesh.capture_intents().errors == ["No conversation loader configured"]

    def test_cancelled(self, mesh_factory):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            mesh_factory.create_mesh().capture_intents(cancel=cancel)


# =============================================================================
# Resolution
# =============================================================================

class TestResolveDrift:

    def test_dismiss(self, mesh_factory):
        event = mesh_factory.add_drift()
        resolved = mesh_factory.create_mesh().resolve_drift(event.id, "dismiss")
        assert resolved.status == DriftStatus.ACKNOWLEDGED
        assert mesh_factory.store.get_drift_event(event.id).status == DriftStatus.ACKNOWLEDGED

    def test_false_positive(self, mesh_factory):
        event = mesh_factory.add_drift()
        resolved = mesh_factory.create_mesh().resolve_drift(event.id, ResolveAction.FALSE_POSITIVE)
        assert resolved.status == DriftStatus.FALSE_POSITIVE

    def test_update_intent(self, mesh_factory):
        intent = mesh_factory.add_intent("Refunds", "Only admins may refund", id="X")
        event = mesh_factory.add_drift(intent_ids=["X"])
        mesh = mesh_factory.create_mesh()
        seen = []
        mesh.subscribe(seen.append)

        resolved = mesh.resolve_drift(event.id, "update_intent", "  Admins and support may refund ")

        assert mesh_factory.store.get_intent("X").statement == "Admins and support may refund"
        assert resolved.status == DriftStatus.RESOLVED
        assert resolved.resolved_at is not None
        assert [n.type for n in seen] == [NotificationType.INTENTS_CHANGED]

    def test_update_intent_without_statement_changes_nothing(self, mesh_factory):
        intent = mesh_factory.add_intent("Refunds", "Only admins may refund", id="X")
        event = mesh_factory.add_drift(intent_ids=["X"])

        with pytest.raises(PreconditionError):
            mesh_factory.create_mesh().resolve_drift(event.id, "update_intent")

        assert mesh_factory.store.get_intent("X").statement == intent.statement
        assert mesh_factory.store.get_drift_event(event.id).status == DriftStatus.OPEN

    def test_update_intent_with_missing_intent(self, mesh_factory):
        event = mesh_factory.add_drift(intent_ids=["gone"])
        with pytest.raises(NotFoundError):
            mesh_factory.create_mesh().resolve_drift(event.id, "update_intent", "new")
        assert mesh_factory.store.get_drift_event(event.id).is_open

    def test_update_intent_without_linked_intent(self, mesh_factory):
        event = mesh_factory.add_drift(intent_ids=[])
        with pytest.raises(PreconditionError):
            mesh_factory.create_mesh().resolve_drift(event.id, "update_intent", "new")

    def test_unknown_event(self, mesh_factory):
        with pytest.raises(NotFoundError) as info:
            mesh_factory.create_mesh().resolve_drift("nope", "dismiss")
        assert str(info.value) == "Drift event not found: nope"

    def test_unknown_action(self, mesh_factory):
        event = mesh_factory.add_drift()
        with pytest.raises(PreconditionError):
            mesh_factory.create_mesh().resolve_drift(event.id, "ignore")

    def test_cannot_reopen_terminal(self, mesh_factory):
        event = mesh_factory.add_drift(status=DriftStatus.FALSE_POSITIVE)
        with pytest.raises(InvalidTransitionError):
            mesh_factory.create_mesh().resolve_drift(event.id, "dismiss")

    def test_resolving_last_drift_unblocks_capture(self, mesh_factory):
        event = mesh_factory.add_drift()
        mesh = mesh_factory.create_mesh()
        assert not mesh.can_capture()
        mesh.resolve_drift(event.id, "dismiss")
        assert mesh.can_capture()


# =============================================================================
# Intent and link management
# =============================================================================

class TestManagement:

    def test_create_intent(self, mesh_factory):
        mesh = mesh_factory.create_mesh()
        seen = []
        mesh.subscribe(seen.append)
        intent = mesh.create_intent(" Admin refunds ", "Only admins", tags=["auth"])
        assert intent.title == "Admin refunds"
        assert intent.sources[0].source_type == SourceType.MANUAL
        assert seen[0].payload == [intent]

    def test_create_intent_requires_text(self, mesh_factory):
        with pytest.raises(PreconditionError):
            mesh_factory.create_mesh().create_intent("", "s")

    def test_update_intent_fields(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        updated = mesh_factory.create_mesh().update_intent(intent.id, status="archived", tags=["x"])
        assert updated.status == IntentStatus.ARCHIVED
        assert updated.tags == ["x"]

    def test_update_intent_rejects_unknown_field(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        with pytest.raises(PreconditionError):
            mesh_factory.create_mesh().update_intent(intent.id, id="new-id")
        with pytest.raises(PreconditionError):
            mesh_factory.create_mesh().update_intent(intent.id, strength="extreme")

    def test_update_and_delete_missing(self, mesh_factory):
        mesh = mesh_factory.create_mesh()
        with pytest.raises(NotFoundError):
            mesh.update_intent("missing", title="x")
        with pytest.raises(NotFoundError):
            mesh.delete_intent("missing")

    def test_delete_intent_removes_links(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        mesh_factory.link(intent, "a.ts")
        mesh = mesh_factory.create_mesh()
        mesh.delete_intent(intent.id)
        assert mesh.get_links_for_file("a.ts") == []

    def test_deleted_intent_cannot_be_updated_through_its_drift(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        event = mesh_factory.add_drift(intent_ids=[intent.id])
        mesh = mesh_factory.create_mesh()

        mesh.delete_intent(intent.id)

        assert mesh.get_drifts()[0].intent_ids == []
        with pytest.raises(PreconditionError):
            mesh.resolve_drift(event.id, "update_intent", new_statement="new")
        assert mesh.get_drifts()[0].status == DriftStatus.OPEN

    def test_link_intent_to_file(self, mesh_factory):
        intent = mesh_factory.add_intent("t", "s")
        link = mesh_factory.create_mesh().link_intent_to_file(intent.id, "a.ts", 3, 7)
        assert link.link_type == LinkType.MANUAL
        assert link.confidence == 1.0
        assert link.created_by == CreatedBy.USER

    @pytest.mark.parametrize("start,end", [(5, None), (0, 3), (7, 3)])
    def test_link_rejects_bad_range(self, mesh_factory, start, end):
        intent = mesh_factory.add_intent("t", "s")
        with pytest.raises(PreconditionError):
            mesh_factory.create_mesh().link_intent_to_file(intent.id, "a.ts", start, end)

    def test_link_unknown_intent(self, mesh_factory):
        with pytest.raises(NotFoundError):
            mesh_factory.create_mesh().link_intent_to_file("missing", "a.ts")

    def test_queries(self, mesh_factory):
        active = mesh_factory.add_intent("active", "s")
        archived = mesh_factory.add_intent("archived", "s", status=IntentStatus.ARCHIVED)
        mesh_factory.link(active, "a.ts")
        mesh_factory.link(archived, "a.ts")
        mesh_factory.add_drift("a.ts")
        mesh = mesh_factory.create_mesh()

        assert [i.title for i in mesh.get_intents("a.ts")] == ["active"]
        assert len(mesh.get_intents()) == 2
        assert len(mesh.get_drifts(status=DriftStatus.OPEN)) == 1
        state = mesh.get_state()
        assert (len(state.intents), len(state.drifts), len(state.links)) == (2, 1, 2)


class TestFromConfig:

    def test_wires_default_stack(self, tmp_path):
        mesh = IntentMesh.from_config(tmp_path)
        assert mesh.store.workspace_root == tmp_path
        assert mesh.batch_size == 5
        assert mesh.detector.grouping == "per_range"
        assert mesh.can_capture()

    def test_rejects_invalid_config(self, tmp_path):
        from intentmesh.config import Config

        config = Config()
        config.detection.grouping = "sideways"
        with pytest.raises(ConfigurationError, match="sideways"):
            IntentMesh.from_config(tmp_path, config)
