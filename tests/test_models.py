"""
Tests for Models — Serialization and lifecycle rules of persisted entities

These tests validate:
- camelCase on-disk form and lossless reload
- Link range semantics (whole-file vs line-scoped)
- Forward-only drift status transitions
"""

from datetime import datetime, timezone

import pytest

from intentmesh.core.errors import InvalidTransitionError
from intentmesh.core.models import (
    ALLOWED_TRANSITIONS,
    AttributionSpan,
    Category,
    Contributor,
    ContributorType,
    DriftEvent,
    DriftRange,
    DriftStatus,
    Intent,
    IntentConstraint,
    IntentLink,
    LinkType,
    Severity,
    SourceReference,
    SourceType,
    Strength,
    coerce_enum,
    parse_time,
)


def make_event(status=DriftStatus.OPEN) -> DriftEvent:
    return DriftEvent(
        file_uri="src/refund.ts",
        range=DriftRange(start_line=44, end_line=46),
        summary="Support role can refund",
        status=status,
    )


# =============================================================================
# Time and enum helpers
# =============================================================================

class TestHelpers:

    def test_parse_time_accepts_z_suffix(self):
        parsed = parse_time("2024-05-01T10:00:00Z")
        assert parsed == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_time_assumes_utc_for_naive(self):
        assert parse_time("2024-05-01T10:00:00").tzinfo == timezone.utc

    def test_parse_time_garbage_is_none(self):
        assert parse_time("yesterday") is None
        assert parse_time(None) is None

    def test_coerce_enum_falls_back(self):
        assert coerce_enum(Severity, "error", Severity.INFO) == Severity.ERROR
        assert coerce_enum(Severity, "fatal", Severity.INFO) == Severity.INFO
        assert coerce_enum(Severity, Severity.WARNING, Severity.INFO) == Severity.WARNING


# =============================================================================
# Intent
# =============================================================================

class TestIntent:

    def test_defaults(self):
        intent = Intent(title="Admin refunds", statement="Only admins may refund")
        assert intent.is_active
        assert intent.strength == Strength.MEDIUM
        assert intent.category == Category.BEHAVIOR
        assert intent.id

    def test_to_dict_uses_camel_case(self):
        data = Intent(title="t", statement="s").to_dict()
        assert "createdAt" in data
        assert "updatedAt" in data
        assert "constraints" not in data

    def test_round_trip(self):
        intent = Intent(
            title="Admin refunds",
            statement="Only admins may refund",
            tags=["auth", "payments"],
            strength=Strength.STRONG,
            sources=[SourceReference(
                source_id="c1",
                source_type=SourceType.CONVERSATION,
                uri="conversation://c1",
                metadata={"evidence": "only admins"},
            )],
            constraints=[IntentConstraint(type="role", value="admin")],
        )
        restored = Intent.from_dict(intent.to_dict())
        assert restored == intent

    def test_conversation_sources(self):
        intent = Intent(title="t", statement="s", sources=[
            SourceReference(source_id="user", source_type=SourceType.MANUAL),
            SourceReference(source_id="c1", source_type=SourceType.CONVERSATION),
        ])
        assert [s.source_id for s in intent.conversation_sources()] == ["c1"]

    def test_unknown_enum_values_fall_back_on_load(self):
        data = Intent(title="t", statement="s").to_dict()
        data["strength"] = "overwhelming"
        assert Intent.from_dict(data).strength == Strength.MEDIUM


# =============================================================================
# IntentLink
# =============================================================================

class TestIntentLink:

    def test_whole_file_link_overlaps_everything(self):
        link = IntentLink(intent_id="i", file_uri="a.ts")
        assert not link.is_line_scoped
        assert link.overlaps(1000, 2000)

    def test_line_scoped_overlap_is_inclusive(self):
        link = IntentLink(intent_id="i", file_uri="a.ts", start_line=10, end_line=20)
        assert link.overlaps(20, 30)
        assert link.overlaps(1, 10)
        assert not link.overlaps(21, 30)

    def test_links_are_immutable(self):
        link = IntentLink(intent_id="i", file_uri="a.ts")
        with pytest.raises(Exception):
            link.file_uri = "b.ts"

    def test_round_trip_omits_missing_range(self):
        link = IntentLink(intent_id="i", file_uri="a.ts", link_type=LinkType.EXTRACTED, confidence=0.9)
        data = link.to_dict()
        assert "startLine" not in data
        assert IntentLink.from_dict(data) == link


# =============================================================================
# DriftEvent lifecycle
# =============================================================================

class TestDriftTransitions:

    def test_open_can_move_anywhere_forward(self):
        event = make_event()
        for status in ALLOWED_TRANSITIONS[DriftStatus.OPEN]:
            assert event.transition(status).status == status

    def test_never_back_to_open(self):
        event = make_event(DriftStatus.ACKNOWLEDGED)
        with pytest.raises(InvalidTransitionError):
            event.transition(DriftStatus.OPEN)

    def test_terminal_states_stay_terminal(self):
        with pytest.raises(InvalidTransitionError):
            make_event(DriftStatus.RESOLVED).transition(DriftStatus.FALSE_POSITIVE)
        with pytest.raises(InvalidTransitionError):
            make_event(DriftStatus.FALSE_POSITIVE).transition(DriftStatus.ACKNOWLEDGED)

    def test_same_status_is_noop(self):
        event = make_event(DriftStatus.ACKNOWLEDGED)
        assert event.transition(DriftStatus.ACKNOWLEDGED) is event

    def test_resolved_sets_resolved_at(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        resolved = make_event().transition(DriftStatus.RESOLVED, now=now)
        assert resolved.resolved_at == now

    def test_transition_returns_copy(self):
        event = make_event()
        event.transition(DriftStatus.ACKNOWLEDGED)
        assert event.status == DriftStatus.OPEN


class TestDriftEventSerialization:

    def test_round_trip_with_attribution(self):
        event = make_event()
        event.attribution = AttributionSpan(
            file_uri="src/refund.ts",
            start_line=40,
            end_line=50,
            contributor=Contributor(type=ContributorType.AI, model_id="gpt-4o"),
            conversation_id="c1",
        )
        event.fingerprint = "abc"
        restored = DriftEvent.from_dict(event.to_dict())
        assert restored == event

    def test_range_carries_characters(self):
        data = make_event().to_dict()["range"]
        assert data == {"startLine": 44, "startCharacter": 0, "endLine": 46, "endCharacter": 0}

    def test_unknown_status_loads_as_open(self):
        data = make_event().to_dict()
        data["status"] = "snoozed"
        assert DriftEvent.from_dict(data).status == DriftStatus.OPEN
