"""
Models — Intents, links, drift events and attribution spans

The data layer of the mesh. Every persisted entity is a dataclass with
to_dict/from_dict; on disk keys are camelCase so that existing
.intentmesh/ documents stay readable, in memory they are snake_case.

Lifecycle rules live next to the data they protect:
- Intent: replaced wholesale on save, deleted only by explicit user action
- IntentLink: immutable once created (delete only)
- DriftEvent: status moves forward only, never back to open
- AttributionSpan: derived, rebuilt wholesale by the attribution index
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidTransitionError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Fresh identifier for a persisted entity."""
    return str(uuid.uuid4())


def format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_time(value: Any) -> Optional[datetime]:
    """
    Parse an ISO timestamp as written by format_time (or by other tools).

    Accepts a trailing 'Z'. Naive timestamps are assumed UTC.
    Unparseable values yield None rather than failing the whole load.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Enumerations
# =============================================================================

class IntentStatus(Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    ARCHIVED = "archived"


class Strength(Enum):
    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


class Category(Enum):
    BEHAVIOR = "behavior"
    SECURITY = "security"
    ARCHITECTURE = "architecture"
    PERFORMANCE = "performance"
    COMPLIANCE = "compliance"


class SourceType(Enum):
    CONVERSATION = "conversation"
    SPECIFICATION = "specification"
    ARCHITECTURE = "architecture"
    CODE = "code"
    MANUAL = "manual"


class LinkType(Enum):
    EXTRACTED = "extracted"  # Auto-linked during capture
    INFERRED = "inferred"    # Derived from conversation/attribution correlation
    MANUAL = "manual"        # User or API supplied


class CreatedBy(Enum):
    SYSTEM = "system"
    USER = "user"


class DriftType(Enum):
    INTENT_VIOLATION = "intent_violation"
    ARCHITECTURE_DRIFT = "architecture_drift"
    ORPHAN_BEHAVIOR = "orphan_behavior"


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DriftStatus(Enum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class ContributorType(Enum):
    HUMAN = "human"
    AI = "ai"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class ExtractionConfidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def coerce_enum(enum_cls, value, default):
    """Coerce a stored string to an enum member, falling back to default."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return default


# Forward-only drift lifecycle. Re-applying the current status is a no-op.
ALLOWED_TRANSITIONS = {
    DriftStatus.OPEN: {DriftStatus.ACKNOWLEDGED, DriftStatus.RESOLVED, DriftStatus.FALSE_POSITIVE},
    DriftStatus.ACKNOWLEDGED: {DriftStatus.RESOLVED, DriftStatus.FALSE_POSITIVE},
    DriftStatus.RESOLVED: set(),
    DriftStatus.FALSE_POSITIVE: set(),
}


# =============================================================================
# Intents
# =============================================================================

@dataclass
class SourceReference:
    """Where an intent came from (conversation, spec document, user...)."""
    source_id: str
    source_type: SourceType
    uri: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sourceId": self.source_id,
            "sourceType": self.source_type.value,
        }
        if self.uri:
            data["uri"] = self.uri
        if self.timestamp:
            data["timestamp"] = format_time(self.timestamp)
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SourceReference':
        return cls(
            source_id=str(data.get("sourceId", "")),
            source_type=coerce_enum(SourceType, data.get("sourceType"), SourceType.MANUAL),
            uri=data.get("uri"),
            timestamp=parse_time(data.get("timestamp")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class IntentConstraint:
    type: str
    value: Any
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type, "value": self.value}
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IntentConstraint':
        return cls(
            type=str(data.get("type", "")),
            value=data.get("value"),
            description=data.get("description"),
        )


@dataclass
class Intent:
    """A normalized, evidence-backed requirement the code must satisfy."""
    title: str
    statement: str
    id: str = field(default_factory=new_id)
    tags: List[str] = field(default_factory=list)
    category: Category = Category.BEHAVIOR
    strength: Strength = Strength.MEDIUM
    status: IntentStatus = IntentStatus.ACTIVE
    sources: List[SourceReference] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    constraints: Optional[List[IntentConstraint]] = None

    @property
    def is_active(self) -> bool:
        return self.status == IntentStatus.ACTIVE

    def conversation_sources(self) -> List[SourceReference]:
        return [s for s in self.sources if s.source_type == SourceType.CONVERSATION]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "statement": self.statement,
            "tags": list(self.tags),
            "category": self.category.value,
            "strength": self.strength.value,
            "status": self.status.value,
            "sources": [s.to_dict() for s in self.sources],
            "createdAt": format_time(self.created_at),
            "updatedAt": format_time(self.updated_at),
        }
        if self.constraints is not None:
            data["constraints"] = [c.to_dict() for c in self.constraints]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Intent':
        constraints = data.get("constraints")
        created = parse_time(data.get("createdAt")) or utc_now()
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            statement=data.get("statement", ""),
            tags=list(data.get("tags") or []),
            category=coerce_enum(Category, data.get("category"), Category.BEHAVIOR),
            strength=coerce_enum(Strength, data.get("strength"), Strength.MEDIUM),
            status=coerce_enum(IntentStatus, data.get("status"), IntentStatus.ACTIVE),
            sources=[SourceReference.from_dict(s) for s in data.get("sources") or []],
            created_at=created,
            updated_at=parse_time(data.get("updatedAt")) or created,
            constraints=(
                [IntentConstraint.from_dict(c) for c in constraints]
                if constraints is not None else None
            ),
        )


@dataclass(frozen=True)
class IntentLink:
    """
    Association between an intent and a code location.

    No line range means the link covers the whole file.
    Frozen: links are never edited, only created and deleted.
    """
    intent_id: str
    file_uri: str
    id: str = field(default_factory=new_id)
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    symbol: Optional[str] = None
    link_type: LinkType = LinkType.MANUAL
    confidence: float = 1.0
    rationale: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    created_by: CreatedBy = CreatedBy.SYSTEM

    @property
    def is_line_scoped(self) -> bool:
        return self.start_line is not None and self.end_line is not None

    def overlaps(self, start_line: int, end_line: int) -> bool:
        """Whole-file links overlap everything."""
        if not self.is_line_scoped:
            return True
        return self.start_line <= end_line and self.end_line >= start_line

    def with_file(self, file_uri: str) -> 'IntentLink':
        return replace(self, file_uri=file_uri)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "intentId": self.intent_id,
            "fileUri": self.file_uri,
            "linkType": self.link_type.value,
            "confidence": self.confidence,
            "createdAt": format_time(self.created_at),
            "createdBy": self.created_by.value,
        }
        if self.start_line is not None:
            data["startLine"] = self.start_line
        if self.end_line is not None:
            data["endLine"] = self.end_line
        if self.symbol:
            data["symbol"] = self.symbol
        if self.rationale:
            data["rationale"] = self.rationale
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IntentLink':
        return cls(
            id=str(data["id"]),
            intent_id=str(data["intentId"]),
            file_uri=str(data["fileUri"]),
            start_line=data.get("startLine"),
            end_line=data.get("endLine"),
            symbol=data.get("symbol"),
            link_type=coerce_enum(LinkType, data.get("linkType"), LinkType.MANUAL),
            confidence=float(data.get("confidence", 1.0)),
            rationale=data.get("rationale"),
            created_at=parse_time(data.get("createdAt")) or utc_now(),
            created_by=coerce_enum(CreatedBy, data.get("createdBy"), CreatedBy.SYSTEM),
        )


# =============================================================================
# Attribution
# =============================================================================

@dataclass(frozen=True)
class Contributor:
    type: ContributorType = ContributorType.UNKNOWN
    model_id: Optional[str] = None
    tool_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value}
        if self.model_id:
            data["modelId"] = self.model_id
        if self.tool_id:
            data["toolId"] = self.tool_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Contributor':
        return cls(
            type=coerce_enum(ContributorType, data.get("type"), ContributorType.UNKNOWN),
            model_id=data.get("modelId") or data.get("model_id") or data.get("model"),
            tool_id=data.get("toolId") or data.get("tool"),
        )


@dataclass(frozen=True)
class AttributionSpan:
    """Who authored a line range of a file, and through which conversation."""
    file_uri: str
    start_line: int
    end_line: int
    contributor: Contributor = field(default_factory=Contributor)
    conversation_url: Optional[str] = None
    conversation_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    revision: Optional[str] = None
    content_hash: Optional[str] = None

    def overlaps(self, start_line: int, end_line: int) -> bool:
        return self.start_line <= end_line and self.end_line >= start_line

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "fileUri": self.file_uri,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "contributor": self.contributor.to_dict(),
        }
        optional = {
            "conversationUrl": self.conversation_url,
            "conversationId": self.conversation_id,
            "timestamp": format_time(self.timestamp),
            "revision": self.revision,
            "contentHash": self.content_hash,
        }
        data.update({k: v for k, v in optional.items() if v})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttributionSpan':
        return cls(
            file_uri=str(data["fileUri"]),
            start_line=int(data["startLine"]),
            end_line=int(data["endLine"]),
            contributor=Contributor.from_dict(data.get("contributor") or {}),
            conversation_url=data.get("conversationUrl"),
            conversation_id=data.get("conversationId"),
            timestamp=parse_time(data.get("timestamp")),
            revision=data.get("revision"),
            content_hash=data.get("contentHash"),
        )


# =============================================================================
# Drift
# =============================================================================

@dataclass(frozen=True)
class DriftRange:
    """Absolute, 1-indexed line range in the target file."""
    start_line: int
    end_line: int
    start_character: int = 0
    end_character: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "startLine": self.start_line,
            "startCharacter": self.start_character,
            "endLine": self.end_line,
            "endCharacter": self.end_character,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DriftRange':
        return cls(
            start_line=int(data.get("startLine", 1)),
            end_line=int(data.get("endLine", data.get("startLine", 1))),
            start_character=int(data.get("startCharacter", 0)),
            end_character=int(data.get("endCharacter", 0)),
        )


@dataclass
class DriftEvent:
    """A detected violation of one or more intents by current code."""
    file_uri: str
    range: DriftRange
    summary: str
    explanation: str = ""
    id: str = field(default_factory=new_id)
    type: DriftType = DriftType.INTENT_VIOLATION
    severity: Severity = Severity.WARNING
    confidence: float = 0.0
    intent_ids: List[str] = field(default_factory=list)
    suggested_fix: Optional[str] = None
    attribution: Optional[AttributionSpan] = None
    status: DriftStatus = DriftStatus.OPEN
    created_at: datetime = field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None
    fingerprint: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == DriftStatus.OPEN

    def can_transition(self, status: DriftStatus) -> bool:
        return status == self.status or status in ALLOWED_TRANSITIONS[self.status]

    def transition(self, status: DriftStatus, now: Optional[datetime] = None) -> 'DriftEvent':
        """
        Return a copy of the event moved to `status`.

        Raises:
            InvalidTransitionError: if the move would go backwards
        """
        if status == self.status:
            return self
        if not self.can_transition(status):
            raise InvalidTransitionError(
                f"Drift event {self.id} cannot move from "
                f"{self.status.value} to {status.value}"
            )
        resolved_at = self.resolved_at
        if status == DriftStatus.RESOLVED:
            resolved_at = now or utc_now()
        return replace(self, status=status, resolved_at=resolved_at)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "fileUri": self.file_uri,
            "range": self.range.to_dict(),
            "type": self.type.value,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "intentIds": list(self.intent_ids),
            "summary": self.summary,
            "explanation": self.explanation,
            "status": self.status.value,
            "createdAt": format_time(self.created_at),
        }
        if self.suggested_fix:
            data["suggestedFix"] = self.suggested_fix
        if self.attribution:
            data["attribution"] = self.attribution.to_dict()
        if self.resolved_at:
            data["resolvedAt"] = format_time(self.resolved_at)
        if self.fingerprint:
            data["fingerprint"] = self.fingerprint
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DriftEvent':
        attribution = data.get("attribution")
        return cls(
            id=str(data["id"]),
            file_uri=str(data["fileUri"]),
            range=DriftRange.from_dict(data.get("range") or {}),
            type=coerce_enum(DriftType, data.get("type"), DriftType.INTENT_VIOLATION),
            severity=coerce_enum(Severity, data.get("severity"), Severity.WARNING),
            confidence=float(data.get("confidence", 0.0)),
            intent_ids=list(data.get("intentIds") or []),
            summary=data.get("summary", ""),
            explanation=data.get("explanation", ""),
            suggested_fix=data.get("suggestedFix"),
            attribution=AttributionSpan.from_dict(attribution) if attribution else None,
            status=coerce_enum(DriftStatus, data.get("status"), DriftStatus.OPEN),
            created_at=parse_time(data.get("createdAt")) or utc_now(),
            resolved_at=parse_time(data.get("resolvedAt")),
            fingerprint=data.get("fingerprint"),
        )


# =============================================================================
# Collaborator contracts (conversations, extraction, classification)
# =============================================================================

@dataclass(frozen=True)
class ConversationMessage:
    role: str  # "user" | "assistant" | "system"
    content: str


@dataclass(frozen=True)
class FileRange:
    """A span of a file touched by a conversation."""
    file_path: str
    start_line: int
    end_line: int


@dataclass
class LoadedConversation:
    id: str
    messages: List[ConversationMessage] = field(default_factory=list)
    name: Optional[str] = None
    project_path: Optional[str] = None
    file_ranges: Optional[List[FileRange]] = None


@dataclass
class ExtractedIntent:
    """Candidate intent proposed by an extractor, not yet persisted."""
    title: str
    statement: str
    confidence: ExtractionConfidence = ExtractionConfidence.MEDIUM
    evidence: str = ""
    tags: List[str] = field(default_factory=list)


@dataclass
class Violation:
    """
    One violation reported by a classifier.

    line_start/line_end are relative to the submitted excerpt (1-indexed)
    unless the request said the excerpt carries absolute line numbers.
    """
    intent_id: str
    summary: str
    line_start: int
    line_end: int
    severity: Severity = Severity.WARNING
    explanation: str = ""
    confidence: float = 0.0
    suggested_fix: Optional[str] = None


@dataclass
class DriftAnalysis:
    violations: List[Violation] = field(default_factory=list)


@dataclass
class DriftCheckRequest:
    intents: List[Intent]
    code: str
    file_path: str
    language: str = "text"
    absolute_line_numbers: bool = False
