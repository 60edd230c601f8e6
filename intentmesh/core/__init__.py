"""
Core — Data layer for IntentMesh

- Models: intents, links, drift events, attribution spans
- Store: JSON persistence and queries under .intentmesh/
- Paths: canonical file references
- Attribution: agent-trace index of who wrote which lines
- Notifications: in-process observer registry
- Errors: exceptions surfaced to callers
"""

from .errors import (
    IntentMeshError, NotFoundError, PreconditionError,
    InvalidTransitionError, OperationCancelled, ConfigurationError,
)
from .models import (
    Intent, IntentConstraint, IntentLink, SourceReference,
    DriftEvent, DriftRange, AttributionSpan, Contributor,
    IntentStatus, Strength, Category, SourceType, LinkType, CreatedBy,
    DriftType, Severity, DriftStatus, ContributorType, ALLOWED_TRANSITIONS,
)
from .paths import canonical_path, absolute_path
from .store import IntentStore
from .attribution import AttributionIndex, extract_conversation_id
from .notifications import Notification, NotificationBus, NotificationType

__all__ = [
    # Errors
    "IntentMeshError", "NotFoundError", "PreconditionError",
    "InvalidTransitionError", "OperationCancelled", "ConfigurationError",
    # Models
    "Intent", "IntentConstraint", "IntentLink", "SourceReference",
    "DriftEvent", "DriftRange", "AttributionSpan", "Contributor",
    "IntentStatus", "Strength", "Category", "SourceType", "LinkType", "CreatedBy",
    "DriftType", "Severity", "DriftStatus", "ContributorType", "ALLOWED_TRANSITIONS",
    # Paths
    "canonical_path", "absolute_path",
    # Store
    "IntentStore",
    # Attribution
    "AttributionIndex", "extract_conversation_id",
    # Notifications
    "Notification", "NotificationBus", "NotificationType",
]
