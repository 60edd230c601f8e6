"""
Errors — Exceptions surfaced to callers of the mesh

Only two kinds of failure reach the caller as exceptions:
- not-found: a referenced intent or drift event does not exist
- precondition: the operation is not allowed in the current state

Collaborator failures (classifier, extractor, loader, git) and malformed
external data are absorbed where they happen and only logged.
"""

from typing import Optional


class IntentMeshError(Exception):
    """Base exception for all intentmesh errors."""


class NotFoundError(IntentMeshError):
    """Raised when a referenced intent, link or drift event is absent."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class PreconditionError(IntentMeshError):
    """Raised when an operation is rejected before any mutation."""


class InvalidTransitionError(PreconditionError):
    """Raised when a drift event would move backwards in its lifecycle."""


class OperationCancelled(IntentMeshError):
    """Raised at a sequencing point after the caller requested cancellation."""

    def __init__(self, step: Optional[str] = None):
        message = "Operation cancelled"
        if step:
            message = f"{message} before {step}"
        super().__init__(message)
        self.step = step


class ConfigurationError(IntentMeshError):
    """Raised when configuration is invalid."""
