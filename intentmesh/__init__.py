"""
IntentMesh — Drift detection between code and the intent behind it

Intents are requirements stated in conversations with coding agents.
They are linked to the code those conversations produced; when that code
changes, it is checked against them. Capture of new intents is blocked
while any drift is unresolved.

Usage:
    intentmesh analyze
    intentmesh capture
    intentmesh resolve <id> dismiss
    intentmesh intents --file src/refund.ts
    intentmesh link <intent_id> src/refund.ts --start 40 --end 60
"""

__version__ = "0.1.0"

from .core import (
    Intent, IntentLink, DriftEvent, IntentStore,
    IntentMeshError, NotFoundError, PreconditionError, OperationCancelled,
)
from .config import Config, ConfigManager
from .mesh import IntentMesh, AnalyzeResult, CaptureResult, ResolveAction

__all__ = [
    "__version__",
    "Intent", "IntentLink", "DriftEvent", "IntentStore",
    "IntentMeshError", "NotFoundError", "PreconditionError", "OperationCancelled",
    "Config", "ConfigManager",
    "IntentMesh", "AnalyzeResult", "CaptureResult", "ResolveAction",
]
