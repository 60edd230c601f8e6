"""
IntentMesh — Analyze changes for drift, capture intents, resolve findings

The orchestrator owns no state of its own. Whether capture is allowed is
re-derived from the store on every call: capture is blocked while any
drift event is open.

    analyze_changes()   changed files -> drift detection -> capture candidates
    capture_intents()   conversations -> extractor -> intents (+ links)
    resolve_drift()     open/acknowledged event -> acknowledged/resolved/false_positive

Drift detection runs files in fixed-size batches: parallel inside a batch,
sequential across batches. Cancellation is observed only between steps and
between batches; a classifier call in flight is never interrupted.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .config import Config
from .core.attribution import AttributionIndex
from .core.errors import ConfigurationError, NotFoundError, OperationCancelled, PreconditionError
from .core.models import (
    Category,
    CreatedBy,
    DriftEvent,
    DriftStatus,
    Intent,
    IntentConstraint,
    IntentLink,
    IntentStatus,
    LinkType,
    LoadedConversation,
    SourceReference,
    SourceType,
    Strength,
    coerce_enum,
    utc_now,
)
from .core.notifications import Listener, NotificationBus, NotificationType
from .core.store import IntentStore
from .engine.detector import AnalysisResult, DetectionResult, DriftDetector
from .engine.linker import IntentLinker
from .services.classifier import LLMViolationClassifier, ViolationClassifier
from .services.conversations import ConversationLoader, JsonTranscriptProvider, TraceConversationLoader
from .services.extractor import IntentExtractor, LLMIntentExtractor
from .services.git import GitIntegration
from .services.providers import LLMProvider, get_provider

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
EXTRACTED_LINK_CONFIDENCE = 0.9
MANUAL_LINK_CONFIDENCE = 1.0


class ResolveAction(Enum):
    DISMISS = "dismiss"
    FALSE_POSITIVE = "false_positive"
    UPDATE_INTENT = "update_intent"


RESOLUTION_STATUS = {
    ResolveAction.DISMISS: DriftStatus.ACKNOWLEDGED,
    ResolveAction.FALSE_POSITIVE: DriftStatus.FALSE_POSITIVE,
    ResolveAction.UPDATE_INTENT: DriftStatus.RESOLVED,
}

# Fields update_intent() may replace, with their coercion from plain values
INTENT_FIELDS: Dict[str, Callable[[Any], Any]] = {
    "title": str,
    "statement": str,
    "tags": list,
    "category": lambda v: coerce_enum(Category, v, None),
    "strength": lambda v: coerce_enum(Strength, v, None),
    "status": lambda v: coerce_enum(IntentStatus, v, None),
    "sources": lambda v: [s if isinstance(s, SourceReference) else SourceReference.from_dict(s) for s in v],
    "constraints": lambda v: None if v is None else [
        c if isinstance(c, IntentConstraint) else IntentConstraint.from_dict(c) for c in v
    ],
}


@dataclass
class PendingConversation:
    """A conversation that could be captured once the code is drift-free."""
    id: str
    name: Optional[str]
    message_count: int
    project_path: Optional[str] = None


@dataclass
class AnalyzeResult:
    drifts: List[DriftEvent] = field(default_factory=list)
    can_capture: bool = True
    files_analyzed: int = 0
    intents_checked: int = 0
    pending_conversations: Optional[List[PendingConversation]] = None


@dataclass
class CaptureResult:
    intents_imported: int = 0
    links_created: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class StateSnapshot:
    intents: List[Intent]
    drifts: List[DriftEvent]
    links: List[IntentLink]


def _check_cancel(cancel: Optional[threading.Event], step: str):
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(step)


class IntentMesh:
    """Coordinates drift analysis, intent capture and drift resolution."""

    def __init__(
        self,
        store: IntentStore,
        linker: IntentLinker,
        detector: DriftDetector,
        vcs: Optional[GitIntegration] = None,
        loader: Optional[ConversationLoader] = None,
        extractor: Optional[IntentExtractor] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        use_diff: bool = True,
        diff_context: int = 3,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.store = store
        self.linker = linker
        self.detector = detector
        self.vcs = vcs
        self.loader = loader
        self.extractor = extractor
        self.batch_size = batch_size
        self.use_diff = use_diff
        self.diff_context = diff_context
        self.notifications = NotificationBus()

    @classmethod
    def from_config(
        cls,
        workspace_root: Path,
        config: Optional[Config] = None,
        provider: Optional[LLMProvider] = None,
        classifier: Optional[ViolationClassifier] = None,
        extractor: Optional[IntentExtractor] = None,
    ) -> 'IntentMesh':
        """
        Wire the default stack for a workspace.

        Missing collaborators are built from config: the configured LLM
        provider backs the classifier and extractor, git provides changes,
        agent traces and exported transcripts provide conversations.
        """
        workspace_root = Path(workspace_root)
        config = config or Config()
        error = config.validate()
        if error:
            raise ConfigurationError(error)
        if provider is None and (classifier is None or extractor is None):
            provider = get_provider(config)

        store = IntentStore(workspace_root)
        attribution = AttributionIndex(
            workspace_root,
            trace_patterns=config.sources.trace_patterns,
            traces_file=config.sources.traces_file,
        )
        transcripts = JsonTranscriptProvider(
            workspace_root / config.sources.transcripts_dir,
            project_path=str(workspace_root),
        )
        loader = TraceConversationLoader(attribution, transcripts)
        linker = IntentLinker(store, loader)
        detector = DriftDetector(
            store,
            linker,
            classifier or LLMViolationClassifier(provider),
            attribution=attribution,
            grouping=config.detection.grouping,
        )
        return cls(
            store=store,
            linker=linker,
            detector=detector,
            vcs=GitIntegration(workspace_root),
            loader=loader,
            extractor=extractor or LLMIntentExtractor(provider),
            batch_size=config.detection.batch_size,
            use_diff=config.detection.use_diff,
            diff_context=config.detection.diff_context,
        )

    # =========================================================================
    # Notifications
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.notifications.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        return self.notifications.unsubscribe(listener)

    def _intents_changed(self):
        self.notifications.emit(NotificationType.INTENTS_CHANGED, self.store.all_intents())

    # =========================================================================
    # Analysis
    # =========================================================================

    def can_capture(self) -> bool:
        """Capture is allowed only while no drift event is open."""
        return self.store.open_drift_count() == 0

    def _changed_files(self, since: Optional[str] = None) -> List[str]:
        if self.vcs is None:
            return []
        try:
            return self.vcs.get_changed_files(since=since)
        except Exception:
            logger.warning("Could not list changed files", exc_info=True)
            return []

    def analyze_changes(
        self,
        since: Optional[str] = None,
        files: Optional[Sequence[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> AnalyzeResult:
        """
        Analyze changed files for drift.

        Args:
            since: Revision to diff against (default HEAD)
            files: Explicit files; skips asking version control
            cancel: Set to stop at the next sequencing point

        Raises:
            OperationCancelled: if cancel was set
        """
        _check_cancel(cancel, "file list")
        targets = list(files) if files is not None else self._changed_files(since)

        if not targets:
            result = AnalyzeResult(can_capture=self.can_capture())
            self.notifications.emit(NotificationType.ANALYSIS_COMPLETE, result)
            return result

        _check_cancel(cancel, "drift detection")
        detection = self.detect_drift(targets, since=since, cancel=cancel)

        pending = None
        if not detection.drift_events:
            _check_cancel(cancel, "capture candidate lookup")
            pending = self._pending_conversations(targets)

        result = AnalyzeResult(
            drifts=detection.drift_events,
            can_capture=self.can_capture(),
            files_analyzed=len(targets),
            intents_checked=detection.intents_checked,
            pending_conversations=pending,
        )
        self.notifications.emit(NotificationType.ANALYSIS_COMPLETE, result)
        if result.drifts:
            self.notifications.emit(NotificationType.DRIFTS_DETECTED, result.drifts)
        return result

    def _pending_conversations(self, files: List[str]) -> List[PendingConversation]:
        if self.loader is None:
            return []
        try:
            conversations = self.loader.load_conversations_for_files(files)
        except Exception:
            logger.warning("Could not look up capture candidates", exc_info=True)
            return []
        return [
            PendingConversation(
                id=c.id,
                name=c.name,
                message_count=len(c.messages),
                project_path=c.project_path,
            )
            for c in conversations
        ]

    def detect_drift(
        self,
        files: Sequence[str],
        batch_size: Optional[int] = None,
        since: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> DetectionResult:
        """
        Analyze files in batches; parallel within a batch, sequential across.

        Events are ordered by batch, then file within the batch, then as the
        classifier returned them. A file whose analysis fails contributes nothing.
        """
        size = batch_size or self.batch_size
        files = list(files)
        combined = DetectionResult()

        for start in range(0, len(files), size):
            _check_cancel(cancel, f"batch {start // size + 1}")
            batch = files[start:start + size]

            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="intentmesh-detect") as pool:
                futures = [pool.submit(self._analyze_file, path, since) for path in batch]

            for path, future in zip(batch, futures):
                try:
                    result = future.result()
                except Exception:
                    logger.exception("Drift analysis failed for %s", path)
                    continue
                combined.drift_events.extend(result.drift_events)
                combined.intents_checked += result.intents_checked

        return combined

    def _analyze_file(self, path: str, since: Optional[str]) -> AnalysisResult:
        diff = None
        if self.use_diff and self.vcs is not None:
            try:
                diff = self.vcs.get_file_diff(path, since=since, context=self.diff_context)
            except Exception:
                logger.warning("Could not diff %s, checking the whole file", path, exc_info=True)
        return self.detector.analyze_file(path, diff)

    # =========================================================================
    # Capture
    # =========================================================================

    def capture_intents(
        self,
        conversation_ids: Optional[Sequence[str]] = None,
        auto_link: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> CaptureResult:
        """
        Extract intents from conversations that touched the changed files.

        Refused (zero imports, one error) while any drift event is open.
        Per-conversation failures are reported in errors; the rest proceed.
        """
        open_count = self.store.open_drift_count()
        if open_count:
            return CaptureResult(errors=[
                f"Cannot capture intents: {open_count} unresolved drift(s). Fix or dismiss them first."
            ])
        if self.loader is None:
            return CaptureResult(errors=["No conversation loader configured"])
        if self.extractor is None:
            return CaptureResult(errors=["No intent extractor configured"])

        _check_cancel(cancel, "capture candidate lookup")
        result = CaptureResult()
        try:
            conversations = self.loader.load_conversations_for_files(self._changed_files())
        except Exception as e:
            logger.warning("Could not load conversations", exc_info=True)
            result.errors.append(f"Failed to load conversations: {e}")
            conversations = []

        if conversation_ids is not None:
            wanted = set(conversation_ids)
            conversations = [c for c in conversations if c.id in wanted]

        for conversation in conversations:
            _check_cancel(cancel, f"conversation {conversation.id}")
            try:
                imported, linked = self._capture_conversation(conversation, auto_link)
            except Exception as e:
                logger.warning("Extraction failed for conversation %s", conversation.id, exc_info=True)
                result.errors.append(f"Failed to extract from {conversation.id}: {e}")
                continue
            result.intents_imported += imported
            result.links_created += linked

        self._intents_changed()
        return result

    def _capture_conversation(self, conversation: LoadedConversation, auto_link: bool):
        extracted = self.extractor.extract_intents(conversation.messages)
        imported = linked = 0
        for candidate in extracted:
            intent = self.store.save_intent(Intent(
                title=candidate.title,
                statement=candidate.statement,
                tags=list(candidate.tags),
                strength=Strength.STRONG,
                sources=[SourceReference(
                    source_id=conversation.id,
                    source_type=SourceType.CONVERSATION,
                    uri=f"conversation://{conversation.id}",
                    timestamp=utc_now(),
                    metadata={"evidence": candidate.evidence},
                )],
            ))
            imported += 1

            if auto_link and conversation.file_ranges:
                linked += len(self.linker.link_ranges(
                    intent.id,
                    conversation.file_ranges,
                    link_type=LinkType.EXTRACTED,
                    confidence=EXTRACTED_LINK_CONFIDENCE,
                ))
        return imported, linked

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_drift(
        self,
        event_id: str,
        action: Union[ResolveAction, str],
        new_statement: Optional[str] = None,
    ) -> DriftEvent:
        """
        Move a drift event to its terminal disposition.

        dismiss         -> acknowledged
        false_positive  -> false_positive
        update_intent   -> rewrite the first linked intent's statement, resolved

        Every check runs before anything is written.

        Raises:
            NotFoundError: unknown event, or its intent no longer exists
            PreconditionError: unknown action, missing statement, no linked intent,
                               or a backwards status transition
        """
        try:
            action = ResolveAction(action)
        except ValueError:
            valid = ", ".join(a.value for a in ResolveAction)
            raise PreconditionError(f"Unknown action '{action}'. Valid: {valid}")

        event = self.store.get_drift_event(event_id)
        if event is None:
            raise NotFoundError("Drift event", event_id)

        intent = None
        if action == ResolveAction.UPDATE_INTENT:
            if not new_statement or not new_statement.strip():
                raise PreconditionError("update_intent requires a new statement")
            if not event.intent_ids:
                raise PreconditionError(f"Drift event {event_id} is not linked to an intent")
            intent = self.store.get_intent(event.intent_ids[0])
            if intent is None:
                raise NotFoundError("Intent", event.intent_ids[0])

        updated = event.transition(RESOLUTION_STATUS[action])

        if intent is not None:
            self.store.save_intent(replace(intent, statement=new_statement.strip()))
        saved = self.store.save_drift_event(updated)
        if intent is not None:
            self._intents_changed()
        return saved

    # =========================================================================
    # Intent and link management
    # =========================================================================

    def create_intent(
        self,
        title: str,
        statement: str,
        tags: Optional[List[str]] = None,
        category: Category = Category.BEHAVIOR,
        strength: Strength = Strength.MEDIUM,
        sources: Optional[List[SourceReference]] = None,
    ) -> Intent:
        if not title.strip() or not statement.strip():
            raise PreconditionError("Intent needs a title and a statement")
        intent = self.store.save_intent(Intent(
            title=title.strip(),
            statement=statement.strip(),
            tags=list(tags or []),
            category=category,
            strength=strength,
            sources=list(sources or [SourceReference(source_id="user", source_type=SourceType.MANUAL)]),
        ))
        self._intents_changed()
        return intent

    def update_intent(self, intent_id: str, **updates) -> Intent:
        """
        Replace selected fields of an intent; updated_at is bumped.

        Raises:
            NotFoundError: unknown intent
            PreconditionError: unknown field or invalid value
        """
        intent = self.store.get_intent(intent_id)
        if intent is None:
            raise NotFoundError("Intent", intent_id)

        changes = {}
        for name, value in updates.items():
            if name not in INTENT_FIELDS:
                raise PreconditionError(f"Cannot update field '{name}'. Valid: {', '.join(INTENT_FIELDS)}")
            try:
                coerced = INTENT_FIELDS[name](value)
            except (KeyError, TypeError, ValueError) as e:
                raise PreconditionError(f"Invalid value for {name}: {e}")
            if coerced is None and name != "constraints":
                raise PreconditionError(f"Invalid value for {name}: {value!r}")
            changes[name] = coerced

        saved = self.store.save_intent(replace(intent, **changes))
        self._intents_changed()
        return saved

    def delete_intent(self, intent_id: str):
        """Delete an intent and its links; drift events drop its id."""
        if not self.store.delete_intent(intent_id):
            raise NotFoundError("Intent", intent_id)
        self._intents_changed()

    def link_intent_to_file(
        self,
        intent_id: str,
        file_uri: str,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
        symbol: Optional[str] = None,
    ) -> IntentLink:
        """User-asserted link: manual, full confidence."""
        if self.store.get_intent(intent_id) is None:
            raise NotFoundError("Intent", intent_id)
        if (start_line is None) != (end_line is None):
            raise PreconditionError("Give both start and end line, or neither")
        if start_line is not None and (start_line < 1 or end_line < start_line):
            raise PreconditionError(f"Invalid line range {start_line}-{end_line}")

        return self.store.save_link(IntentLink(
            intent_id=intent_id,
            file_uri=file_uri,
            start_line=start_line,
            end_line=end_line,
            symbol=symbol,
            link_type=LinkType.MANUAL,
            confidence=MANUAL_LINK_CONFIDENCE,
            created_by=CreatedBy.USER,
        ))

    # =========================================================================
    # Queries
    # =========================================================================

    def get_intents(self, file_uri: Optional[str] = None) -> List[Intent]:
        """All intents, or the active intents governing one file."""
        if file_uri:
            return self.linker.get_intents_for_file(file_uri)
        return self.store.all_intents()

    def get_drifts(self, file_uri: Optional[str] = None, status: Optional[DriftStatus] = None) -> List[DriftEvent]:
        return self.store.drift_events(file_uri=file_uri, status=status)

    def get_links_for_file(self, file_uri: str) -> List[IntentLink]:
        return self.store.links_for_file(file_uri)

    def get_state(self) -> StateSnapshot:
        return StateSnapshot(
            intents=self.store.all_intents(),
            drifts=self.store.drift_events(),
            links=self.store.all_links(),
        )
