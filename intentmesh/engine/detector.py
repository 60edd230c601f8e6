"""
DriftDetector — Checks one file against the intents that govern it

One detect_in_file() call walks:

    FETCH_INTENTS -> (none: done) -> BUILD_RANGES -> CLASSIFY_EACH_RANGE -> EMIT_EVENTS

Two modes:
- file mode: the file is split into ranges by its line-scoped links and
  each range is classified separately. Returned line numbers are relative
  to the range and are remapped: absolute = range_start + relative - 1.
- diff mode: the changed lines (with context) are sent once, already
  carrying absolute line numbers, which the classifier echoes back.

A classifier failure on one range is logged and counts as "no violations"
for that range; the other ranges still run.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, List, Optional

import xxhash

from ..core.attribution import AttributionIndex
from ..core.models import (
    DriftCheckRequest,
    DriftEvent,
    DriftRange,
    DriftStatus,
    DriftType,
    Intent,
    Violation,
)
from ..core.paths import absolute_path
from ..core.store import IntentStore
from ..services.classifier import ViolationClassifier
from .diff import extract_changed_code
from .linker import IntentLinker

logger = logging.getLogger(__name__)

PER_RANGE = "per_range"
PER_FILE = "per_file"

LANGUAGES = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".py": "python",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".php": "php",
}

# Events the user already dispositioned; a repeat of the same finding is not reported again
SUPPRESSING_STATUSES = (DriftStatus.ACKNOWLEDGED, DriftStatus.FALSE_POSITIVE)


def detect_language(file_uri: str) -> str:
    return LANGUAGES.get(PurePosixPath(file_uri).suffix.lower(), "text")


def fingerprint(file_uri: str, intent_ids: List[str], summary: str) -> str:
    """Stable identity of a finding across analysis runs."""
    normalized = " ".join(summary.lower().split())
    key = f"{file_uri}\x00{','.join(sorted(intent_ids))}\x00{normalized}"
    return xxhash.xxh64(key.encode("utf-8")).hexdigest()


@dataclass
class CodeRange:
    """An excerpt sent to the classifier in one call."""
    start_line: int
    end_line: int
    code: str
    intents: List[Intent] = field(default_factory=list)


@dataclass
class DetectionResult:
    drift_events: List[DriftEvent] = field(default_factory=list)
    intents_checked: int = 0


@dataclass
class AnalysisResult:
    drift_events: List[DriftEvent] = field(default_factory=list)
    intents_checked: int = 0
    duration_ms: float = 0.0


class DriftDetector:
    """Finds intent violations in a file or in a file's diff."""

    def __init__(
        self,
        store: IntentStore,
        linker: IntentLinker,
        classifier: ViolationClassifier,
        attribution: Optional[AttributionIndex] = None,
        grouping: str = PER_RANGE,
    ):
        if grouping not in (PER_RANGE, PER_FILE):
            raise ValueError(f"Unknown grouping policy: {grouping}")
        self.store = store
        self.linker = linker
        self.classifier = classifier
        self.attribution = attribution
        self.grouping = grouping

    # =========================================================================
    # Detection
    # =========================================================================

    def detect_in_file(self, file_uri: str, diff: Optional[str] = None) -> DetectionResult:
        """
        Detect violations in a file.

        A non-blank diff switches to diff mode; otherwise the whole file is
        read and checked range by range.
        """
        file_uri = self.store.canonical(file_uri)
        intents = self.linker.get_intents_for_file(file_uri)
        if not intents:
            return DetectionResult()

        if diff and diff.strip():
            return self.detect_in_diff(file_uri, diff, intents)

        path = absolute_path(file_uri, self.store.workspace_root)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read %s: %s", path, e)
            return DetectionResult()

        events: List[DriftEvent] = []
        for code_range in self.group_by_ranges(file_uri, content.split("\n"), intents):
            events.extend(self._classify(file_uri, code_range, absolute=False))
        return DetectionResult(drift_events=events, intents_checked=len(intents))

    def detect_in_diff(
        self,
        file_uri: str,
        diff: str,
        intents: Optional[List[Intent]] = None,
    ) -> DetectionResult:
        """
        Detect violations in the changed lines of a file.

        All applicable intents are checked in a single classifier call.
        An empty excerpt returns no events without calling the classifier.
        """
        file_uri = self.store.canonical(file_uri)
        if intents is None:
            intents = self.linker.get_intents_for_file(file_uri)
        if not intents:
            return DetectionResult()

        excerpt = extract_changed_code(diff)
        if not excerpt.strip():
            return DetectionResult(intents_checked=len(intents))

        whole = CodeRange(start_line=1, end_line=1, code=excerpt, intents=list(intents))
        events = self._classify(file_uri, whole, absolute=True)
        return DetectionResult(drift_events=events, intents_checked=len(intents))

    def group_by_ranges(self, file_uri: str, lines: List[str], intents: List[Intent]) -> List[CodeRange]:
        """
        Split a file into classifier calls.

        per_file, or no line-scoped links: one range, whole file, all intents.
        per_range: one range per distinct link start line (intents merged);
        intents linked to the file only as a whole get one extra whole-file range.
        """
        whole_file = CodeRange(start_line=1, end_line=max(len(lines), 1),
                               code="\n".join(lines), intents=list(intents))
        if self.grouping == PER_FILE:
            return [whole_file]

        scoped = [l for l in self.store.links_for_file(file_uri) if l.is_line_scoped]
        if not scoped:
            return [whole_file]

        by_id: Dict[str, Intent] = {i.id: i for i in intents}
        groups: Dict[int, CodeRange] = OrderedDict()
        covered = set()

        for link in scoped:
            intent = by_id.get(link.intent_id)
            if intent is None:
                continue
            if link.start_line < 1 or link.end_line < link.start_line:
                logger.warning("Skipping link %s with invalid range %s-%s",
                               link.id, link.start_line, link.end_line)
                continue
            if link.start_line > len(lines):
                logger.debug("Link %s starts past end of %s", link.id, file_uri)
                continue

            covered.add(intent.id)
            group = groups.get(link.start_line)
            if group is None:
                end = min(link.end_line, len(lines))
                groups[link.start_line] = CodeRange(
                    start_line=link.start_line,
                    end_line=end,
                    code="\n".join(lines[link.start_line - 1:end]),
                    intents=[intent],
                )
            elif all(i.id != intent.id for i in group.intents):
                group.intents.append(intent)

        ranges = list(groups.values())
        unscoped = [i for i in intents if i.id not in covered]
        if unscoped:
            ranges.append(CodeRange(start_line=1, end_line=whole_file.end_line,
                                    code=whole_file.code, intents=unscoped))
        return ranges

    def _classify(self, file_uri: str, code_range: CodeRange, absolute: bool) -> List[DriftEvent]:
        if not code_range.code.strip():
            return []

        request = DriftCheckRequest(
            intents=code_range.intents,
            code=code_range.code,
            file_path=file_uri,
            language=detect_language(file_uri),
            absolute_line_numbers=absolute,
        )
        try:
            analysis = self.classifier.detect_drift(request)
        except Exception:
            logger.warning("Classifier failed for %s (lines %d-%d)",
                           file_uri, code_range.start_line, code_range.end_line, exc_info=True)
            return []

        submitted = {i.id for i in code_range.intents}
        return [
            self._to_event(file_uri, violation, submitted, code_range.start_line, absolute)
            for violation in analysis.violations
        ]

    def _to_event(
        self,
        file_uri: str,
        violation: Violation,
        submitted: set,
        range_start: int,
        absolute: bool,
    ) -> DriftEvent:
        if absolute:
            start, end = violation.line_start, violation.line_end
        else:
            start = range_start + violation.line_start - 1
            end = range_start + violation.line_end - 1

        intent_ids = [violation.intent_id] if violation.intent_id in submitted else []
        attribution = self.attribution.first_overlap(file_uri, start, end) if self.attribution else None

        return DriftEvent(
            file_uri=file_uri,
            range=DriftRange(start_line=start, end_line=end),
            type=DriftType.INTENT_VIOLATION,
            severity=violation.severity,
            confidence=violation.confidence,
            intent_ids=intent_ids,
            summary=violation.summary,
            explanation=violation.explanation,
            suggested_fix=violation.suggested_fix,
            attribution=attribution,
            status=DriftStatus.OPEN,
            fingerprint=fingerprint(file_uri, intent_ids, violation.summary),
        )

    # =========================================================================
    # Analysis (detect + persist)
    # =========================================================================

    def analyze_file(self, file_uri: str, diff: Optional[str] = None) -> AnalysisResult:
        """
        Re-analyze a file and persist the outcome.

        Open events from earlier runs are replaced. Findings the user already
        dismissed or marked false positive are not reported again.
        """
        started = time.monotonic()
        file_uri = self.store.canonical(file_uri)
        self.store.clear_drift_events(file_uri, statuses=[DriftStatus.OPEN])

        result = self.detect_in_file(file_uri, diff)

        suppressed = {
            e.fingerprint
            for status in SUPPRESSING_STATUSES
            for e in self.store.drift_events(file_uri=file_uri, status=status)
            if e.fingerprint
        }
        fresh = [e for e in result.drift_events if e.fingerprint not in suppressed]
        if len(fresh) < len(result.drift_events):
            logger.info("Suppressed %d already dispositioned finding(s) in %s",
                        len(result.drift_events) - len(fresh), file_uri)

        saved = self.store.save_drift_events(fresh) if fresh else []
        return AnalysisResult(
            drift_events=saved,
            intents_checked=result.intents_checked,
            duration_ms=(time.monotonic() - started) * 1000,
        )
