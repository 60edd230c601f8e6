"""
AttributionIndex — Which conversation or agent authored a line range

Built from agent-trace records found in the workspace:

1. .agent-trace/traces.jsonl, one record per line:
     {"id", "timestamp", "vcs": {"revision"},
      "files": [{"path", "conversations": [{"url", "contributor": {"type", "model_id"},
                                           "ranges": [{"start_line", "end_line", "content_hash"}]}]}],
      "metadata": {"conversation_id"}}
   Paths are relative to the workspace root.

2. Per-file JSON records (.agent-trace/**/*.json, *.agent-trace.json):
     {"file", "revision",
      "conversations": [{"url", "contributor": {"type", "model", "tool"},
                         "ranges": [{"start", "end", "hash"}], "timestamp"}]}
   Paths are relative to the trace file's directory.

The index is derived data: refresh() drops everything and rebuilds.
Malformed lines and files are skipped with a log line.
"""

import json
import logging
import re
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .models import AttributionSpan, Contributor, ContributorType, FileRange, parse_time, coerce_enum
from .paths import canonical_path

logger = logging.getLogger(__name__)

DEFAULT_TRACE_PATTERNS = ["**/.agent-trace/**/*.json", "**/*.agent-trace.json"]
DEFAULT_TRACES_FILE = ".agent-trace/traces.jsonl"
IGNORED_DIRS = {"node_modules", ".git"}

_CURSOR_URL = re.compile(r"cursor://composer/([a-f0-9-]+)", re.IGNORECASE)
_UUID = re.compile(r"([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})", re.IGNORECASE)
_API_URL = re.compile(r"conversations?/([a-f0-9-]+)", re.IGNORECASE)
_MESH_URI = re.compile(r"conversation://([^/?#\s]+)")


def extract_conversation_id(url: Optional[str], metadata: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Pull a conversation id out of a trace URL, falling back to record metadata.

    Recognized, in order:
        cursor://composer/<id>
        file://.../<uuid>...
        .../conversation(s)/<id>
        conversation://<id>
        metadata["conversation_id"]
    """
    if url:
        match = _CURSOR_URL.search(url)
        if match:
            return match.group(1)
        if url.startswith("file://"):
            match = _UUID.search(url)
            if match:
                return match.group(1)
        match = _API_URL.search(url)
        if match:
            return match.group(1)
        match = _MESH_URI.match(url)
        if match:
            return match.group(1)

    if metadata and metadata.get("conversation_id"):
        return str(metadata["conversation_id"])
    return None


class AttributionIndex:
    """
    Line-range attribution for workspace files.

    Loaded lazily on first query; all spans are keyed by canonical path.
    """

    def __init__(
        self,
        workspace_root: Path,
        trace_patterns: Optional[List[str]] = None,
        traces_file: str = DEFAULT_TRACES_FILE,
    ):
        self.workspace_root = Path(workspace_root)
        self.trace_patterns = list(trace_patterns) if trace_patterns is not None else list(DEFAULT_TRACE_PATTERNS)
        self.traces_path = self.workspace_root / traces_file
        self._spans: Dict[str, List[AttributionSpan]] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def _canonical(self, path: str) -> str:
        return canonical_path(path, self.workspace_root)

    # =========================================================================
    # Building
    # =========================================================================

    def refresh(self):
        """Drop every span and rebuild from the trace files on disk."""
        with self._lock:
            self._build()

    def _ensure_loaded(self):
        if self._loaded:
            return
        with self._lock:
            if not self._loaded:
                self._build()

    def _build(self):
        found = self._load_jsonl()
        for trace_file in self._find_trace_files():
            found.extend(self._load_trace_file(trace_file))

        spans: Dict[str, List[AttributionSpan]] = {}
        for span in found:
            spans.setdefault(span.file_uri, []).append(span)
        self._spans = spans
        self._loaded = True
        logger.debug("Attribution index built: %d spans over %d files", len(found), len(spans))

    def _find_trace_files(self) -> List[Path]:
        found: Dict[Path, None] = OrderedDict()
        for pattern in self.trace_patterns:
            for path in sorted(self.workspace_root.glob(pattern)):
                if IGNORED_DIRS.intersection(path.relative_to(self.workspace_root).parts):
                    continue
                if path.is_file():
                    found[path] = None
        return list(found)

    def _load_jsonl(self) -> List[AttributionSpan]:
        spans: List[AttributionSpan] = []
        if not self.traces_path.exists():
            return spans
        try:
            lines = self.traces_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning("Cannot read %s: %s", self.traces_path, e)
            return spans

        for number, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                spans.extend(self._process_record(json.loads(line)))
            except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed trace line %s:%d: %s", self.traces_path, number, e)
        return spans

    def _process_record(self, record: Dict[str, Any]) -> List[AttributionSpan]:
        spans = []
        revision = (record.get("vcs") or {}).get("revision")
        timestamp = parse_time(record.get("timestamp"))
        metadata = record.get("metadata") or {}

        for entry in record.get("files") or []:
            file_uri = self._canonical(entry["path"])
            for convo in entry.get("conversations") or []:
                url = convo.get("url")
                contributor = convo.get("contributor") or {}
                for rng in convo.get("ranges") or []:
                    range_contributor = rng.get("contributor") or contributor
                    spans.append(AttributionSpan(
                        file_uri=file_uri,
                        start_line=int(rng["start_line"]),
                        end_line=int(rng["end_line"]),
                        contributor=Contributor(
                            type=coerce_enum(ContributorType, range_contributor.get("type"), ContributorType.UNKNOWN),
                            model_id=range_contributor.get("model_id"),
                        ),
                        conversation_url=url,
                        conversation_id=extract_conversation_id(url, metadata),
                        timestamp=timestamp,
                        revision=revision,
                        content_hash=rng.get("content_hash"),
                    ))
        return spans

    def _load_trace_file(self, trace_file: Path) -> List[AttributionSpan]:
        spans: List[AttributionSpan] = []
        try:
            record = json.loads(trace_file.read_text(encoding="utf-8"))
            if not isinstance(record, dict) or not record.get("file") or not record.get("conversations"):
                logger.debug("Trace file %s has no file/conversations, skipping", trace_file)
                return spans

            target = Path(record["file"])
            if not target.is_absolute():
                target = trace_file.parent / target
            file_uri = self._canonical(str(target))

            for convo in record["conversations"]:
                raw = convo.get("contributor") or {}
                contributor = Contributor(
                    type=coerce_enum(ContributorType, raw.get("type"), ContributorType.UNKNOWN),
                    model_id=raw.get("model"),
                    tool_id=raw.get("tool"),
                )
                url = convo.get("url")
                for rng in convo.get("ranges") or []:
                    spans.append(AttributionSpan(
                        file_uri=file_uri,
                        start_line=int(rng["start"]),
                        end_line=int(rng["end"]),
                        contributor=contributor,
                        conversation_url=url,
                        conversation_id=extract_conversation_id(url, convo.get("metadata")),
                        timestamp=parse_time(convo.get("timestamp")),
                        revision=record.get("revision"),
                        content_hash=rng.get("hash"),
                    ))
        except (OSError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed trace file %s: %s", trace_file, e)
            return []
        return spans

    # =========================================================================
    # Queries
    # =========================================================================

    def file_attribution(self, file_uri: str) -> List[AttributionSpan]:
        self._ensure_loaded()
        return list(self._spans.get(self._canonical(file_uri), []))

    def range_attribution(self, file_uri: str, start_line: int, end_line: int) -> List[AttributionSpan]:
        """Spans overlapping [start_line, end_line] (inclusive)."""
        return [s for s in self.file_attribution(file_uri) if s.overlaps(start_line, end_line)]

    def first_overlap(self, file_uri: str, start_line: int, end_line: int) -> Optional[AttributionSpan]:
        spans = self.range_attribution(file_uri, start_line, end_line)
        return spans[0] if spans else None

    def conversation_ids_for_file(self, file_uri: str) -> List[str]:
        ids: Dict[str, None] = OrderedDict()
        for span in self.file_attribution(file_uri):
            if span.conversation_id:
                ids[span.conversation_id] = None
        return list(ids)

    def ranges_for_conversation(self, conversation_id: str) -> List[FileRange]:
        self._ensure_loaded()
        return [
            FileRange(file_path=span.file_uri, start_line=span.start_line, end_line=span.end_line)
            for spans in self._spans.values()
            for span in spans
            if span.conversation_id == conversation_id
        ]

    def ranges_by_conversation(self, file_uris: Iterable[str]) -> Dict[str, List[FileRange]]:
        """
        Group the attributed ranges of the given files by conversation id.

        Conversations appear in first-seen order.
        """
        grouped: Dict[str, List[FileRange]] = OrderedDict()
        for file_uri in file_uris:
            for span in self.file_attribution(file_uri):
                if not span.conversation_id:
                    continue
                grouped.setdefault(span.conversation_id, []).append(
                    FileRange(file_path=span.file_uri, start_line=span.start_line, end_line=span.end_line)
                )
        return grouped

    def __len__(self) -> int:
        self._ensure_loaded()
        return sum(len(spans) for spans in self._spans.values())
