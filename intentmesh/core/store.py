"""
IntentStore — Persistence and queries for intents, links and drift events

Three JSON documents under .intentmesh/, each a flat list under a named key
and stamped with a schema version:

    intent-graph.json   {"version": 1, "intents": [...]}
    links.json          {"version": 1, "links": [...]}
    drift-events.json   {"version": 1, "driftEvents": [...]}

The store owns identity and lifecycle of everything it persists.
Every mutation is written to disk before the call returns.

File references are canonicalized (see paths.canonical_path) on the way in
and on load, so queries by file are plain equality.
"""

import json
import logging
import os
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, TypeVar

from .models import (
    DriftEvent,
    DriftStatus,
    Intent,
    IntentLink,
    IntentStatus,
    Severity,
    utc_now,
)
from .paths import canonical_path

logger = logging.getLogger(__name__)

STORAGE_VERSION = 1
STORE_DIR = ".intentmesh"
INTENTS_FILE = "intent-graph.json"
LINKS_FILE = "links.json"
DRIFT_EVENTS_FILE = "drift-events.json"

T = TypeVar("T")


class IntentStore:
    """
    JSON-file store for the intent graph.

    In-memory dictionaries keep insertion order, which is the order records
    were first saved; queries return records in that order.
    """

    def __init__(self, workspace_root: Path, store_dir: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            workspace_root: Root used to canonicalize file references
            store_dir: Directory holding the JSON documents
                       (default: <workspace_root>/.intentmesh)
        """
        self.workspace_root = Path(workspace_root)
        self.store_dir = Path(store_dir) if store_dir else self.workspace_root / STORE_DIR
        self._lock = threading.RLock()
        self._intents: Dict[str, Intent] = {}
        self._links: Dict[str, IntentLink] = {}
        self._drift_events: Dict[str, DriftEvent] = {}
        self.load()

    @property
    def intents_path(self) -> Path:
        return self.store_dir / INTENTS_FILE

    @property
    def links_path(self) -> Path:
        return self.store_dir / LINKS_FILE

    @property
    def drift_events_path(self) -> Path:
        return self.store_dir / DRIFT_EVENTS_FILE

    def canonical(self, file_uri: str) -> str:
        return canonical_path(file_uri, self.workspace_root)

    # =========================================================================
    # Load / save
    # =========================================================================

    def load(self):
        """(Re)load all three documents from disk."""
        with self._lock:
            intents = self._read(self.intents_path, "intents", Intent.from_dict)
            links = self._read(self.links_path, "links", IntentLink.from_dict)
            events = self._read(self.drift_events_path, "driftEvents", DriftEvent.from_dict)

            self._intents = {i.id: i for i in intents}
            self._links = {l.id: l.with_file(self.canonical(l.file_uri)) for l in links}
            self._drift_events = {
                e.id: replace(e, file_uri=self.canonical(e.file_uri)) for e in events
            }

    def _read(self, path: Path, key: str, parse: Callable[[dict], T]) -> List[T]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable store document %s: %s", path, e)
            return []

        if not isinstance(data, dict):
            logger.warning("Ignoring malformed store document %s", path)
            return []
        version = data.get("version", STORAGE_VERSION)
        if version != STORAGE_VERSION:
            logger.warning("Store document %s has version %s, expected %s",
                           path, version, STORAGE_VERSION)

        records = []
        for raw in data.get(key, []):
            try:
                records.append(parse(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed record in %s: %s", path, e)
        return records

    def _write(self, path: Path, key: str, records: Iterable):
        self.store_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "version": STORAGE_VERSION,
            key: [r.to_dict() for r in records],
        }
        temp_path = path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(temp_path, path)

    def _save_intents(self):
        self._write(self.intents_path, "intents", self._intents.values())

    def _save_links(self):
        self._write(self.links_path, "links", self._links.values())

    def _save_drift_events(self):
        self._write(self.drift_events_path, "driftEvents", self._drift_events.values())

    # =========================================================================
    # Intents
    # =========================================================================

    def get_intent(self, intent_id: str) -> Optional[Intent]:
        with self._lock:
            return self._intents.get(intent_id)

    def all_intents(self) -> List[Intent]:
        with self._lock:
            return list(self._intents.values())

    def find_intents(
        self,
        status: Optional[IntentStatus] = None,
        tags: Optional[List[str]] = None,
        search: Optional[str] = None,
    ) -> List[Intent]:
        """
        Filter intents.

        Args:
            status: Keep only intents with this status
            tags: Keep intents carrying at least one of these tags
            search: Case-insensitive substring of title or statement
        """
        wanted_tags: Set[str] = set(tags or [])
        needle = search.lower() if search else None

        results = []
        for intent in self.all_intents():
            if status is not None and intent.status != status:
                continue
            if wanted_tags and not wanted_tags.intersection(intent.tags):
                continue
            if needle and needle not in intent.title.lower() and needle not in intent.statement.lower():
                continue
            results.append(intent)
        return results

    def save_intent(self, intent: Intent) -> Intent:
        """
        Insert or fully replace an intent.

        Replacing an existing record bumps updated_at.
        """
        with self._lock:
            if intent.id in self._intents:
                intent = replace(intent, updated_at=utc_now())
            self._intents[intent.id] = intent
            self._save_intents()
            return intent

    def delete_intent(self, intent_id: str) -> bool:
        """Delete an intent and its links. Drift events forget its id."""
        with self._lock:
            if intent_id not in self._intents:
                return False
            del self._intents[intent_id]
            self._save_intents()

            orphaned = [lid for lid, link in self._links.items() if link.intent_id == intent_id]
            if orphaned:
                for lid in orphaned:
                    del self._links[lid]
                self._save_links()

            referencing = [e for e in self._drift_events.values() if intent_id in e.intent_ids]
            if referencing:
                for event in referencing:
                    self._drift_events[event.id] = replace(
                        event, intent_ids=[i for i in event.intent_ids if i != intent_id])
                self._save_drift_events()
            return True

    # =========================================================================
    # Links
    # =========================================================================

    def get_link(self, link_id: str) -> Optional[IntentLink]:
        with self._lock:
            return self._links.get(link_id)

    def all_links(self) -> List[IntentLink]:
        with self._lock:
            return list(self._links.values())

    def links_for_intent(self, intent_id: str) -> List[IntentLink]:
        return [l for l in self.all_links() if l.intent_id == intent_id]

    def links_for_file(self, file_uri: str) -> List[IntentLink]:
        target = self.canonical(file_uri)
        return [l for l in self.all_links() if l.file_uri == target]

    def save_link(self, link: IntentLink) -> IntentLink:
        with self._lock:
            link = link.with_file(self.canonical(link.file_uri))
            self._links[link.id] = link
            self._save_links()
            return link

    def delete_link(self, link_id: str) -> bool:
        with self._lock:
            if link_id not in self._links:
                return False
            del self._links[link_id]
            self._save_links()
            return True

    # =========================================================================
    # Drift events
    # =========================================================================

    def get_drift_event(self, event_id: str) -> Optional[DriftEvent]:
        with self._lock:
            return self._drift_events.get(event_id)

    def drift_events(
        self,
        file_uri: Optional[str] = None,
        intent_id: Optional[str] = None,
        status: Optional[DriftStatus] = None,
        severity: Optional[Severity] = None,
    ) -> List[DriftEvent]:
        target = self.canonical(file_uri) if file_uri else None
        with self._lock:
            events = list(self._drift_events.values())
        return [
            e for e in events
            if (target is None or e.file_uri == target)
            and (intent_id is None or intent_id in e.intent_ids)
            and (status is None or e.status == status)
            and (severity is None or e.severity == severity)
        ]

    def save_drift_event(self, event: DriftEvent) -> DriftEvent:
        return self.save_drift_events([event])[0]

    def save_drift_events(self, events: List[DriftEvent]) -> List[DriftEvent]:
        """Insert or replace events, written in one pass."""
        with self._lock:
            saved = []
            for event in events:
                event = replace(event, file_uri=self.canonical(event.file_uri))
                self._drift_events[event.id] = event
                saved.append(event)
            self._save_drift_events()
            return saved

    def clear_drift_events(
        self,
        file_uri: Optional[str] = None,
        statuses: Optional[Iterable[DriftStatus]] = None,
    ) -> int:
        """
        Remove drift events, optionally limited to a file and/or statuses.

        Returns:
            Number of events removed
        """
        target = self.canonical(file_uri) if file_uri else None
        status_set = set(statuses) if statuses is not None else None
        with self._lock:
            doomed = [
                eid for eid, e in self._drift_events.items()
                if (target is None or e.file_uri == target)
                and (status_set is None or e.status in status_set)
            ]
            for eid in doomed:
                del self._drift_events[eid]
            if doomed:
                self._save_drift_events()
            return len(doomed)

    def open_drift_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._drift_events.values() if e.is_open)
