"""
Tests for AttributionIndex — Agent-trace line attribution

These tests validate:
- Both trace formats (traces.jsonl and per-file JSON)
- Conversation id extraction from trace URLs
- Range queries and grouping by conversation
- Malformed input is skipped, not fatal
"""

import json
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from intentmesh.core.attribution import AttributionIndex, extract_conversation_id
from intentmesh.core.models import ContributorType, FileRange

CONVO = "3f2a1b4c-1111-2222-3333-444455556666"


def write_jsonl(root, records):
    path = root / ".agent-trace" / "traces.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(r if isinstance(r, str) else json.dumps(r) for r in records))
    return path


def jsonl_record(path, conversation_url, ranges, metadata=None):
    return {
        "id": "t1",
        "timestamp": "2024-05-01T10:00:00Z",
        "vcs": {"revision": "abc123"},
        "files": [{
            "path": path,
            "conversations": [{
                "url": conversation_url,
                "contributor": {"type": "ai", "model_id": "gpt-4o"},
                "ranges": [{"start_line": s, "end_line": e} for s, e in ranges],
            }],
        }],
        "metadata": metadata or {},
    }


@pytest.fixture
def index(tmp_path):
    write_jsonl(tmp_path, [
        jsonl_record("src/refund.ts", f"cursor://composer/{CONVO}", [(40, 60)]),
        jsonl_record("src/auth.ts", "https://chat.example.com/conversation/abc-123", [(1, 10), (20, 25)]),
    ])
    return AttributionIndex(tmp_path)


class TestExtractConversationId:

    def test_cursor_url(self):
        assert extract_conversation_id(f"cursor://composer/{CONVO}") == CONVO

    def test_file_url_with_uuid(self):
        assert extract_conversation_id(f"file:///home/me/.claude/projects/x/{CONVO}.jsonl") == CONVO

    def test_api_url(self):
        assert extract_conversation_id("https://api.example.com/v1/conversations/deadbeef") == "deadbeef"

    def test_mesh_uri(self):
        assert extract_conversation_id("conversation://chat-42") == "chat-42"

    def test_metadata_fallback(self):
        assert extract_conversation_id("https://example.com/x", {"conversation_id": "m1"}) == "m1"
        assert extract_conversation_id(None, {"conversation_id": "m1"}) == "m1"

    def test_nothing_recognizable(self):
        assert extract_conversation_id("https://example.com/x") is None


class TestJsonlTraces:

    def test_file_attribution(self, index):
        spans = index.file_attribution("src/refund.ts")
        assert len(spans) == 1
        span = spans[0]
        assert (span.start_line, span.end_line) == (40, 60)
        assert span.conversation_id == CONVO
        assert span.contributor.type == ContributorType.AI
        assert span.contributor.model_id == "gpt-4o"
        assert span.revision == "abc123"

    def test_any_path_form_matches(self, index, tmp_path):
        assert len(index.file_attribution(str(tmp_path / "src" / "refund.ts"))) == 1

    def test_range_attribution(self, index):
        assert len(index.range_attribution("src/auth.ts", 5, 22)) == 2
        assert len(index.range_attribution("src/auth.ts", 11, 19)) == 0
        assert index.first_overlap("src/auth.ts", 25, 30).start_line == 20

    def test_conversation_queries(self, index):
        assert index.conversation_ids_for_file("src/auth.ts") == ["abc-123"]
        assert index.ranges_for_conversation("abc-123") == [
            FileRange("src/auth.ts", 1, 10),
            FileRange("src/auth.ts", 20, 25),
        ]

    def test_ranges_by_conversation_first_seen_order(self, index):
        grouped = index.ranges_by_conversation(["src/auth.ts", "src/refund.ts"])
        assert list(grouped) == ["abc-123", CONVO]

    def test_malformed_lines_skipped(self, tmp_path):
        write_jsonl(tmp_path, [
            "{broken",
            json.dumps({"files": [{"path": "a.ts", "conversations": [{"ranges": [{"start_line": 1}]}]}]}),
            jsonl_record("b.ts", None, [(3, 4)], metadata={"conversation_id": "m1"}),
        ])
        index = AttributionIndex(tmp_path)
        assert len(index) == 1
        assert index.file_attribution("b.ts")[0].conversation_id == "m1"

    def test_refresh_rebuilds(self, tmp_path):
        write_jsonl(tmp_path, [jsonl_record("a.ts", "conversation://c1", [(1, 2)])])
        index = AttributionIndex(tmp_path)
        assert len(index) == 1
        write_jsonl(tmp_path, [])
        index.refresh()
        assert len(index) == 0

    def test_concurrent_first_queries_build_once(self, tmp_path, monkeypatch):
        write_jsonl(tmp_path, [jsonl_record("a.ts", "conversation://c1", [(1, 2)])])
        index = AttributionIndex(tmp_path)

        builds = []
        load = index._load_jsonl

        def slow_load():
            builds.append(1)
            time.sleep(0.05)
            return load()

        monkeypatch.setattr(index, "_load_jsonl", slow_load)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: index.file_attribution("a.ts"), range(25)))

        assert len(builds) == 1
        assert all(len(spans) == 1 for spans in results)


class TestPerFileTraces:

    def test_paths_relative_to_trace_file(self, tmp_path):
        trace_dir = tmp_path / "src" / ".agent-trace"
        trace_dir.mkdir(parents=True)
        (trace_dir / "refund.json").write_text(json.dumps({
            "file": "../refund.ts",
            "revision": "r1",
            "conversations": [{
                "url": "conversation://c9",
                "contributor": {"type": "ai", "model": "claude", "tool": "cursor"},
                "ranges": [{"start": 5, "end": 9, "hash": "h"}],
                "timestamp": "2024-05-01T10:00:00Z",
            }],
        }))
        index = AttributionIndex(tmp_path)
        span = index.file_attribution("src/refund.ts")[0]
        assert span.conversation_id == "c9"
        assert span.contributor.tool_id == "cursor"
        assert span.content_hash == "h"

    def test_ignored_directories(self, tmp_path):
        trace_dir = tmp_path / "node_modules" / "pkg" / ".agent-trace"
        trace_dir.mkdir(parents=True)
        (trace_dir / "x.json").write_text(json.dumps({
            "file": "x.ts",
            "conversations": [{"url": "conversation://c1", "ranges": [{"start": 1, "end": 2}]}],
        }))
        assert len(AttributionIndex(tmp_path)) == 0

    def test_malformed_file_skipped(self, tmp_path):
        (tmp_path / "broken.agent-trace.json").write_text("not json")
        assert len(AttributionIndex(tmp_path)) == 0
