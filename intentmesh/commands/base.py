"""
BaseCommand — Shared foundation for all CLI commands

Commands receive the CLI instance and reach shared resources (mesh,
config) through it instead of building their own.
"""

import json
from typing import TYPE_CHECKING, Any, Iterable

from ..core.models import DriftEvent, Intent, IntentLink

if TYPE_CHECKING:
    from ..cli import MeshCLI


class BaseCommand:
    """Base class for CLI commands with access to shared resources."""

    def __init__(self, cli: 'MeshCLI'):
        self._cli = cli

    @property
    def project_dir(self):
        return self._cli.project_dir

    @property
    def config(self):
        return self._cli.config

    @property
    def config_manager(self):
        return self._cli.config_manager

    @property
    def mesh(self):
        """IntentMesh for the project (built on first use)."""
        return self._cli.mesh

    def print_json(self, data: Any):
        print(json.dumps(data, indent=2))

    def print_records(self, records: Iterable, as_json: bool, render, empty: str):
        records = list(records)
        if as_json:
            self.print_json([r.to_dict() for r in records])
            return
        if not records:
            print(empty)
            return
        for record in records:
            print(render(record))


def format_intent(intent: Intent) -> str:
    tags = f" [{', '.join(intent.tags)}]" if intent.tags else ""
    status = "" if intent.is_active else f" ({intent.status.value})"
    return f"[{intent.id[:8]}] {intent.title}{status}{tags}\n    {intent.statement}"


def format_drift(event: DriftEvent) -> str:
    lines = event.range.start_line
    if event.range.end_line != event.range.start_line:
        lines = f"{event.range.start_line}-{event.range.end_line}"
    head = (f"[{event.id[:8]}] {event.severity.value.upper()} {event.file_uri}:{lines} "
            f"({event.status.value}, {event.confidence:.0%})")
    body = [f"    {event.summary}"]
    if event.suggested_fix:
        body.append(f"    Fix: {event.suggested_fix}")
    return "\n".join([head] + body)


def format_link(link: IntentLink) -> str:
    where = link.file_uri
    if link.is_line_scoped:
        where = f"{where}:{link.start_line}-{link.end_line}"
    return f"[{link.id[:8]}] intent {link.intent_id[:8]} -> {where} ({link.link_type.value}, {link.confidence:.1f})"
