"""
DriftsCommand — List drift events
"""

from ..core.models import DriftStatus
from .base import BaseCommand, format_drift


class DriftsCommand(BaseCommand):

    def list(self, file_uri=None, status=None, as_json: bool = False):
        drifts = self.mesh.get_drifts(
            file_uri=file_uri,
            status=DriftStatus(status) if status else None,
        )
        self.print_records(drifts, as_json, format_drift, "No drift events.")
        return drifts


COMMAND_NAME = 'drifts'


def register_parser(subparsers):
    p = subparsers.add_parser('drifts', help='List drift events')
    p.add_argument('--file', '-f', help='Only events in this file')
    p.add_argument('--status', choices=[s.value for s in DriftStatus], help='Only events with this status')
    p.add_argument('--json', action='store_true', help='Output JSON')
    return p


def handle(cli, args):
    return DriftsCommand(cli).list(file_uri=args.file, status=args.status, as_json=args.json)
