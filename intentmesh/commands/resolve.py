"""
ResolveCommand — Dismiss, reject or fix a drift finding
"""

from ..core.models import DriftStatus
from ..mesh import ResolveAction
from .base import BaseCommand, format_drift


class ResolveCommand(BaseCommand):

    def resolve(self, event_id: str, action: str, statement=None):
        full_id = self._cli.resolve_id(event_id, [d.id for d in self.mesh.get_drifts()], "Drift event")
        event = self.mesh.resolve_drift(full_id, action, new_statement=statement)
        print(f"Drift {event.id[:8]} is now {event.status.value}.")
        print(format_drift(event))
        if not self.mesh.can_capture():
            remaining = len(self.mesh.get_drifts(status=DriftStatus.OPEN))
            print(f"\n{remaining} open drift(s) remaining.")
        return event


COMMAND_NAME = 'resolve'


def register_parser(subparsers):
    p = subparsers.add_parser('resolve', help='Resolve a drift event')
    p.add_argument('event_id', help='Drift event id (or unique prefix)')
    p.add_argument('action', choices=[a.value for a in ResolveAction],
                   help='dismiss: acknowledge; false_positive: not a violation; '
                        'update_intent: the intent changed (needs --statement)')
    p.add_argument('--statement', '-s', help='New statement for the violated intent')
    return p


def handle(cli, args):
    return ResolveCommand(cli).resolve(args.event_id, args.action, statement=args.statement)
