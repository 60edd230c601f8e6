"""
IntentsCommand — List, add and remove intents
"""

from ..core.models import Category, Strength
from .base import BaseCommand, format_intent


class IntentsCommand(BaseCommand):

    def list(self, file_uri=None, as_json: bool = False):
        intents = self.mesh.get_intents(file_uri)
        empty = f"No active intents for {file_uri}." if file_uri else "No intents captured yet."
        self.print_records(intents, as_json, format_intent, empty)
        return intents

    def add(self, title: str, statement: str, tags=None, category: str = "behavior", strength: str = "medium"):
        intent = self.mesh.create_intent(
            title=title,
            statement=statement,
            tags=tags or [],
            category=Category(category),
            strength=Strength(strength),
        )
        print(f"Created intent {intent.id}")
        print(format_intent(intent))
        return intent

    def delete(self, intent_id: str):
        full_id = self._cli.resolve_id(intent_id, [i.id for i in self.mesh.get_intents()], "Intent")
        self.mesh.delete_intent(full_id)
        print(f"Deleted intent {full_id} and its links.")


COMMAND_NAME = 'intents'


def register_parser(subparsers):
    p = subparsers.add_parser('intents', help='List or manage intents')
    p.add_argument('--file', '-f', help='Only active intents governing this file')
    p.add_argument('--add', metavar='TITLE', help='Create an intent (needs --statement)')
    p.add_argument('--statement', '-s', help='Statement for --add')
    p.add_argument('--tag', '-t', dest='tags', action='append', help='Tag for --add (repeatable)')
    p.add_argument('--category', choices=[c.value for c in Category], default='behavior')
    p.add_argument('--strength', choices=[s.value for s in Strength], default='medium')
    p.add_argument('--delete', metavar='ID', help='Delete an intent and its links')
    p.add_argument('--json', action='store_true', help='Output JSON')
    return p


def handle(cli, args):
    cmd = IntentsCommand(cli)
    if args.add:
        if not args.statement:
            print("Usage: intentmesh intents --add TITLE --statement TEXT [--tag T]")
            return None
        return cmd.add(args.add, args.statement, tags=args.tags,
                       category=args.category, strength=args.strength)
    if args.delete:
        return cmd.delete(args.delete)
    return cmd.list(file_uri=args.file, as_json=args.json)
