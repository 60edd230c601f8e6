"""
CaptureCommand — Import intents from conversations behind the changed code
"""

from .base import BaseCommand


class CaptureCommand(BaseCommand):

    def capture(self, conversation_ids=None, auto_link: bool = True, as_json: bool = False):
        result = self.mesh.capture_intents(conversation_ids=conversation_ids or None, auto_link=auto_link)

        if as_json:
            self.print_json({
                "intentsImported": result.intents_imported,
                "linksCreated": result.links_created,
                "errors": result.errors,
            })
            return result

        print(f"Imported {result.intents_imported} intent(s), created {result.links_created} link(s).")
        for error in result.errors:
            print(f"  ! {error}")
        return result


COMMAND_NAME = 'capture'


def register_parser(subparsers):
    p = subparsers.add_parser('capture', help='Capture intents from conversations')
    p.add_argument('--conversation', '-c', dest='conversations', action='append',
                   help='Only this conversation id (repeatable)')
    p.add_argument('--no-auto-link', dest='auto_link', action='store_false',
                   help='Do not link captured intents to the code their conversation touched')
    p.add_argument('--json', action='store_true', help='Output JSON')
    return p


def handle(cli, args):
    return CaptureCommand(cli).capture(
        conversation_ids=args.conversations,
        auto_link=args.auto_link,
        as_json=args.json,
    )
