"""
LinkCommand — Link an intent to a file or line range, list a file's links
"""

from .base import BaseCommand, format_link


class LinkCommand(BaseCommand):

    def link(self, intent_id: str, file_uri: str, start=None, end=None):
        full_id = self._cli.resolve_id(intent_id, [i.id for i in self.mesh.get_intents()], "Intent")
        link = self.mesh.link_intent_to_file(full_id, file_uri, start_line=start, end_line=end)
        print(f"Linked: {format_link(link)}")
        return link

    def list(self, file_uri: str, as_json: bool = False):
        links = self.mesh.get_links_for_file(file_uri)
        self.print_records(links, as_json, format_link, f"No links for {file_uri}.")
        return links


COMMAND_NAME = 'link'


def register_parser(subparsers):
    p = subparsers.add_parser('link', help='Link an intent to code')
    p.add_argument('intent_id', nargs='?', help='Intent id (or unique prefix)')
    p.add_argument('file', nargs='?', help='File the intent governs')
    p.add_argument('--start', type=int, help='First line (1-indexed)')
    p.add_argument('--end', type=int, help='Last line (inclusive)')
    p.add_argument('--list', metavar='FILE', dest='list_file', help='List links for a file')
    p.add_argument('--json', action='store_true', help='Output JSON (with --list)')
    return p


def handle(cli, args):
    cmd = LinkCommand(cli)
    if args.list_file:
        return cmd.list(args.list_file, as_json=args.json)
    if args.intent_id and args.file:
        return cmd.link(args.intent_id, args.file, start=args.start, end=args.end)
    print("Usage:")
    print("  intentmesh link <intent_id> <file> [--start N --end M]   Link intent to code")
    print("  intentmesh link --list <file>                            List links for a file")
    return None
