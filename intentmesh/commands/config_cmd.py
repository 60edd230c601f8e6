"""
ConfigCommand — Show and change configuration
"""

from .base import BaseCommand


class ConfigCommand(BaseCommand):

    def show(self):
        print(self.config_manager.display())

    def set(self, key: str, value: str, user: bool = False) -> bool:
        error = self.config_manager.set(key, value, scope="user" if user else "project")
        if error:
            print(f"Error: {error}")
            return False
        print(f"Set {key} = {value} ({'user' if user else 'project'})")
        return True


COMMAND_NAME = 'config'


def register_parser(subparsers):
    p = subparsers.add_parser('config', help='Show or change configuration')
    p.add_argument('--set', nargs=2, metavar=('KEY', 'VALUE'), help='Set a value (e.g. detection.batch_size 10)')
    p.add_argument('--user', action='store_true', help='Write to user config instead of project config')
    return p


def handle(cli, args):
    cmd = ConfigCommand(cli)
    if args.set:
        return cmd.set(args.set[0], args.set[1], user=args.user)
    return cmd.show()
