"""
CLI — Command interface

    intentmesh analyze [files...] [--since REV]
    intentmesh capture [-c ID]
    intentmesh resolve <id> {dismiss,false_positive,update_intent}
    intentmesh intents | drifts | link | config

Shared resources (config, mesh) are built once per invocation and
handed to commands through the MeshCLI instance.
"""

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional

from .config import Config, ConfigManager
from .core.errors import IntentMeshError, NotFoundError, PreconditionError
from .mesh import IntentMesh
from . import __version__


class MeshCLI:
    """Command-line interface for the IntentMesh drift detector."""

    def __init__(self, project_dir: Path, config_manager: Optional[ConfigManager] = None):
        self.project_dir = Path(project_dir).resolve()
        self.config_manager = config_manager or ConfigManager(self.project_dir)
        self._config: Optional[Config] = None
        self._mesh: Optional[IntentMesh] = None

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = self.config_manager.load()
        return self._config

    @property
    def mesh(self) -> IntentMesh:
        if self._mesh is None:
            self._mesh = IntentMesh.from_config(self.project_dir, self.config)
        return self._mesh

    def resolve_id(self, prefix: str, ids: List[str], kind: str) -> str:
        """
        Expand a unique id prefix to the full id.

        Raises:
            NotFoundError: nothing starts with the prefix
            PreconditionError: more than one id starts with it
        """
        if prefix in ids:
            return prefix
        matches = [i for i in ids if i.startswith(prefix)]
        if not matches:
            raise NotFoundError(kind, prefix)
        if len(matches) > 1:
            shown = ", ".join(m[:8] for m in matches[:5])
            raise PreconditionError(f"Ambiguous {kind.lower()} id '{prefix}' matches {len(matches)}: {shown}")
        return matches[0]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intentmesh",
        description="IntentMesh -- Detect drift between code and the intent behind it",
    )
    parser.add_argument(
        '--project', '-C',
        default=os.environ.get("INTENTMESH_PROJECT_PATH", "."),
        help='Project directory (default: INTENTMESH_PROJECT_PATH or current)'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.add_argument(
        '--version', '-V',
        action='version',
        version=f'intentmesh {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    from .commands import register_all
    register_all(subparsers)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    from .commands import dispatch
    cli = MeshCLI(Path(args.project))

    try:
        dispatch(args.command, cli, args)
    except IntentMeshError as e:
        print(f"Error: {e}")
        return 1
    except KeyError as e:
        print(f"Error: {e}")
        parser.print_help()
        return 1
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
