"""
Commands — CLI command implementations with self-registration

Each command module:
1. Defines XxxCommand class (handler implementation)
2. Exports register_parser(subparsers) to configure its argparse
3. Exports handle(cli, args) to dispatch to handler methods
"""

import importlib
import logging
from typing import Any, Callable, Dict, List

from .base import BaseCommand

logger = logging.getLogger(__name__)

# Order determines help display order
COMMAND_MODULES = [
    'analyze',
    'capture',
    'resolve',
    'intents_cmd',
    'drifts',
    'link',
    'config_cmd',
]

_handlers: Dict[str, Callable] = {}


def register_all(subparsers) -> None:
    """
    Register every command parser and its handler.

    Args:
        subparsers: argparse subparsers object from main parser
    """
    _handlers.clear()

    for module_name in COMMAND_MODULES:
        module = importlib.import_module(f'.{module_name}', __package__)
        module.register_parser(subparsers)
        cmd_name = getattr(module, 'COMMAND_NAME', module_name.replace('_cmd', ''))
        _handlers[cmd_name] = module.handle


def dispatch(command: str, cli: Any, args: Any) -> Any:
    """
    Dispatch command to its registered handler.

    Raises:
        KeyError: If command not registered
    """
    if command not in _handlers:
        raise KeyError(f"Unknown command: {command}. Available: {list(_handlers.keys())}")
    return _handlers[command](cli, args)


def get_registered_commands() -> List[str]:
    return list(_handlers.keys())


__all__ = ['BaseCommand', 'register_all', 'dispatch', 'get_registered_commands']
