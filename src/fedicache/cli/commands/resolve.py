"""
Resolve a remote identity, fetching it if needed
"""

from argparse import ArgumentParser, Namespace, _SubParsersAction

import msgspec

from fedicache import open_sqlite_cache
from fedicache.cli.util import add_config_arguments, create_config
from fedicache.identitycache import RefreshPolicy
from fedicache.reporting import warning
from fedicache.utils import format_name_value_string
from fedicache.worker import DeferredTaskQueue


def run(parser: ArgumentParser, args: Namespace, remaining: list[str]) -> int:
    """
    Run this command.
    """
    if len(remaining):
        parser.print_help()
        return 0

    # Background updates get their turn when the cache is closed, once the answer is out
    with open_sqlite_cache(create_config(args), DeferredTaskQueue()) as opened:
        record = opened.cache.resolve(args.handle, RefreshPolicy(args.refresh))
        if record is None:
            warning('Identity not found:', args.handle)
            return 1

        if args.json:
            print(record.as_json().decode('utf-8'))
        else:
            print(format_name_value_string(msgspec.to_builtins(record)), end='')
        return 0


def add_sub_parser(parent_parser: _SubParsersAction, cmd_name: str) -> ArgumentParser:
    """
    Add command-line options for this sub-command
    parent_parser: the parent argparse parser
    cmd_name: name of this command
    """
    parser = parent_parser.add_parser(cmd_name, help='Resolve a remote identity, fetching it if needed')
    parser.add_argument('handle', help='Handle of the identity, as user@host or URL')
    parser.add_argument('--refresh', choices=[ p.value for p in RefreshPolicy ], default=RefreshPolicy.AUTO.value,
            help='auto: fetch if not cached or outdated (default); force: always fetch; never: only use the cache')
    parser.add_argument('--json', action='store_true', help='Emit the identity as JSON')
    add_config_arguments(parser)

    return parser
