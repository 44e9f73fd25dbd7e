"""
Look up the url of a cached identity by its guid
"""

from argparse import ArgumentParser, Namespace, _SubParsersAction

from fedicache import open_sqlite_cache
from fedicache.cli.util import add_config_arguments, create_config
from fedicache.reporting import warning
from fedicache.worker import DeferredTaskQueue


def run(parser: ArgumentParser, args: Namespace, remaining: list[str]) -> int:
    """
    Run this command.
    """
    if len(remaining):
        parser.print_help()
        return 0

    with open_sqlite_cache(create_config(args), DeferredTaskQueue()) as opened:
        url = opened.cache.lookup_url_by_guid(args.guid)

    if url is None:
        warning('No cached identity with guid:', args.guid)
        return 1

    print(url)
    return 0


def add_sub_parser(parent_parser: _SubParsersAction, cmd_name: str) -> ArgumentParser:
    """
    Add command-line options for this sub-command
    parent_parser: the parent argparse parser
    cmd_name: name of this command
    """
    parser = parent_parser.add_parser(cmd_name, help='Look up the url of a cached identity by its guid')
    parser.add_argument('guid', help='The guid of the identity')
    add_config_arguments(parser)

    return parser
