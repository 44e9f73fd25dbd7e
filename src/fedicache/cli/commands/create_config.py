"""
Write a configuration file
"""

from argparse import ArgumentParser, Namespace, _SubParsersAction

from fedicache.cli.util import add_config_arguments, create_config


def run(parser: ArgumentParser, args: Namespace, remaining: list[str]) -> int:
    """
    Run this command.
    """
    if len(remaining):
        parser.print_help()
        return 0

    config = create_config(args)
    if args.out:
        config.save(args.out)
    else:
        print(config.as_json().decode('utf-8'))

    return 0


def add_sub_parser(parent_parser: _SubParsersAction, cmd_name: str) -> ArgumentParser:
    """
    Add command-line options for this sub-command
    parent_parser: the parent argparse parser
    cmd_name: name of this command
    """
    parser = parent_parser.add_parser(cmd_name, help='Write a configuration file with the defaults and the given options')
    parser.add_argument('--out', '-o', default=None, required=False, help='Name of the file to write the configuration to (default: stdout)')
    add_config_arguments(parser)

    return parser
