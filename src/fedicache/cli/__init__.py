"""
Main entry point for CLI invocation
"""

from argparse import ArgumentError, ArgumentParser
import importlib
import sys
import traceback
from types import ModuleType

import msgspec

from fedicache.reporting import fatal, set_reporting_level
from fedicache.store import IdentityStoreError
from fedicache.utils import find_submodules
import fedicache.cli.commands


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for CLI invocation. Exits with the status of the sub-command.
    """
    cmds = find_commands()
    parser, cmd_parsers = create_parser(cmds)

    args, remaining = parser.parse_known_args(sys.argv[1:] if argv is None else argv)
    set_reporting_level(args.verbose)

    cmd = cmds[args.command]
    try:
        sys.exit(cmd.run(cmd_parsers[args.command], args, remaining))

    except ArgumentError as e:
        fatal(e.message)
    except (OSError, msgspec.ValidationError) as e:
        fatal('Cannot use configuration:', e)
    except IdentityStoreError as e:
        fatal(e)
    except Exception as e: # pylint: disable=broad-exception-caught
        if args.verbose > 1:
            traceback.print_exception(e)
        fatal(str(type(e)), '--', e)


def create_parser(cmds: dict[str, ModuleType]) -> tuple[ArgumentParser, dict[str, ArgumentParser]]:
    """
    The top-level parser, and the parser of each sub-command by name.
    """
    parser = ArgumentParser(prog='fedicache', description='fedicache: resolve and cache remote federated identities')
    parser.add_argument('-v', '--verbose', action='count', default=0,
            help='Display extra output. May be repeated for even more output')
    sub_parsers = parser.add_subparsers(dest='command', required=True)

    cmd_parsers = { cmd_name: cmd.add_sub_parser(sub_parsers, cmd_name) for cmd_name, cmd in cmds.items() }
    return parser, cmd_parsers


def find_commands() -> dict[str, ModuleType]:
    """
    Find available commands: each module in fedicache.cli.commands, with underscores
    in its name turned into dashes.
    """
    return {
        cmd_name.replace('_', '-'): importlib.import_module(f'fedicache.cli.commands.{ cmd_name }')
        for cmd_name in find_submodules(fedicache.cli.commands)
    }


if __name__ == '__main__':
    main()
