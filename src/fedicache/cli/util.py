"""
Utility functions used by the CLI commands.
"""

from argparse import ArgumentParser, Namespace

from fedicache.config import CacheConfig
from fedicache.protocols import Protocol


def add_config_arguments(parser: ArgumentParser) -> None:
    """
    Add the command-line options that override the configuration file.
    """
    parser.add_argument('--config', help='JSON configuration file, as written by create-config')
    parser.add_argument('--database', help='SQLite database file that holds the cache')
    parser.add_argument('--protocol', choices=[ p.value for p in Protocol ], help='Protocol whose identities are cached')
    parser.add_argument('--http-timeout', type=float, help='Timeout for HTTP requests, in seconds')
    parser.add_argument('--insecure', action='store_true', default=None, help='Do not verify TLS certificates')


def create_config(args: Namespace) -> CacheConfig:
    """
    The configuration from the --config file, or the defaults, with the command-line overrides applied.
    """
    config = CacheConfig.load(args.config) if args.config else CacheConfig()
    return config.with_overrides(
        database=args.database,
        protocol=Protocol(args.protocol) if args.protocol else None,
        http_timeout=args.http_timeout,
        verify_tls=False if args.insecure else None)
