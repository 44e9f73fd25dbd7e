"""
Reporting functionality
"""

import logging
import logging.config
import sys
import traceback
from typing import Any

logging.config.dictConfig({
    'version'                  : 1,
    'disable_existing_loggers' : False,
    'formatters'               : {
        'standard' : {
            'format' : '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            'datefmt' : '%Y-%m-%dT%H:%M:%SZ'
        },
    },
    'handlers' : {
        'default' : {
            'level'     : 'DEBUG',
            'formatter' : 'standard',
            'class'     : 'logging.StreamHandler',
            'stream'    : 'ext://sys.stderr'
        }
    },
    'loggers' : {
        '' : { # root logger -- set level to most output that can happen
            'handlers'  : [ 'default' ],
            'level'     : 'WARNING',
            'propagate' : True
        }
    }
})
LOG = logging.getLogger( 'fedicache' )


def set_reporting_level(n_verbose_flags: int) -> None:
    """
    Map the number of -v flags given on the command-line to a log level.
    """
    if n_verbose_flags == 1:
        LOG.setLevel(logging.INFO)
    elif n_verbose_flags >= 2:
        LOG.setLevel(logging.DEBUG)


def trace(*args: Any) -> None:
    """
    Emit a trace message, prefixed by the location of the caller.

    args: the message or message components
    """
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug(_construct_msg(True, False, args))


def is_trace_active() -> bool:
    return LOG.isEnabledFor(logging.DEBUG)


def info(*args: Any) -> None:
    """
    Emit an info message.

    args: the message or message components
    """
    if LOG.isEnabledFor(logging.INFO):
        LOG.info(_construct_msg(False, False, args))


def warning(*args: Any) -> None:
    """
    Emit a warning message. If trace is on and the last argument is an Exception,
    its traceback is appended.

    args: the message or message components
    """
    if LOG.isEnabledFor(logging.WARNING):
        LOG.warning(_construct_msg(False, is_trace_active(), args))


def error(*args: Any) -> None:
    """
    Emit an error message. If trace is on and the last argument is an Exception,
    its traceback is appended.

    args: the message or message components
    """
    if LOG.isEnabledFor(logging.ERROR):
        LOG.error(_construct_msg(False, is_trace_active(), args))


def fatal(*args: Any) -> None:
    """
    Emit a fatal error message and exit with code 255.

    args: the message or message components
    """
    if args and LOG.isEnabledFor(logging.CRITICAL):
        LOG.critical(_construct_msg(False, is_trace_active(), args))

    raise SystemExit(255) # Don't call exit() because that will close stdin


def _format_arg(a: Any) -> str:
    """
    Format a single message component for the log.
    """
    if a is None:
        return '<undef>'
    if isinstance(a, OSError):
        return type(a).__name__ + ' ' + str(a)
    if isinstance(a, Exception) and not str(a):
        return type(a).__name__
    return str(a)


def _construct_msg(with_loc: bool, with_tb: bool, args: tuple[Any, ...]) -> str:
    """
    Construct a message from these arguments.

    with_loc: construct message with location info
    with_tb: construct message with traceback if an exception is the last argument
    args: the message or message components
    return: string message
    """
    ret = ''
    if with_loc:
        frame = sys._getframe(2) # pylint: disable=protected-access
        ret = f'{ frame.f_code.co_filename }#{ frame.f_lineno } { frame.f_code.co_name }: '

    ret += ' '.join(_format_arg(a) for a in args)

    if with_tb and args and isinstance(args[-1], Exception):
        last = args[-1]
        ret += '\n' + ''.join(traceback.format_exception(type(last), last, last.__traceback__))

    return ret
