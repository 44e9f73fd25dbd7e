"""
Utility functions
"""

from abc import ABC, abstractmethod
import importlib.metadata
import pkgutil
import re
from types import ModuleType
from urllib.parse import ParseResult, quote, urlparse


def _version(default_version="0.0.0"):
    try:
        return importlib.metadata.version("fedicache")
    except importlib.metadata.PackageNotFoundError:
        return default_version

FEDICACHE_VERSION = _version()

# From https://datatracker.ietf.org/doc/html/rfc7565#section-7, but simplified
ACCT_REGEX = re.compile(r"acct:([-a-zA-Z0-9\._~][-a-zA-Z0-9\._~!$&'\(\)\*\+,;=%]*)@([-a-zA-Z0-9\.:]+)")
BARE_HANDLE_REGEX = re.compile(r"^([-a-zA-Z0-9\._~][-a-zA-Z0-9\._~!$&'\(\)\*\+,;=%]*)@([-a-zA-Z0-9\.:]+)$")


class ParsedUri(ABC):
    """
    An abstract data type for the URIs a handle may be given as. acct: URIs are
    structured so differently from http(s) URIs that they get their own subtype.
    """
    @staticmethod
    def parse(url: str) -> 'ParsedUri | None':
        """
        The equivalent of urlparse(str), but returns None if this isn't an absolute URI.
        """
        parsed : ParseResult = urlparse(url)
        if parsed.scheme == 'acct':
            if match := ACCT_REGEX.fullmatch(url):
                return ParsedAcctUri(match[1], match[2])
            return None
        if not parsed.scheme or not parsed.netloc:
            return None
        return ParsedNonAcctUri(parsed.scheme, parsed.netloc, parsed.path, parsed.query)


    @property
    @abstractmethod
    def scheme(self) -> str:
        ...


    @property
    @abstractmethod
    def host(self) -> str:
        ...


    @property
    @abstractmethod
    def uri(self) -> str:
        ...


class ParsedNonAcctUri(ParsedUri):
    """
    ParsedUris that are "normal" URIs such as http URIs.
    """
    def __init__(self, scheme: str, netloc: str, path: str, query: str):
        self._scheme = scheme
        self._netloc = netloc
        self._path = path
        self._query = query


    # Python 3.12 @override
    @property
    def scheme(self) -> str:
        return self._scheme


    # Python 3.12 @override
    @property
    def host(self) -> str:
        return self._netloc


    @property
    def path(self) -> str:
        return self._path


    # Python 3.12 @override
    @property
    def uri(self) -> str:
        ret = f'{ self._scheme }://{ self._netloc }{ self._path }'
        if self._query:
            ret += f'?{ self._query }'
        return ret


    def __repr__(self):
        return f'ParsedNonAcctUri({ self.uri })'


class ParsedAcctUri(ParsedUri):
    """
    ParsedUris that are acct: URIs
    """
    def __init__(self, user: str, host: str):
        self._user = user
        self._host = host


    # Python 3.12 @override
    @property
    def scheme(self) -> str:
        return 'acct'


    @property
    def user(self) -> str:
        return self._user


    # Python 3.12 @override
    @property
    def host(self) -> str:
        return self._host


    # Python 3.12 @override
    @property
    def uri(self) -> str:
        return f'acct:{ self.user }@{ self.host }'


    def __repr__(self):
        return f'ParsedAcctUri({ self.uri })'


class UnsupportedHandleError(ValueError):
    """
    Raised when a handle is neither user@host, nor an acct:, http or https URI.
    """
    def __init__(self, handle: str):
        super().__init__(f'Unsupported handle: "{ handle }"')
        self.handle = handle


def handle_to_resource(handle: str) -> ParsedUri:
    """
    Turn a handle as given by the user into the URI that is the subject of a
    WebFinger query: 'alice@example.org' becomes 'acct:alice@example.org',
    acct:, http and https URIs are used as they are.
    """
    if match := BARE_HANDLE_REGEX.match(handle):
        return ParsedAcctUri(match[1], match[2])

    parsed = ParsedUri.parse(handle)
    if isinstance(parsed, ParsedAcctUri):
        return parsed
    if isinstance(parsed, ParsedNonAcctUri) and parsed.scheme in ['http', 'https']:
        return parsed
    raise UnsupportedHandleError(handle)


def construct_webfinger_uri_for(resource: ParsedUri) -> str:
    """
    Construct the WebFinger query URI for a resource. WebFinger is always performed
    over HTTPS, even if the resource is an http URI.
    """
    return f"https://{ resource.host }/.well-known/webfinger?resource={ quote(resource.uri) }"


def https_variant(handle: str) -> str | None:
    """
    If the handle is an http URL, return the same URL with https. None otherwise.
    """
    if handle.startswith('http://'):
        return 'https://' + handle[len('http://'):]
    return None


def normalise_link(url: str) -> str:
    """
    The canonical comparison form of a link: no trailing slash, scheme http,
    no leading www. Links that differ only in those respects are the same link.
    """
    ret = url.replace('https:', 'http:')
    ret = ret.replace('//www.', '//')
    return ret.rstrip('/')


def http_https_uri_validate(candidate: str) -> str | None:
    """
    Validate that the provided string is a valid HTTP or HTTPS URI.
    return: the string if valid, None otherwise
    """
    parsed = ParsedUri.parse(candidate)
    if isinstance(parsed, ParsedNonAcctUri) and parsed.scheme in ['http', 'https']:
        return candidate
    return None


def find_submodules(package: ModuleType) -> list[str]:
    """
    Find all submodules in the named package

    package: the package
    return: array of module names
    """
    ret = []
    for _, modname, _ in pkgutil.iter_modules(package.__path__):
        ret.append(modname)
    return ret


def format_name_value_string(data: dict[str, object]) -> str:
    """
    Format name-value pairs to a string similar to how an HTML definition list would
    do it. Long string values are wrapped.
    data: the name-value pairs
    return: formatted string
    """
    line_width = 120
    col1_width = len(max(data, key=len)) + 1
    ret = ''
    for key, value in data.items():
        line = ("{:<" + str(col1_width) + "}").format(key)
        if value is None or value == '':
            ret += line + '<no value>\n'
        elif isinstance(value, str):
            for word in value.split():
                if len(line)+1+len(word) <= line_width:
                    line += ' '
                else:
                    ret += line + '\n'
                    line = (col1_width+1)*' '
                line += word
            ret += line + '\n'
        else:
            ret += line + ' ' + str(value) + '\n'

    return ret
