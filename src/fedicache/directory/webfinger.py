"""
Resolve remote identities with WebFinger, and read Diaspora profiles from their hCard.
"""

import base64
import binascii

from bs4 import BeautifulSoup
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import load_pem_public_key
import httpx
import msgspec

from fedicache.config import CacheConfig
from fedicache.directory import DirectoryResolutionError, DirectoryResolver
from fedicache.model import DirectoryDocument
from fedicache.protocols import (
    ACTIVITYPUB_MEDIA_TYPES,
    REL_HCARD,
    REL_LEGACY_GUID,
    REL_LEGACY_PUBLIC_KEY,
    REL_PROFILE_PAGE,
    REL_SEED_LOCATION,
    REL_SELF,
    REL_UPDATES_FROM,
    Protocol,
)
from fedicache.reporting import trace
from fedicache.utils import (
    ParsedAcctUri,
    ParsedUri,
    UnsupportedHandleError,
    construct_webfinger_uri_for,
    handle_to_resource,
    http_https_uri_validate,
)


class JrdLink(msgspec.Struct):
    rel: str
    type: str | None = None
    href: str | None = None


class Jrd(msgspec.Struct):
    """
    The parts of a JRD (RFC 7033) we need. Other members are ignored.
    """
    subject: str | None = None
    aliases: list[str] = []
    links: list[JrdLink] = []


    def link_href(self, rel: str, media_types: tuple[str, ...] | None = None) -> str | None:
        """
        The href of the first link with this rel (and one of these media types, if given).
        """
        for link in self.links:
            if link.rel != rel or not link.href:
                continue
            if media_types and link.type not in media_types:
                continue
            return link.href
        return None


    def acct_address(self) -> str | None:
        """
        user@host, taken from the subject or, failing that, the first acct: alias.
        """
        for candidate in [ self.subject, *self.aliases ]:
            if candidate and candidate.startswith('acct:'):
                return candidate[len('acct:'):]
        return None


class WebFingerDirectoryResolver(DirectoryResolver):
    """
    Performs a WebFinger query for the handle. If the identity is a Diaspora one, fetches
    and parses its hCard as well.
    """
    def __init__(self, config: CacheConfig, transport: httpx.BaseTransport | None = None):
        """
        config: timeouts, TLS verification and the User-Agent come from here
        transport: use this instead of the network, for testing
        """
        self._config = config
        self._transport = transport


    # Python 3.12 @override
    def probe(self, handle: str, protocol: Protocol) -> DirectoryDocument:
        try:
            resource = handle_to_resource(handle)
        except UnsupportedHandleError as e:
            raise DirectoryResolutionError(handle, str(e)) from e

        with self._client() as client:
            webfinger_uri = construct_webfinger_uri_for(resource)
            jrd = self._fetch_jrd(client, handle, webfinger_uri)

            hcard_uri = jrd.link_href(REL_HCARD)
            seed_location = jrd.link_href(REL_SEED_LOCATION)
            if hcard_uri and seed_location:
                return self._diaspora_document(client, handle, resource, jrd, hcard_uri, seed_location)

        actor_uri = jrd.link_href(REL_SELF, ACTIVITYPUB_MEDIA_TYPES)
        if actor_uri:
            trace(f'{ handle } is not a Diaspora identity but an ActivityPub actor: { actor_uri }')
            return DirectoryDocument(
                url=actor_uri,
                guid='',
                network=Protocol.ACTIVITYPUB,
                addr=jrd.acct_address() or '')

        raise DirectoryResolutionError(handle, 'WebFinger document does not describe a supported identity')


    def _client(self) -> httpx.Client:
        return httpx.Client(
            headers={ 'User-Agent': self._config.user_agent },
            timeout=self._config.http_timeout,
            verify=self._config.verify_tls,
            follow_redirects=True,
            max_redirects=self._config.max_redirects,
            transport=self._transport)


    def _get(self, client: httpx.Client, handle: str, uri: str, accept: str) -> httpx.Response:
        trace(f'Performing HTTP GET on { uri }')
        try:
            response = client.get(uri, headers={ 'Accept': accept })
        except httpx.HTTPError as e:
            raise DirectoryResolutionError(handle, f'HTTP GET on { uri } failed: { e }') from e

        if not response.is_success:
            raise DirectoryResolutionError(handle, f'HTTP GET on { uri } returned status { response.status_code }')
        return response


    def _fetch_jrd(self, client: httpx.Client, handle: str, webfinger_uri: str) -> Jrd:
        response = self._get(client, handle, webfinger_uri, 'application/jrd+json, application/json')
        try:
            return msgspec.json.decode(response.content, type=Jrd)
        except msgspec.DecodeError as e:
            raise DirectoryResolutionError(handle, f'Invalid WebFinger document: { e }') from e


    def _diaspora_document(
        self,
        client: httpx.Client,
        handle: str,
        resource: ParsedUri,
        jrd: Jrd,
        hcard_uri: str,
        seed_location: str
    ) -> DirectoryDocument:
        if not http_https_uri_validate(hcard_uri) or not http_https_uri_validate(seed_location):
            raise DirectoryResolutionError(handle, 'hCard or seed location is not an http(s) URI')

        response = self._get(client, handle, hcard_uri, 'text/html')
        hcard = BeautifulSoup(response.text, 'html.parser')

        guid = _hcard_text(hcard, 'uid') or _legacy_guid(jrd)
        if not guid:
            raise DirectoryResolutionError(handle, 'No guid found')

        nick = _hcard_text(hcard, 'nickname')
        addr = jrd.acct_address()
        if not addr and isinstance(resource, ParsedAcctUri):
            addr = f'{ resource.user }@{ resource.host }'
        if not nick and addr:
            nick = addr.split('@', 1)[0]

        pubkey = _hcard_text(hcard, 'key') or _legacy_public_key(jrd)
        if not pubkey:
            raise DirectoryResolutionError(handle, 'No public key found')
        try:
            load_pem_public_key(pubkey.encode('utf-8'))
        except (ValueError, UnsupportedAlgorithm) as e:
            raise DirectoryResolutionError(handle, f'Invalid public key: { e }') from e

        base = seed_location.rstrip('/')
        url = jrd.link_href(REL_PROFILE_PAGE) or f'{ base }/u/{ nick }'
        alias = next((a for a in jrd.aliases if a != url and not a.startswith('acct:')), '')

        ret = DirectoryDocument(
            url=url,
            guid=guid,
            network=Protocol.DIASPORA,
            addr=addr or '',
            nick=nick,
            name=_hcard_text(hcard, 'fn') or nick,
            photo=_hcard_photo(hcard),
            batch=f'{ base }/receive/public',
            notify=f'{ base }/receive/users/{ guid }',
            poll=jrd.link_href(REL_UPDATES_FROM) or '',
            alias=alias,
            pubkey=pubkey)
        trace(f'Resolved { handle } to { ret }')
        return ret


def _hcard_text(hcard: BeautifulSoup, css_class: str) -> str:
    element = hcard.find(class_=css_class)
    if element is None:
        return ''
    return element.get_text().strip()


def _hcard_photo(hcard: BeautifulSoup) -> str:
    """
    The first photo is the largest one.
    """
    for img in hcard.find_all('img', class_='photo'):
        src = img.get('src')
        if src:
            return str(src)
    return ''


def _legacy_guid(jrd: Jrd) -> str:
    return jrd.link_href(REL_LEGACY_GUID) or ''


def _legacy_public_key(jrd: Jrd) -> str:
    encoded = jrd.link_href(REL_LEGACY_PUBLIC_KEY)
    if not encoded:
        return ''
    try:
        return base64.b64decode(encoded, validate=True).decode('utf-8').strip()
    except (binascii.Error, UnicodeDecodeError):
        return ''
