"""
The cache of remote identities: look them up locally, fetch them when needed, and keep
them fresh in the background.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from fedicache.config import CacheConfig
from fedicache.directory import DirectoryResolutionError, DirectoryResolver
from fedicache.freshness import FreshnessPolicy
from fedicache.model import (
    DirectoryDocument,
    IdentityRecord,
    InteractionCounts,
    has_datetime,
)
from fedicache.protocols import Protocol
from fedicache.reporting import info, trace, warning
from fedicache.store import IdentityStore, InteractionStatisticsSource, URIInterner
from fedicache.utils import https_variant, normalise_link
from fedicache.worker import Priority, TaskQueue

UPDATE_IDENTITY_JOB = 'update-identity'


class RefreshPolicy(Enum):
    """
    Whether resolving an identity may go to the network.
    """
    AUTO = 'auto'   # when not cached or incomplete; in the background when outdated
    FORCE = 'force' # always
    NEVER = 'never' # never


class RemoteIdentityCache:
    """
    Resolves handles of remote identities of one protocol to IdentityRecords.
    """
    def __init__(
        self,
        resolver: DirectoryResolver,
        store: IdentityStore,
        interner: URIInterner,
        statistics: InteractionStatisticsSource,
        queue: TaskQueue,
        freshness: FreshnessPolicy,
        config: CacheConfig | None = None,
        now: Callable[[], datetime] | None = None
    ):
        """
        now: a callable returning the current time, for testing
        """
        self._resolver = resolver
        self._store = store
        self._interner = interner
        self._statistics = statistics
        self._queue = queue
        self._freshness = freshness
        self._config = config or CacheConfig()
        self._now = now or (lambda: datetime.now(UTC))

        self._queue.register(UPDATE_IDENTITY_JOB, self.refresh)


    @property
    def protocol(self) -> Protocol:
        return self._config.protocol


    def resolve(self, handle: str, refresh: RefreshPolicy = RefreshPolicy.AUTO) -> IdentityRecord | None:
        """
        Return the identity with this handle, which may be user@host or a URL. Returns
        None if it is neither cached nor could be fetched.
        May raise IdentityStoreError.
        """
        trace(f'Resolving { handle } with refresh { refresh.name }')
        record = self._lookup(handle)

        if record is not None:
            trace(f'In cache: { handle }')
            match refresh:
                case RefreshPolicy.NEVER:
                    return record
                case RefreshPolicy.AUTO:
                    if record.is_complete():
                        self._schedule_refresh_if_outdated(handle, record)
                        return record
                    info(f'Cached identity is incomplete, fetching again: { handle }')

        elif refresh == RefreshPolicy.NEVER:
            return None

        return self._fetch_and_store(handle, record)


    def refresh(self, handle: str) -> IdentityRecord | None:
        """
        Fetch the identity with this handle again, whatever is cached. This is what the
        background job does.
        """
        return self.resolve(handle, RefreshPolicy.FORCE)


    def upsert(self, document: DirectoryDocument) -> None:
        """
        Store what the directory said about an identity, creating or updating the cached
        record with the document's url.
        May raise IdentityStoreError.
        """
        uri_id = self._interner.intern(document.url, document.guid)
        existing = self._store.select_first(url=document.url, protocol=document.network)
        contact = self._statistics.local_contact(uri_id)

        counts = self._statistics.remote_profile_counts(document.url)
        if counts is None:
            if contact is not None:
                since = self._now() - timedelta(days=self._config.interaction_window_days)
                counts = self._statistics.local_interaction_counts(contact.id, since)
            else:
                counts = InteractionCounts()

        fields : dict[str, Any] = {
            'handle'            : document.addr.lower(),
            'guid'              : document.guid,
            'nick'              : document.nick,
            'display_name'      : document.name,
            'avatar_url'        : document.photo,
            'public_key'        : document.pubkey,
            'inbox_url'         : document.request,
            'relay_url'         : document.batch,
            'notify_url'        : document.notify,
            'poll_url'          : document.poll,
            'confirm_url'       : document.confirm,
            'alias'             : document.alias,
            'uri_id'            : uri_id,
            'interacting_count' : counts.interacting,
            'interacted_count'  : counts.interacted,
            'post_count'        : counts.posts,
            'updated'           : self._now(),
        }

        if existing is None or existing.created is None:
            fields['created'] = fields['updated']
        elif contact is not None and has_datetime(contact.created) and not has_datetime(existing.created):
            fields['created'] = contact.created

        self._store.upsert(document.url, Protocol(document.network), fields)


    def lookup_url_by_guid(self, guid: str) -> str | None:
        """
        Return the url of the cached identity with this guid, if any. Never fetches.
        """
        info(f'Looking up url for guid { guid }')
        record = self._store.select_first_by_guid(self.protocol, guid)
        if record is not None:
            return record.url
        return None


    def _lookup(self, handle: str) -> IdentityRecord | None:
        """
        Find the cached record for a handle. The handle is tried as handle first, then
        as url in its given, https and normalised forms. The first match wins.
        Handles are stored lower-cased, so they are compared that way.
        """
        ret = self._store.select_first(protocol=self.protocol, handle=handle.lower())
        if ret is not None:
            return ret

        candidates = [ handle ]
        https = https_variant(handle)
        if https:
            candidates.append(https)
        normalised = normalise_link(handle)
        if normalised not in candidates:
            candidates.append(normalised)

        for candidate in candidates:
            ret = self._store.select_first(protocol=self.protocol, url=candidate)
            if ret is not None:
                return ret
        return None


    def _schedule_refresh_if_outdated(self, handle: str, record: IdentityRecord) -> None:
        deadline = self._freshness.next_update_deadline(True, record.created, record.updated, False)
        if deadline < self._now():
            info(f'Outdated, scheduling background update: { handle }')
            self._queue.enqueue(Priority.LOW, UPDATE_IDENTITY_JOB, handle, dont_fork=True)


    def _fetch_and_store(self, handle: str, previous: IdentityRecord | None) -> IdentityRecord | None:
        """
        Fetch the identity from the directory and store it. If that does not produce an
        identity of our protocol, return what we had before.
        """
        info(f'Creating or refreshing { handle }')
        try:
            document = self._resolver.probe(handle, self.protocol)
        except DirectoryResolutionError as e:
            warning(f'Cannot fetch { handle }, keeping what is cached:', e)
            return previous

        if document.network != self.protocol:
            info(f'{ handle } is on protocol { document.network }, not { self.protocol }, ignoring')
            return previous

        self.upsert(document)
        # The handle may not be among the forms the directory reported the identity under
        return self._lookup(handle) or self._store.select_first(protocol=self.protocol, url=document.url)
