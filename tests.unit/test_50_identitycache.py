"""
Test resolving, storing and refreshing remote identities through the cache.
"""

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from hamcrest import assert_that, equal_to, has_properties

from fedicache import open_sqlite_cache
from fedicache.config import CacheConfig
from fedicache.freshness import TieredFreshnessPolicy
from fedicache.identitycache import UPDATE_IDENTITY_JOB, RefreshPolicy, RemoteIdentityCache
from fedicache.model import NULL_DATETIME, DirectoryDocument, Gravity, InteractionCounts, LocalContact
from fedicache.protocols import Protocol
from fedicache.store import IdentityStoreError
from fedicache.store.memory import MemoryIdentityStore, MemoryInteractionStatistics, MemoryURIInterner
from fedicache.store.sqlite import SQLiteDatabase
from fedicache.worker import DeferredTaskQueue

from conftest import T0, Clock, FakeDirectoryResolver, alice_document

ALICE_URL = 'https://pod.example/u/alice'


def test_upsert_twice_keeps_one_record(cache, store, clock):
    cache.upsert(alice_document())
    clock.now = T0 + timedelta(hours=1)
    cache.upsert(alice_document())

    assert len(store) == 1
    record = store.select_first(url=ALICE_URL, protocol=Protocol.DIASPORA)
    assert record.created == T0
    assert record.updated == T0 + timedelta(hours=1)


def test_upsert_stores_document(cache, store, interner):
    cache.upsert(alice_document())

    record = store.select_first(url=ALICE_URL)
    assert_that(record, has_properties(
        protocol=Protocol.DIASPORA,
        handle='alice@pod.example',
        guid='aaaa1111',
        nick='alice',
        display_name='Alice Liddell',
        avatar_url='https://pod.example/uploads/alice.jpg',
        relay_url='https://pod.example/receive/public',
        notify_url='https://pod.example/receive/users/aaaa1111',
        poll_url='https://pod.example/public/alice.atom',
        alias='https://pod.example/people/aaaa1111',
        uri_id=interner.intern(ALICE_URL),
        created=T0,
        updated=T0))
    assert interner.guid_of(record.uri_id) == 'aaaa1111'


def test_upsert_truncates_long_values(cache, store):
    cache.upsert(alice_document(name='A' * 300))
    assert len(store.select_first(url=ALICE_URL).display_name) == 255


def test_created_backfilled_from_local_contact(cache, store, interner, statistics, clock):
    store.upsert(ALICE_URL, Protocol.DIASPORA, { 'created' : NULL_DATETIME })
    known_since = T0 - timedelta(days=30)
    statistics.add_contact(LocalContact(id=10, uri_id=interner.intern(ALICE_URL), created=known_since))

    clock.now = T0 + timedelta(days=1)
    cache.upsert(alice_document())

    record = store.select_first(url=ALICE_URL)
    assert record.created == known_since
    assert record.updated == T0 + timedelta(days=1)


def test_created_sentinel_kept_without_local_contact(cache, store):
    store.upsert(ALICE_URL, Protocol.DIASPORA, { 'created' : NULL_DATETIME })
    cache.upsert(alice_document())
    assert store.select_first(url=ALICE_URL).created == NULL_DATETIME


def test_counts_from_remote_profile(cache, store, statistics):
    statistics.add_remote_profile(ALICE_URL, InteractionCounts(interacting=100, interacted=50, posts=7))
    cache.upsert(alice_document())

    assert_that(store.select_first(url=ALICE_URL), has_properties(interacting_count=100, interacted_count=50, post_count=7))


def test_counts_from_local_contact(cache, store, interner, statistics):
    statistics.add_contact(LocalContact(id=10, uri_id=interner.intern(ALICE_URL), created=T0))
    statistics.add_relation(10, 11, False, T0 - timedelta(days=10))
    statistics.add_relation(10, 12, False, T0 - timedelta(days=200)) # outside the window
    statistics.add_relation(13, 10, False, T0 - timedelta(days=1))
    statistics.add_relation(14, 10, True, T0 - timedelta(days=1))    # following only
    statistics.add_post(10, Gravity.PARENT)
    statistics.add_post(10, Gravity.ACTIVITY)

    cache.upsert(alice_document())
    assert_that(store.select_first(url=ALICE_URL), has_properties(interacting_count=1, interacted_count=1, post_count=1))


def test_resolve_fetches_unknown(cache, resolver):
    resolver.documents['alice@pod.example'] = alice_document()

    record = cache.resolve('alice@pod.example')
    assert record is not None
    assert record.url == ALICE_URL
    assert record.is_complete()
    assert resolver.probed == [ 'alice@pod.example' ]


def test_resolve_cached_does_not_fetch(cache, resolver, queue):
    resolver.documents['alice@pod.example'] = alice_document()
    first = cache.resolve('alice@pod.example')
    second = cache.resolve('alice@pod.example')

    assert_that(second, equal_to(first))
    assert resolver.probed == [ 'alice@pod.example' ]
    assert queue.pending() == []


def test_outdated_refreshed_in_background(cache, resolver, queue, clock, store):
    resolver.documents['alice@pod.example'] = alice_document()
    cache.resolve('alice@pod.example')

    clock.now = T0 + timedelta(days=8)
    record = cache.resolve('alice@pod.example')

    assert record is not None
    assert record.updated == T0
    assert resolver.probed == [ 'alice@pod.example' ]
    assert queue.pending() == [ (UPDATE_IDENTITY_JOB, ('alice@pod.example',)) ]

    resolver.documents['alice@pod.example'] = alice_document(name='Alice L.')
    assert queue.run_pending() == 1

    refreshed = store.select_first(url=ALICE_URL)
    assert refreshed.display_name == 'Alice L.'
    assert refreshed.updated == T0 + timedelta(days=8)
    assert refreshed.created == T0
    assert queue.pending() == []


def test_not_yet_outdated_is_not_refreshed(cache, resolver, queue, clock):
    resolver.documents['alice@pod.example'] = alice_document()
    cache.resolve('alice@pod.example')

    clock.now = T0 + timedelta(days=6)
    cache.resolve('alice@pod.example')
    assert queue.pending() == []


def test_incomplete_refreshed_inline(cache, resolver, store, queue):
    store.upsert(ALICE_URL, Protocol.DIASPORA, { 'handle' : 'alice@pod.example', 'guid' : 'aaaa1111', 'created' : T0 })
    resolver.documents['alice@pod.example'] = alice_document()

    record = cache.resolve('alice@pod.example')
    assert record is not None
    assert record.uri_id is not None
    assert resolver.probed == [ 'alice@pod.example' ]
    assert queue.pending() == []


def test_resolve_via_https_variant(cache, resolver):
    cache.upsert(alice_document())

    record = cache.resolve('http://pod.example/u/alice')
    assert record is not None
    assert record.url == ALICE_URL
    assert resolver.probed == []


def test_resolve_via_normalised_link(cache, store, resolver):
    store.upsert('http://pod.example/u/bob', Protocol.DIASPORA, { 'nick' : 'bob' })

    record = cache.resolve('https://www.pod.example/u/bob/', RefreshPolicy.NEVER)
    assert record is not None
    assert record.nick == 'bob'
    assert resolver.probed == []


def test_unknown_and_unresolvable_is_absent(cache, resolver, store):
    assert cache.resolve('nobody@pod.example') is None
    assert resolver.probed == [ 'nobody@pod.example' ]
    assert len(store) == 0


def test_never_does_not_fetch(cache, resolver):
    resolver.documents['alice@pod.example'] = alice_document()
    assert cache.resolve('alice@pod.example', RefreshPolicy.NEVER) is None
    assert resolver.probed == []


def test_never_returns_incomplete(cache, resolver, store):
    store.upsert(ALICE_URL, Protocol.DIASPORA, { 'handle' : 'alice@pod.example' })
    resolver.documents['alice@pod.example'] = alice_document()

    record = cache.resolve('alice@pod.example', RefreshPolicy.NEVER)
    assert record is not None
    assert not record.is_complete()
    assert resolver.probed == []


def test_force_fetches_cached(cache, resolver, clock):
    resolver.documents['alice@pod.example'] = alice_document()
    cache.resolve('alice@pod.example')

    clock.now = T0 + timedelta(minutes=5)
    record = cache.resolve('alice@pod.example', RefreshPolicy.FORCE)
    assert record.updated == T0 + timedelta(minutes=5)
    assert resolver.probed == [ 'alice@pod.example', 'alice@pod.example' ]


def test_failed_refresh_keeps_cached(cache, resolver, store):
    store.upsert(ALICE_URL, Protocol.DIASPORA, { 'handle' : 'alice@pod.example', 'nick' : 'alice' })

    record = cache.resolve('alice@pod.example')
    assert record is not None
    assert record.nick == 'alice'
    assert resolver.probed == [ 'alice@pod.example' ]


def test_other_protocol_is_ignored(cache, resolver, store):
    resolver.documents['bob@social.example'] = DirectoryDocument(
        url='https://social.example/users/bob',
        guid='',
        network=Protocol.ACTIVITYPUB,
        addr='bob@social.example')

    assert cache.resolve('bob@social.example') is None
    assert len(store) == 0


def test_lookup_url_by_guid(cache, store, resolver):
    cache.upsert(alice_document())
    assert cache.lookup_url_by_guid('aaaa1111') == ALICE_URL
    assert cache.lookup_url_by_guid('unknown') is None
    assert resolver.probed == []


def test_lookup_url_by_guid_skips_empty_url(cache, store):
    store.upsert('', Protocol.DIASPORA, { 'guid' : 'deleted' })
    assert cache.lookup_url_by_guid('deleted') is None


class FailingIdentityStore(MemoryIdentityStore):
    # Python 3.12 @override
    def select_first(self, **criteria: Any):
        raise IdentityStoreError('database is locked')


def test_store_failure_propagates(resolver, clock):
    cache = RemoteIdentityCache(
        resolver,
        FailingIdentityStore(),
        MemoryURIInterner(),
        MemoryInteractionStatistics(),
        DeferredTaskQueue(),
        TieredFreshnessPolicy(now=T0),
        CacheConfig(),
        now=clock)

    with pytest.raises(IdentityStoreError):
        cache.resolve('alice@pod.example')


def test_mixed_case_handle_hits_cache(cache, resolver):
    resolver.documents['Alice@pod.example'] = alice_document()

    for _ in range(3):
        record = cache.resolve('Alice@pod.example')
        assert record is not None
        assert record.handle == 'alice@pod.example'

    assert resolver.probed == [ 'Alice@pod.example' ]


@pytest.fixture
def sqlite_database() -> Iterator[SQLiteDatabase]:
    database = SQLiteDatabase(':memory:')
    yield database
    database.close()


@pytest.fixture
def sqlite_cache(sqlite_database: SQLiteDatabase, resolver: FakeDirectoryResolver, queue: DeferredTaskQueue, clock: Clock) -> RemoteIdentityCache:
    return RemoteIdentityCache(
        resolver,
        sqlite_database.identities,
        sqlite_database.interner,
        sqlite_database.statistics,
        queue,
        TieredFreshnessPolicy(now=T0),
        CacheConfig(),
        now=clock)


def test_sqlite_upsert_twice_keeps_one_record(sqlite_cache, sqlite_database, clock):
    sqlite_cache.upsert(alice_document())
    clock.now = T0 + timedelta(hours=1)
    sqlite_cache.upsert(alice_document(name='Alice L.'))

    with sqlite_database.transaction() as cur:
        assert cur.execute('SELECT COUNT(*) FROM identity').fetchone()[0] == 1

    record = sqlite_database.identities.select_first(url=ALICE_URL, protocol=Protocol.DIASPORA)
    assert record.display_name == 'Alice L.'
    assert record.created == T0
    assert record.updated == T0 + timedelta(hours=1)


def test_sqlite_created_backfilled_from_local_contact(sqlite_cache, sqlite_database, clock):
    sqlite_database.identities.upsert(ALICE_URL, Protocol.DIASPORA, { 'created' : NULL_DATETIME })
    known_since = T0 - timedelta(days=30)
    uri_id = sqlite_database.interner.intern(ALICE_URL)
    sqlite_database.statistics.add_contact(LocalContact(id=10, uri_id=uri_id, created=known_since))

    clock.now = T0 + timedelta(days=1)
    sqlite_cache.upsert(alice_document())

    record = sqlite_database.identities.select_first(url=ALICE_URL)
    assert record.created == known_since
    assert record.uri_id == uri_id


def test_sqlite_resolve_and_refresh_in_background(sqlite_cache, sqlite_database, resolver, queue, clock):
    resolver.documents['alice@pod.example'] = alice_document()
    assert sqlite_cache.resolve('alice@pod.example').is_complete()

    clock.now = T0 + timedelta(days=8)
    resolver.documents['alice@pod.example'] = alice_document(name='Alice L.')
    assert sqlite_cache.resolve('alice@pod.example').display_name == 'Alice Liddell'
    assert queue.run_pending() == 1

    assert sqlite_database.identities.select_first(url=ALICE_URL).display_name == 'Alice L.'


def test_closing_lets_background_refresh_finish(tmp_path, resolver):
    config = CacheConfig(database=str(tmp_path / 'fedicache.sqlite'))
    long_ago = datetime.now(UTC) - timedelta(days=30)
    resolver.documents['alice@pod.example'] = alice_document(name='Alice L.')

    with open_sqlite_cache(config, resolver=resolver) as opened:
        opened.database.identities.upsert(ALICE_URL, Protocol.DIASPORA, {
            'handle'  : 'alice@pod.example',
            'guid'    : 'aaaa1111',
            'uri_id'  : opened.database.interner.intern(ALICE_URL),
            'created' : long_ago,
            'updated' : long_ago,
        })
        record = opened.cache.resolve('alice@pod.example')
        assert record is not None
        assert record.updated == long_ago

    database = SQLiteDatabase(config.database)
    try:
        refreshed = database.identities.select_first(url=ALICE_URL)
        assert refreshed.display_name == 'Alice L.'
        assert refreshed.updated > long_ago
        assert refreshed.created == long_ago
    finally:
        database.close()
