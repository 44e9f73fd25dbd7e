"""
Fixtures shared by the unit tests.
"""

from datetime import UTC, datetime

import pytest

from fedicache.config import CacheConfig
from fedicache.directory import DirectoryResolutionError, DirectoryResolver
from fedicache.freshness import TieredFreshnessPolicy
from fedicache.identitycache import RemoteIdentityCache
from fedicache.model import DirectoryDocument
from fedicache.protocols import Protocol
from fedicache.store.memory import MemoryIdentityStore, MemoryInteractionStatistics, MemoryURIInterner
from fedicache.worker import DeferredTaskQueue

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class Clock:
    """
    A clock that only moves when told to.
    """
    def __init__(self, now: datetime = T0):
        self.now = now


    def __call__(self) -> datetime:
        return self.now


class FakeDirectoryResolver(DirectoryResolver):
    """
    Knows the documents it has been given, and nothing else.
    """
    def __init__(self) -> None:
        self.documents : dict[str, DirectoryDocument] = {}
        self.probed : list[str] = []


    def probe(self, handle: str, protocol: Protocol) -> DirectoryDocument:
        self.probed.append(handle)
        ret = self.documents.get(handle)
        if ret is None:
            raise DirectoryResolutionError(handle, 'not known to the fake directory')
        return ret


def alice_document(**overrides) -> DirectoryDocument:
    fields = {
        'url'     : 'https://pod.example/u/alice',
        'guid'    : 'aaaa1111',
        'network' : Protocol.DIASPORA,
        'addr'    : 'Alice@pod.example',
        'nick'    : 'alice',
        'name'    : 'Alice Liddell',
        'photo'   : 'https://pod.example/uploads/alice.jpg',
        'batch'   : 'https://pod.example/receive/public',
        'notify'  : 'https://pod.example/receive/users/aaaa1111',
        'poll'    : 'https://pod.example/public/alice.atom',
        'alias'   : 'https://pod.example/people/aaaa1111',
        'pubkey'  : '-----BEGIN PUBLIC KEY-----\nMIIB\n-----END PUBLIC KEY-----',
    }
    fields.update(overrides)
    return DirectoryDocument(**fields)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def resolver() -> FakeDirectoryResolver:
    return FakeDirectoryResolver()


@pytest.fixture
def store() -> MemoryIdentityStore:
    return MemoryIdentityStore()


@pytest.fixture
def interner() -> MemoryURIInterner:
    return MemoryURIInterner()


@pytest.fixture
def statistics() -> MemoryInteractionStatistics:
    return MemoryInteractionStatistics()


@pytest.fixture
def queue() -> DeferredTaskQueue:
    return DeferredTaskQueue()


@pytest.fixture
def cache(
    resolver: FakeDirectoryResolver,
    store: MemoryIdentityStore,
    interner: MemoryURIInterner,
    statistics: MemoryInteractionStatistics,
    queue: DeferredTaskQueue,
    clock: Clock
) -> RemoteIdentityCache:
    return RemoteIdentityCache(
        resolver,
        store,
        interner,
        statistics,
        queue,
        TieredFreshnessPolicy(now=T0),
        CacheConfig(),
        now=clock)
