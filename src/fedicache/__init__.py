"""
Core module.
"""

from types import TracebackType

from fedicache.config import CacheConfig
from fedicache.directory import DirectoryResolver
from fedicache.directory.webfinger import WebFingerDirectoryResolver
from fedicache.freshness import TieredFreshnessPolicy
from fedicache.identitycache import RefreshPolicy, RemoteIdentityCache
from fedicache.store.sqlite import SQLiteDatabase
from fedicache.worker import TaskQueue, ThreadPoolTaskQueue

__all__ = [
    'CacheConfig',
    'OpenCache',
    'RefreshPolicy',
    'RemoteIdentityCache',
    'open_sqlite_cache',
]


class OpenCache:
    """
    A cache together with the database and the task queue it runs on. Closing it lets
    the queued background jobs finish before the database goes away.
    """
    def __init__(self, cache: RemoteIdentityCache, database: SQLiteDatabase, queue: TaskQueue):
        self.cache = cache
        self.database = database
        self.queue = queue


    def close(self) -> None:
        try:
            self.queue.shutdown(wait=True)
        finally:
            self.database.close()


    def __enter__(self) -> 'OpenCache':
        return self


    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
        self.close()


def open_sqlite_cache(
    config: CacheConfig,
    queue: TaskQueue | None = None,
    resolver: DirectoryResolver | None = None
) -> OpenCache:
    """
    Assemble a cache that keeps its data in the configured SQLite database. Unless a
    queue is given, background updates run on a thread pool of the configured size.
    Unless a resolver is given, identities are resolved over the network with WebFinger.
    The caller must close the returned OpenCache; that also shuts down the queue.
    """
    database = SQLiteDatabase(config.database)
    if queue is None:
        queue = ThreadPoolTaskQueue(config.worker_threads)
    cache = RemoteIdentityCache(
        resolver or WebFingerDirectoryResolver(config),
        database.identities,
        database.interner,
        database.statistics,
        queue,
        TieredFreshnessPolicy(),
        config)
    return OpenCache(cache, database, queue)
