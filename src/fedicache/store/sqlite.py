"""
Stores kept in a SQLite database file.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
import os
import sqlite3
import threading
from typing import Any

import msgspec

from fedicache.model import (
    Gravity,
    IdentityRecord,
    InteractionCounts,
    LocalContact,
    record_from_fields,
)
from fedicache.protocols import Protocol
from fedicache.reporting import trace
from . import IdentityStore, IdentityStoreError, InteractionStatisticsSource, URIInterner

IDENTITY_COLUMNS = list(IdentityRecord.__struct_fields__)
_DATETIME_COLUMNS = ( 'created', 'updated' )

_SCHEMA = [
    """CREATE TABLE IF NOT EXISTS identity(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        protocol TEXT NOT NULL,
        url TEXT NOT NULL,
        handle TEXT NOT NULL DEFAULT '',
        guid TEXT NOT NULL DEFAULT '',
        nick TEXT NOT NULL DEFAULT '',
        display_name TEXT NOT NULL DEFAULT '',
        avatar_url TEXT NOT NULL DEFAULT '',
        public_key TEXT NOT NULL DEFAULT '',
        inbox_url TEXT NOT NULL DEFAULT '',
        relay_url TEXT NOT NULL DEFAULT '',
        notify_url TEXT NOT NULL DEFAULT '',
        poll_url TEXT NOT NULL DEFAULT '',
        confirm_url TEXT NOT NULL DEFAULT '',
        alias TEXT NOT NULL DEFAULT '',
        uri_id INTEGER,
        interacting_count INTEGER NOT NULL DEFAULT 0,
        interacted_count INTEGER NOT NULL DEFAULT 0,
        post_count INTEGER NOT NULL DEFAULT 0,
        created TEXT,
        updated TEXT,
        UNIQUE(protocol, url)
    )""",
    "CREATE INDEX IF NOT EXISTS identity_handle ON identity(protocol, handle)",
    "CREATE INDEX IF NOT EXISTS identity_guid ON identity(protocol, guid)",
    """CREATE TABLE IF NOT EXISTS item_uri(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        uri TEXT NOT NULL UNIQUE,
        guid TEXT NOT NULL DEFAULT ''
    )""",
    """CREATE TABLE IF NOT EXISTS contact(
        id INTEGER PRIMARY KEY,
        uri_id INTEGER NOT NULL UNIQUE,
        created TEXT
    )""",
    """CREATE TABLE IF NOT EXISTS contact_relation(
        cid INTEGER NOT NULL,
        relation_cid INTEGER NOT NULL,
        follows INTEGER NOT NULL DEFAULT 0,
        last_interaction TEXT NOT NULL,
        PRIMARY KEY(cid, relation_cid)
    )""",
    """CREATE TABLE IF NOT EXISTS post(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        author_id INTEGER NOT NULL,
        gravity INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS profile_cache(
        url TEXT PRIMARY KEY,
        following_count INTEGER NOT NULL DEFAULT 0,
        followers_count INTEGER NOT NULL DEFAULT 0,
        statuses_count INTEGER NOT NULL DEFAULT 0
    )""",
]


def to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat(timespec='microseconds')
    if isinstance(value, Enum):
        return value.value
    return value


def datetime_from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class SQLiteDatabase:
    """
    One connection to one database file, shared by the stores that live in it. The
    connection may be used from more than one thread, one at a time.
    """
    def __init__(self, path: str = 'fedicache.sqlite'):
        if path != ':memory:':
            # If no directory, default to current working directory
            os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        trace(f'Opening SQLite database { path }')
        try:
            self._db = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as e:
            raise IdentityStoreError(f'Cannot open { path }: { e }') from e
        self._db.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self.transaction() as cur:
            for statement in _SCHEMA:
                cur.execute(statement)

        self.identities = SQLiteIdentityStore(self)
        self.interner = SQLiteURIInterner(self)
        self.statistics = SQLiteInteractionStatistics(self)


    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run the statements issued on the yielded cursor as one transaction. sqlite3 errors
        become IdentityStoreErrors.
        """
        with self._lock:
            try:
                cur = self._db.cursor()
            except sqlite3.Error as e:
                raise IdentityStoreError(str(e)) from e
            try:
                yield cur
                self._db.commit()
            except sqlite3.Error as e:
                self._db.rollback()
                raise IdentityStoreError(str(e)) from e
            except BaseException:
                self._db.rollback()
                raise
            finally:
                cur.close()


    def close(self) -> None:
        with self._lock:
            self._db.close()


class SQLiteIdentityStore(IdentityStore):
    def __init__(self, database: SQLiteDatabase):
        self._database = database


    # Python 3.12 @override
    def select_first(self, **criteria: Any) -> IdentityRecord | None:
        where = []
        params : list[Any] = []
        for name, wanted in criteria.items():
            if name not in IDENTITY_COLUMNS:
                raise IdentityStoreError(f'No such field: { name }')
            if isinstance(wanted, (list, tuple)):
                if not wanted:
                    return None
                where.append(f'{ name } IN ({ ", ".join("?" * len(wanted)) })')
                params.extend(to_db(w) for w in wanted)
            elif wanted is None:
                where.append(f'{ name } IS NULL')
            else:
                where.append(f'{ name } = ?')
                params.append(to_db(wanted))

        sql = 'SELECT * FROM identity'
        if where:
            sql += ' WHERE ' + ' AND '.join(where)
        sql += ' ORDER BY id LIMIT 1'
        return self._select_one(sql, params)


    # Python 3.12 @override
    def select_first_by_guid(self, protocol: Protocol, guid: str) -> IdentityRecord | None:
        return self._select_one(
            "SELECT * FROM identity WHERE url != '' AND protocol = ? AND guid = ? ORDER BY id LIMIT 1",
            [ to_db(protocol), guid ])


    # Python 3.12 @override
    def _write(self, url: str, protocol: Protocol, fields: dict[str, Any]) -> None:
        columns = [ name for name in fields if name not in ('url', 'protocol') ]
        for name in columns:
            if name not in IDENTITY_COLUMNS:
                raise IdentityStoreError(f'No such field: { name }')

        all_columns = [ 'protocol', 'url', *columns ]
        sql = f'INSERT INTO identity({ ", ".join(all_columns) }) VALUES({ ", ".join("?" * len(all_columns)) })'
        if columns:
            sql += ' ON CONFLICT(protocol, url) DO UPDATE SET ' + ', '.join(f'{ name }=excluded.{ name }' for name in columns)
        else:
            sql += ' ON CONFLICT(protocol, url) DO NOTHING'

        with self._database.transaction() as cur:
            cur.execute(sql, [ to_db(protocol), url, *( to_db(fields[name]) for name in columns ) ])


    def _select_one(self, sql: str, params: list[Any]) -> IdentityRecord | None:
        with self._database.transaction() as cur:
            row = cur.execute(sql, params).fetchone()
        if row is None:
            return None

        fields = dict(row)
        del fields['id']
        for name in _DATETIME_COLUMNS:
            fields[name] = datetime_from_db(fields[name])
        try:
            return record_from_fields(fields)
        except msgspec.ValidationError as e:
            raise IdentityStoreError(f'Invalid identity row: { e }') from e


class SQLiteURIInterner(URIInterner):
    def __init__(self, database: SQLiteDatabase):
        self._database = database


    # Python 3.12 @override
    def intern(self, uri: str, guid: str = '') -> int:
        if not uri:
            raise IdentityStoreError('Cannot intern an empty URI')
        with self._database.transaction() as cur:
            cur.execute(
                "INSERT INTO item_uri(uri, guid) VALUES(?, ?) "
                "ON CONFLICT(uri) DO UPDATE SET guid=excluded.guid WHERE item_uri.guid = '' AND excluded.guid != ''",
                (uri, guid))
            row = cur.execute("SELECT id FROM item_uri WHERE uri = ?", (uri,)).fetchone()
        return int(row['id'])


class SQLiteInteractionStatistics(InteractionStatisticsSource):
    """
    The add_ methods are for whoever owns the contact, relation, post and profile tables.
    """
    def __init__(self, database: SQLiteDatabase):
        self._database = database


    def add_remote_profile(self, url: str, counts: InteractionCounts) -> None:
        with self._database.transaction() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO profile_cache(url, following_count, followers_count, statuses_count) VALUES(?, ?, ?, ?)",
                (url, counts.interacted, counts.interacting, counts.posts))


    def add_contact(self, contact: LocalContact) -> None:
        with self._database.transaction() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO contact(id, uri_id, created) VALUES(?, ?, ?)",
                (contact.id, contact.uri_id, to_db(contact.created)))


    def add_relation(self, cid: int, relation_cid: int, follows: bool, last_interaction: datetime) -> None:
        with self._database.transaction() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO contact_relation(cid, relation_cid, follows, last_interaction) VALUES(?, ?, ?, ?)",
                (cid, relation_cid, int(follows), to_db(last_interaction)))


    def add_post(self, author_id: int, gravity: Gravity = Gravity.PARENT) -> None:
        with self._database.transaction() as cur:
            cur.execute("INSERT INTO post(author_id, gravity) VALUES(?, ?)", (author_id, int(gravity)))


    # Python 3.12 @override
    def remote_profile_counts(self, url: str) -> InteractionCounts | None:
        with self._database.transaction() as cur:
            row = cur.execute(
                "SELECT following_count, followers_count, statuses_count FROM profile_cache WHERE url = ?",
                (url,)).fetchone()
        if row is None:
            return None
        return InteractionCounts(
            interacting=row['followers_count'],
            interacted=row['following_count'],
            posts=row['statuses_count'])


    # Python 3.12 @override
    def local_contact(self, uri_id: int) -> LocalContact | None:
        with self._database.transaction() as cur:
            row = cur.execute("SELECT id, uri_id, created FROM contact WHERE uri_id = ?", (uri_id,)).fetchone()
        if row is None:
            return None
        return LocalContact(row['id'], row['uri_id'], datetime_from_db(row['created']))


    # Python 3.12 @override
    def local_interaction_counts(self, contact_id: int, since: datetime) -> InteractionCounts:
        cutoff = to_db(since)
        with self._database.transaction() as cur:
            interacted = cur.execute(
                "SELECT COUNT(*) FROM contact_relation WHERE cid = ? AND NOT follows AND last_interaction > ?",
                (contact_id, cutoff)).fetchone()[0]
            interacting = cur.execute(
                "SELECT COUNT(*) FROM contact_relation WHERE relation_cid = ? AND NOT follows AND last_interaction > ?",
                (contact_id, cutoff)).fetchone()[0]
            posts = cur.execute(
                "SELECT COUNT(*) FROM post WHERE author_id = ? AND gravity IN (?, ?)",
                (contact_id, int(Gravity.PARENT), int(Gravity.COMMENT))).fetchone()[0]
        return InteractionCounts(interacting=interacting, interacted=interacted, posts=posts)
