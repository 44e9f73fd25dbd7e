"""
Classes that represent cached remote identities, and what is needed to create them.
"""

from datetime import UTC, datetime
from enum import IntEnum
from typing import Any, Final

import msgspec

from fedicache.protocols import Protocol

# Stored instead of a creation time that was never known
NULL_DATETIME : Final[datetime] = datetime(1, 1, 1, tzinfo=UTC)

# Maximum lengths of the string columns of a cached identity. Columns not listed are unbounded.
IDENTITY_FIELD_LIMITS : Final[dict[str, int]] = {
    'url'          : 255,
    'handle'       : 255,
    'guid'         : 255,
    'nick'         : 255,
    'display_name' : 255,
    'avatar_url'   : 255,
    'inbox_url'    : 255,
    'relay_url'    : 255,
    'notify_url'   : 255,
    'poll_url'     : 255,
    'confirm_url'  : 255,
    'alias'        : 255,
}


class IdentityRecord(msgspec.Struct, frozen=True, kw_only=True):
    """
    A remote identity as cached locally. Identified by protocol and url.
    """
    protocol: Protocol
    url: str
    handle: str = ''
    guid: str = ''
    nick: str = ''
    display_name: str = ''
    avatar_url: str = ''
    public_key: str = ''
    inbox_url: str = ''
    relay_url: str = ''  # batch endpoint
    notify_url: str = ''
    poll_url: str = ''
    confirm_url: str = ''
    alias: str = ''
    uri_id: int | None = None
    interacting_count: int = 0
    interacted_count: int = 0
    post_count: int = 0
    created: datetime | None = None
    updated: datetime | None = None


    def is_complete(self) -> bool:
        """
        A record that lacks any of these has never been fully stored, and must not be
        handed out without fetching it again first.
        """
        return bool(self.guid) and self.uri_id is not None and has_datetime(self.created)


    def as_json(self) -> bytes:
        ret = msgspec.json.encode(self)
        ret = msgspec.json.format(ret, indent=4)
        return ret


class DirectoryDocument(msgspec.Struct, kw_only=True):
    """
    What the directory says about a remote identity. Field names follow the
    directory, not the cache.
    """
    url: str
    guid: str
    network: str
    addr: str = ''
    nick: str = ''
    name: str = ''
    photo: str = ''
    request: str = ''
    batch: str = ''
    notify: str = ''
    poll: str = ''
    confirm: str = ''
    alias: str = ''
    pubkey: str = ''


class InteractionCounts(msgspec.Struct, frozen=True):
    interacting: int = 0
    interacted: int = 0
    posts: int = 0


class LocalContact(msgspec.Struct, frozen=True):
    """
    A contact known to the local node, as far as the cache is interested.
    """
    id: int
    uri_id: int
    created: datetime | None = None


def has_datetime(when: datetime | None) -> bool:
    """
    True if when is an actual point in time, not missing and not the sentinel.
    """
    return when is not None and when > NULL_DATETIME


def truncate_fields(fields: dict[str, Any], limits: dict[str, int] = IDENTITY_FIELD_LIMITS) -> dict[str, Any]:
    """
    Return a copy of fields in which all strings are cut to the declared maximum length
    of their column.
    """
    ret = {}
    for key, value in fields.items():
        limit = limits.get(key)
        if limit is not None and isinstance(value, str) and len(value) > limit:
            value = value[:limit]
        ret[key] = value
    return ret


def record_from_fields(fields: dict[str, Any]) -> IdentityRecord:
    return msgspec.convert(fields, type=IdentityRecord)


def fields_from_record(record: IdentityRecord) -> dict[str, Any]:
    return msgspec.structs.asdict(record)


class Gravity(IntEnum):
    """
    What kind of post a post is.
    """
    PARENT = 0
    ACTIVITY = 3
    COMMENT = 6
