"""
Stores that keep everything in memory. Nothing survives the process.
"""

from datetime import datetime
from typing import Any

import msgspec

from fedicache.model import (
    Gravity,
    IdentityRecord,
    InteractionCounts,
    LocalContact,
    fields_from_record,
    record_from_fields,
)
from fedicache.protocols import Protocol
from . import IdentityStore, IdentityStoreError, InteractionStatisticsSource, URIInterner


class MemoryIdentityStore(IdentityStore):
    def __init__(self) -> None:
        self._records : dict[tuple[str, Protocol], IdentityRecord] = {}


    # Python 3.12 @override
    def select_first(self, **criteria: Any) -> IdentityRecord | None:
        _check_fields(criteria)
        for record in self._records.values():
            if _matches(record, criteria):
                return record
        return None


    # Python 3.12 @override
    def select_first_by_guid(self, protocol: Protocol, guid: str) -> IdentityRecord | None:
        for record in self._records.values():
            if record.protocol == protocol and record.guid == guid and record.url:
                return record
        return None


    # Python 3.12 @override
    def _write(self, url: str, protocol: Protocol, fields: dict[str, Any]) -> None:
        _check_fields(fields)
        key = (url, protocol)
        existing = self._records.get(key)
        merged = fields_from_record(existing) if existing else {}
        merged.update(fields)
        merged['url'] = url
        merged['protocol'] = protocol
        try:
            self._records[key] = record_from_fields(merged)
        except msgspec.ValidationError as e:
            raise IdentityStoreError(str(e)) from e


    def __len__(self) -> int:
        return len(self._records)


def _check_fields(fields: dict[str, Any]) -> None:
    for name in fields:
        if name not in IdentityRecord.__struct_fields__:
            raise IdentityStoreError(f'No such field: { name }')


def _matches(record: IdentityRecord, criteria: dict[str, Any]) -> bool:
    for name, wanted in criteria.items():
        value = getattr(record, name)
        if isinstance(wanted, (list, tuple)):
            if value not in wanted:
                return False
        elif value != wanted:
            return False
    return True


class MemoryURIInterner(URIInterner):
    def __init__(self) -> None:
        self._ids : dict[str, int] = {}
        self._guids : dict[int, str] = {}


    # Python 3.12 @override
    def intern(self, uri: str, guid: str = '') -> int:
        if not uri:
            raise IdentityStoreError('Cannot intern an empty URI')
        ret = self._ids.get(uri)
        if ret is None:
            ret = len(self._ids) + 1
            self._ids[uri] = ret
        if guid and not self._guids.get(ret):
            self._guids[ret] = guid
        return ret


    def guid_of(self, uri_id: int) -> str | None:
        return self._guids.get(uri_id)


class MemoryInteractionStatistics(InteractionStatisticsSource):
    """
    Populate with the add_ methods.
    """
    def __init__(self) -> None:
        self._profiles : dict[str, InteractionCounts] = {}
        self._contacts : dict[int, LocalContact] = {}
        # (cid, relation_cid) -> (follows, last_interaction)
        self._relations : dict[tuple[int, int], tuple[bool, datetime]] = {}
        self._posts : list[tuple[int, Gravity]] = []


    def add_remote_profile(self, url: str, counts: InteractionCounts) -> None:
        self._profiles[url] = counts


    def add_contact(self, contact: LocalContact) -> None:
        self._contacts[contact.uri_id] = contact


    def add_relation(self, cid: int, relation_cid: int, follows: bool, last_interaction: datetime) -> None:
        self._relations[(cid, relation_cid)] = (follows, last_interaction)


    def add_post(self, author_id: int, gravity: Gravity = Gravity.PARENT) -> None:
        self._posts.append((author_id, gravity))


    # Python 3.12 @override
    def remote_profile_counts(self, url: str) -> InteractionCounts | None:
        return self._profiles.get(url)


    # Python 3.12 @override
    def local_contact(self, uri_id: int) -> LocalContact | None:
        return self._contacts.get(uri_id)


    # Python 3.12 @override
    def local_interaction_counts(self, contact_id: int, since: datetime) -> InteractionCounts:
        interacted = 0
        interacting = 0
        for (cid, relation_cid), (follows, last_interaction) in self._relations.items():
            if follows or last_interaction <= since:
                continue
            if cid == contact_id:
                interacted += 1
            if relation_cid == contact_id:
                interacting += 1
        posts = sum(1 for author_id, gravity in self._posts
                    if author_id == contact_id and gravity in (Gravity.PARENT, Gravity.COMMENT))
        return InteractionCounts(interacting=interacting, interacted=interacted, posts=posts)
