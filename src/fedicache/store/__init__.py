"""
Abstractions for where cached identities, interned URIs and interaction statistics are kept.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, final

from fedicache.model import (
    IdentityRecord,
    InteractionCounts,
    LocalContact,
    truncate_fields,
)
from fedicache.protocols import Protocol


class IdentityStoreError(RuntimeError):
    """
    Raised when a store cannot be reached, or rejects a read or a write. Unlike problems
    with remote data, this is never absorbed.
    """
    def __init__(self, msg: str):
        super().__init__(f'Identity store failure: { msg }')


class IdentityStore(ABC):
    """
    Keeps IdentityRecords, keyed by (url, protocol).
    """
    @abstractmethod
    def select_first(self, **criteria: Any) -> IdentityRecord | None:
        """
        Return the first record, in insertion order, whose fields equal all criteria.
        A list or tuple criterion matches any of its values.
        """
        ...


    @abstractmethod
    def select_first_by_guid(self, protocol: Protocol, guid: str) -> IdentityRecord | None:
        """
        Return the first record of this protocol with this guid whose url is not empty.
        """
        ...


    @final
    def upsert(self, url: str, protocol: Protocol, fields: dict[str, Any]) -> None:
        """
        Insert a record with these fields, or update the one with this url and protocol.
        Values are cut to the lengths the store can hold first.
        """
        self._write(url, protocol, truncate_fields(fields))


    @abstractmethod
    def _write(self, url: str, protocol: Protocol, fields: dict[str, Any]) -> None:
        ...


class URIInterner(ABC):
    """
    Maps URIs to stable integer ids.
    """
    @abstractmethod
    def intern(self, uri: str, guid: str = '') -> int:
        """
        Return the id of this URI, allocating one if it is new. The same URI always
        produces the same id. A guid is only recorded if none was known for the URI yet.
        """
        ...


class InteractionStatisticsSource(ABC):
    """
    Where the follower, following and post counts of an identity come from.
    """
    @abstractmethod
    def remote_profile_counts(self, url: str) -> InteractionCounts | None:
        """
        Counts as published by the identity's own server and cached from a richer
        protocol, if any are known.
        """
        ...


    @abstractmethod
    def local_contact(self, uri_id: int) -> LocalContact | None:
        ...


    @abstractmethod
    def local_interaction_counts(self, contact_id: int, since: datetime) -> InteractionCounts:
        """
        Counts as observed locally: distinct contacts this contact interacted with, and that
        interacted with it, other than by following, since the given time. And the number
        of posts and comments it authored.
        """
        ...
