"""
Abstractions for the directory that remote identities are resolved against.
"""

from abc import ABC, abstractmethod

from fedicache.model import DirectoryDocument
from fedicache.protocols import Protocol


class DirectoryResolutionError(RuntimeError):
    """
    Raised when a remote identity could not be reached, or what was obtained could not
    be understood. This is a condition of the remote data, not of the local system.
    """
    def __init__(self, handle: str, msg: str):
        super().__init__(f'Cannot resolve "{ handle }": { msg }')
        self.handle = handle
        self.msg = msg


class DirectoryResolver(ABC):
    """
    Knows how to find out about a remote identity over the network.
    """
    @abstractmethod
    def probe(self, handle: str, protocol: Protocol) -> DirectoryDocument:
        """
        Discover the identity with this handle. The protocol is the one the caller
        expects; the returned document states the one that was actually found.
        May raise DirectoryResolutionError.
        """
        ...
