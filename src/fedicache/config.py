"""
Configuration of the identity cache.
"""

import json

import msgspec

from fedicache.protocols import Protocol
from fedicache.reporting import trace
from fedicache.utils import FEDICACHE_VERSION


class CacheConfig(msgspec.Struct, kw_only=True):
    """
    Everything that can be configured about an identity cache. Saved and loaded as JSON;
    values not given in a file take the defaults here.
    """
    protocol: Protocol = Protocol.DIASPORA
    database: str = 'fedicache.sqlite'
    user_agent: str = f'fedicache/{ FEDICACHE_VERSION }'
    http_timeout: float = 30.0
    verify_tls: bool = True
    max_redirects: int = 10
    interaction_window_days: int = 180
    worker_threads: int = 2
    type: str = 'fedicache-config'


    @staticmethod
    def load(filename: str) -> 'CacheConfig':
        """
        Read a file, and instantiate a CacheConfig from what we find.
        """
        trace(f'CacheConfig.load({ filename })')
        with open(filename, 'r', encoding='utf-8') as f:
            config_json = json.load(f)

        ret = msgspec.convert(config_json, type=CacheConfig)
        if not ret.is_compatible_type():
            raise msgspec.ValidationError(f'Not a fedicache configuration file: "{ filename }"')
        if ret.interaction_window_days < 0:
            raise msgspec.ValidationError('interaction_window_days must not be negative')
        if ret.worker_threads < 1:
            raise msgspec.ValidationError('worker_threads must be at least 1')
        return ret


    def is_compatible_type(self) -> bool:
        return self.type == 'fedicache-config'


    def with_overrides(self, **overrides) -> 'CacheConfig':
        """
        Return a copy of this config in which the non-None overrides have been applied.
        """
        return msgspec.structs.replace(self, **{ key: value for key, value in overrides.items() if value is not None })


    def as_json(self) -> bytes:
        ret = msgspec.json.encode(self)
        ret = msgspec.json.format(ret, indent=4)
        return ret


    def save(self, filename: str) -> None:
        with open(filename, 'wb') as f:
            f.write(self.as_json())
