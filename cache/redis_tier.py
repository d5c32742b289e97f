"""
cache/redis_tier.py -- Redis implementation of the shared cache tier.

Thin wrapper: keys are namespaced under "stockfolio:cache:", values are the
raw bytes TieredCache hands over, and expiry is Redis-native (SETEX), so the
shared tier self-expires with no sweep on our side.

Errors are NOT handled here. TieredCache owns the degrade-to-miss policy, so
this class stays a faithful adapter and can be health-checked via ping().
"""

from __future__ import annotations

from typing import Optional

from redis import Redis

from core.config import Settings

_KEY_PREFIX = "stockfolio:cache:"


class RedisTier:
    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["RedisTier"]:
        """Build a tier from REDIS_URL, or return None when it is not configured.

        The client connects lazily; an unreachable server surfaces on first use
        as a logged cache miss rather than a startup failure.
        """
        if not settings.redis_url:
            return None
        client = Redis.from_url(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[bytes]:
        return self.client.get(_KEY_PREFIX + key)

    def set_with_ttl(self, key: str, data: bytes, ttl_seconds: int) -> None:
        self.client.setex(_KEY_PREFIX + key, ttl_seconds, data)

    def delete(self, key: str) -> None:
        self.client.delete(_KEY_PREFIX + key)

    def ping(self) -> bool:
        return bool(self.client.ping())

    def close(self) -> None:
        self.client.close()
