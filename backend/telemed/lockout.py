"""
Brute-force defense primitives: the lock escalation policy and the IP block
registry shared by every login attempt.

The registry has two backends. ``InMemoryIPBlockRegistry`` keeps blocks in a
process-local dict (lost on restart, not shared between workers);
``RedisIPBlockRegistry`` stores them as expiring keys so every instance sees
the same blocks. ``get_ip_block_registry`` picks one from ``REDIS_URL``.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

import redis
from fastapi import Request

from .config import settings

logger = logging.getLogger(__name__)

LOCK_ESCALATION_SECONDS = (
    30 * 60,
    60 * 60,
    90 * 60,
    120 * 60,
)
MAX_LOCK_SECONDS = 24 * 60 * 60


def lock_duration_seconds(prior_lock_count: int) -> int:
    """How long to lock an account that has already been locked ``prior_lock_count`` times."""
    if prior_lock_count <= 0:
        return LOCK_ESCALATION_SECONDS[0]
    if prior_lock_count < len(LOCK_ESCALATION_SECONDS):
        return LOCK_ESCALATION_SECONDS[prior_lock_count]
    return MAX_LOCK_SECONDS


class IPBlockRegistry:
    def block(self, ip: str, seconds: int) -> None:
        raise NotImplementedError

    def is_blocked(self, ip: str) -> bool:
        raise NotImplementedError

    def unblock(self, ip: str) -> None:
        raise NotImplementedError


class InMemoryIPBlockRegistry(IPBlockRegistry):
    """Thread-safe ip -> deadline map. A later block replaces an earlier one."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._blocks: Dict[str, float] = {}

    def block(self, ip: str, seconds: int) -> None:
        if not ip:
            return
        with self._lock:
            self._blocks[ip] = self._clock() + seconds

    def is_blocked(self, ip: str) -> bool:
        if not ip:
            return False
        with self._lock:
            until = self._blocks.get(ip)
            if until is None:
                return False
            if self._clock() >= until:
                del self._blocks[ip]
                return False
            return True

    def unblock(self, ip: str) -> None:
        if not ip:
            return
        with self._lock:
            self._blocks.pop(ip, None)


class RedisIPBlockRegistry(IPBlockRegistry):
    KEY_PREFIX = "ipblock:"

    def __init__(self, client):
        self.client = client

    def _key(self, ip: str) -> str:
        return f"{self.KEY_PREFIX}{ip}"

    def block(self, ip: str, seconds: int) -> None:
        if not ip:
            return
        if seconds <= 0:
            self.unblock(ip)
            return
        self.client.setex(self._key(ip), int(seconds), "1")

    def is_blocked(self, ip: str) -> bool:
        if not ip:
            return False
        return bool(self.client.exists(self._key(ip)))

    def unblock(self, ip: str) -> None:
        if not ip:
            return
        self.client.delete(self._key(ip))


_registry: Optional[IPBlockRegistry] = None


def get_ip_block_registry() -> IPBlockRegistry:
    """Process-wide registry; also usable as a FastAPI dependency."""
    global _registry
    if _registry is None:
        url = settings.redis_url
        if url:
            pool = redis.ConnectionPool.from_url(
                url,
                socket_connect_timeout=2.0,
                socket_timeout=2.0,
                retry_on_timeout=True,
            )
            _registry = RedisIPBlockRegistry(redis.Redis(connection_pool=pool))
            logger.info("IP blocks stored in Redis")
        else:
            _registry = InMemoryIPBlockRegistry()
            logger.info("IP blocks stored in process memory")
    return _registry


def get_client_ip(request: Request) -> str:
    if settings.TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""
