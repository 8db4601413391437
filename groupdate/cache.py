"""Two-tier cache for composite event views.

Keys are ``<prefix>:<event token>:<viewer fingerprint>``. Redis is the shared
tier and is authoritative whenever it answers; the in-process ``LocalTTLCache``
is only read when Redis errors. Every mutation of an event drops all of its
keys in both tiers, for every viewer.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from groupdate.identity import Credentials

logger = logging.getLogger(__name__)

INVALIDATION_OPERATIONS = frozenset(
    {
        "vote",
        "blocks",
        "join",
        "leave",
        "switch_name",
        "phase",
        "final_date",
        "results_visibility",
        "override",
    }
)

_GLOB_SPECIAL = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape a literal for use inside a Redis MATCH pattern."""
    return "".join(f"\\{c}" if c in _GLOB_SPECIAL else c for c in value)


def viewer_fingerprint(credentials: Credentials) -> str:
    if credentials.user_id:
        kind = "user"
    elif credentials.session_token:
        kind = "session"
    elif credentials.preferred_slug:
        kind = "person"
    else:
        return "anon"
    raw = "\x1f".join(
        [
            credentials.user_id or "",
            credentials.session_token or "",
            credentials.preferred_slug or "",
        ]
    )
    return f"{kind}:{hashlib.sha256(raw.encode()).hexdigest()[:24]}"


def token_prefix(key_prefix: str, token: str) -> str:
    if ":" in token:
        raise ValueError("event token must not contain ':'")
    return f"{key_prefix}:{token}:"


def view_key(key_prefix: str, token: str, fingerprint: str) -> str:
    return f"{token_prefix(key_prefix, token)}{fingerprint}"


def generation_key(key_prefix: str, token: str) -> str:
    return f"{key_prefix}-gen:{token}"


class LocalTTLCache:
    """Bounded in-process TTL cache. Oldest entries are evicted first."""

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: str, ttl_sec: float) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + ttl_sec, value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()


class EventViewCache:
    def __init__(
        self,
        shared: redis.Redis | None,
        local: LocalTTLCache | None = None,
        ttl_sec: int = 120,
        key_prefix: str = "event_view",
    ):
        self.shared = shared
        self.local = local if local is not None else LocalTTLCache()
        self.ttl_sec = ttl_sec
        self.key_prefix = key_prefix
        # Outlives any view written under it; an expired counter reads as 0.
        self.generation_ttl_sec = ttl_sec * 2
        self._local_generations = LocalTTLCache(self.local.max_entries)
        self._stats = {
            "hits": 0,
            "local_hits": 0,
            "misses": 0,
            "sets": 0,
            "skipped_sets": 0,
            "invalidations": 0,
            "keys_invalidated": 0,
            "errors": 0,
        }

    def stats(self) -> dict[str, int]:
        return {
            **self._stats,
            "local_entries": len(self.local),
            "local_generations": len(self._local_generations),
        }

    def _local_generation(self, token: str) -> int:
        return int(self._local_generations.get(token) or 0)

    async def generation(self, token: str) -> int:
        """Snapshot to pass back to ``set`` once the view is computed.

        The counter lives in Redis so every worker sees every invalidation.
        The per-process counter is only used while Redis is unreachable.
        """
        if self.shared is not None:
            try:
                return int(await self.shared.get(generation_key(self.key_prefix, token)) or 0)
            except (RedisError, OSError) as e:
                self._stats["errors"] += 1
                logger.warning("Shared generation read failed, using local counter: %r", e)
        return self._local_generation(token)

    async def get(self, token: str, fingerprint: str) -> dict[str, Any] | None:
        key = view_key(self.key_prefix, token, fingerprint)
        raw: str | None = None
        if self.shared is not None:
            try:
                raw = await self.shared.get(key)
            except (RedisError, OSError) as e:
                self._stats["errors"] += 1
                logger.warning("Shared cache read failed, using local tier: %r", e)
                raw = self.local.get(key)
                if raw is not None:
                    self._stats["local_hits"] += 1
            else:
                if raw is None:
                    self.local.discard(key)
        else:
            raw = self.local.get(key)
            if raw is not None:
                self._stats["local_hits"] += 1

        if raw is None:
            self._stats["misses"] += 1
            return None
        try:
            view = json.loads(raw)
        except ValueError:
            logger.warning("Dropping undecodable cache entry for event %s...", token[:8])
            self.local.discard(key)
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        return view

    async def set(
        self,
        token: str,
        fingerprint: str,
        view: dict[str, Any],
        generation: int | None = None,
    ) -> bool:
        """Store a computed view. Returns False when skipped.

        A write is skipped if the event was invalidated after ``generation``
        was taken, in this process or any other, so a view computed from
        stale reads never lands.
        """
        key = view_key(self.key_prefix, token, fingerprint)
        raw = json.dumps(view, default=str)
        if self.shared is not None:
            try:
                stored = await self._set_shared(token, key, raw, generation)
            except WatchError:
                stored = False
            except (RedisError, OSError) as e:
                self._stats["errors"] += 1
                logger.warning("Shared cache write failed: %r", e)
                stored = generation is None or generation == self._local_generation(token)
        else:
            stored = generation is None or generation == self._local_generation(token)

        if not stored:
            self._stats["skipped_sets"] += 1
            logger.debug("Skipping stale view write for event %s...", token[:8])
            return False
        self.local.set(key, raw, self.ttl_sec)
        self._stats["sets"] += 1
        return True

    async def _set_shared(self, token: str, key: str, raw: str, generation: int | None) -> bool:
        if generation is None:
            await self.shared.setex(key, self.ttl_sec, raw)
            return True
        gen_key = generation_key(self.key_prefix, token)
        async with self.shared.pipeline(transaction=True) as pipe:
            await pipe.watch(gen_key)
            if int(await pipe.get(gen_key) or 0) != generation:
                return False
            pipe.multi()
            pipe.setex(key, self.ttl_sec, raw)
            await pipe.execute()
        return True

    async def invalidate(self, token: str, operation: str) -> int:
        """Drop every cached view of the event. Never raises on tier failure."""
        if operation not in INVALIDATION_OPERATIONS:
            logger.warning("Unknown invalidation operation %r", operation)
        prefix = token_prefix(self.key_prefix, token)
        self._local_generations.set(token, str(self._local_generation(token) + 1), self.generation_ttl_sec)
        removed = self.local.delete_prefix(prefix)

        if self.shared is not None:
            try:
                gen_key = generation_key(self.key_prefix, token)
                async with self.shared.pipeline(transaction=True) as pipe:
                    pipe.incr(gen_key)
                    pipe.expire(gen_key, self.generation_ttl_sec)
                    await pipe.execute()
                keys = [k async for k in self.shared.scan_iter(match=f"{escape_glob(prefix)}*", count=500)]
                if keys:
                    removed = max(removed, await self.shared.delete(*keys))
            except (RedisError, OSError) as e:
                self._stats["errors"] += 1
                logger.warning(
                    "Shared cache invalidation failed event=%s... op=%s: %r",
                    token[:8],
                    operation,
                    e,
                )

        self._stats["invalidations"] += 1
        self._stats["keys_invalidated"] += removed
        logger.info("Invalidated %d cached views event=%s... op=%s", removed, token[:8], operation)
        return removed
