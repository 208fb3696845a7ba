"""A time-limited cache of authorization decisions."""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping, Optional, Union

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextHash:
    """SHA-256 digest of a request context; prints as lower-case hex."""

    digest: bytes

    def __post_init__(self) -> None:
        if len(self.digest) != 32:
            raise ValueError("a context hash is exactly 32 bytes")

    def __str__(self) -> str:
        return self.digest.hex()


class Decision(enum.Enum):
    """An authorization decision."""

    ALLOW = "ALLOW"
    DENY = "DENY"

    @classmethod
    def coerce(cls, value: Union["Decision", str]) -> "Decision":
        """Anything other than an allow is a deny."""
        if value is cls.ALLOW:
            return cls.ALLOW
        if isinstance(value, str) and value.upper() == cls.ALLOW.value:
            return cls.ALLOW
        return cls.DENY


@dataclass(frozen=True)
class _Key:
    principal: str
    action: str
    resource: str
    context_hash: ContextHash


@dataclass
class _Entry:
    decision: Decision
    expires_at: float
    diagnostics: Optional[str]


def _stable_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


class AuthorizationCache:
    """Caches decisions per principal, action, resource and context."""

    def __init__(self, ttl: Union[float, timedelta], max_size: int) -> None:
        self.ttl = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
        self.max_size = max_size
        self._entries: dict[_Key, _Entry] = {}
        self._lock = threading.Lock()
        log.info(
            "Initializing authorization cache with TTL: %ss, max size: %d", self.ttl, max_size
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def hash_context(context: Mapping[str, Any]) -> ContextHash:
        """Hash a context in a way that does not depend on key order."""
        stable = ";".join(f"{key}={_stable_value(context[key])}" for key in sorted(context))
        return ContextHash(hashlib.sha256(stable.encode("utf-8")).digest())

    def get(
        self, principal: str, action: str, resource: str, context_hash: ContextHash
    ) -> Optional[tuple[Decision, Optional[str]]]:
        """The cached decision and diagnostics, or None if absent or expired."""
        key = _Key(principal, action, resource, context_hash)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                log.debug("Cache miss for %s/%s/%s", principal, action, resource)
                return None
            if entry.expires_at > time.monotonic():
                log.debug("Cache hit for %s/%s/%s", principal, action, resource)
                return entry.decision, entry.diagnostics
        log.debug("Cache entry expired for %s/%s/%s", principal, action, resource)
        return None

    def put(
        self,
        principal: str,
        action: str,
        resource: str,
        context_hash: ContextHash,
        decision: Union[Decision, str],
        diagnostics: Optional[str] = None,
    ) -> None:
        """Store a decision; evicts entries first when the cache is full."""
        key = _Key(principal, action, resource, context_hash)
        entry = _Entry(Decision.coerce(decision), time.monotonic() + self.ttl, diagnostics)
        with self._lock:
            if len(self._entries) >= self.max_size:
                self._evict()
            self._entries[key] = entry
        log.debug("Cached authorization decision for %s/%s/%s", principal, action, resource)

    def _evict(self) -> None:
        log.info("Authorization cache full, evicting entries")
        now = time.monotonic()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            log.info("Evicted %d expired entries from authorization cache", len(expired))
            return

        remove_count = self.max_size // 10
        if remove_count == 0:
            return
        oldest = sorted(self._entries, key=lambda k: self._entries[k].expires_at)
        for key in oldest[:remove_count]:
            del self._entries[key]
        log.info("Evicted %d oldest entries from authorization cache", remove_count)