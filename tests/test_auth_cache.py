import hashlib
import itertools
from datetime import timedelta
from unittest import mock

import pytest

from avpauthz.auth_cache import AuthorizationCache, ContextHash, Decision


def _hash(**context):
    return AuthorizationCache.hash_context(context)


def test_empty_context_hashes_empty_string():
    assert _hash().digest == hashlib.sha256(b"").digest()


def test_hash_is_hex_of_digest():
    h = _hash(a="x")
    text = str(h)
    assert len(text) == 64
    assert bytes.fromhex(text) == h.digest


def test_hash_independent_of_key_order():
    first = AuthorizationCache.hash_context({"a": "1", "b": 2, "c": [1, 2]})
    second = AuthorizationCache.hash_context({"c": [1, 2], "b": 2, "a": "1"})
    assert first == second


def test_string_and_number_with_same_text_hash_alike():
    assert _hash(n="5") == _hash(n=5)


def test_quoted_string_differs_from_bare():
    assert _hash(n='"x"') == _hash(n='"x"')
    assert not _hash(n="x") == _hash(n=["x"])


def test_context_hash_requires_32_bytes():
    with pytest.raises(ValueError):
        ContextHash(b"short")


def test_get_after_put_returns_decision():
    cache = AuthorizationCache(60, 10)
    h = _hash(a="1")
    cache.put("User::alice", 'Action::"read"', "docs::1", h, Decision.ALLOW, None)
    assert cache.get("User::alice", 'Action::"read"', "docs::1", h) == (Decision.ALLOW, None)


def test_diagnostics_are_kept():
    cache = AuthorizationCache(timedelta(seconds=60), 10)
    h = _hash()
    cache.put("p", "a", "r", h, Decision.DENY, "policy error")
    assert cache.get("p", "a", "r", h) == (Decision.DENY, "policy error")


def test_miss_on_different_context():
    cache = AuthorizationCache(60, 10)
    cache.put("p", "a", "r", _hash(x="1"), Decision.ALLOW)
    assert cache.get("p", "a", "r", _hash(x="2")) is None


def test_non_allow_is_stored_as_deny():
    cache = AuthorizationCache(60, 10)
    h = _hash()
    cache.put("p", "a", "r", h, "SOMETHING_ELSE")
    cache.put("q", "a", "r", h, "allow")
    assert cache.get("p", "a", "r", h)[0] is Decision.DENY
    assert cache.get("q", "a", "r", h)[0] is Decision.ALLOW


def test_zero_ttl_entries_expire():
    cache = AuthorizationCache(0, 10)
    h = _hash()
    cache.put("p", "a", "r", h, Decision.ALLOW)
    assert cache.get("p", "a", "r", h) is None


def test_full_cache_drops_expired_entries_first():
    cache = AuthorizationCache(0, 3)
    h = _hash()
    for name in ("a", "b", "c"):
        cache.put(name, "act", "res", h, Decision.ALLOW)
    assert len(cache) == 3
    cache.put("d", "act", "res", h, Decision.ALLOW)
    assert len(cache) == 1


def test_full_cache_drops_oldest_tenth():
    ticks = itertools.count(1000)
    with mock.patch("avpauthz.auth_cache.time.monotonic", side_effect=lambda: next(ticks)):
        cache = AuthorizationCache(10_000, 20)
        h = _hash()
        for i in range(20):
            cache.put(f"p{i}", "a", "r", h, Decision.ALLOW)
        cache.put("new", "a", "r", h, Decision.ALLOW)
        assert len(cache) == 19
        assert cache.get("p0", "a", "r", h) is None
        assert cache.get("p1", "a", "r", h) is None
        assert cache.get("p2", "a", "r", h) == (Decision.ALLOW, None)
        assert cache.get("new", "a", "r", h) == (Decision.ALLOW, None)


def test_small_full_cache_keeps_growing_when_nothing_expired():
    cache = AuthorizationCache(60, 2)
    h = _hash()
    for name in ("a", "b", "c"):
        cache.put(name, "act", "res", h, Decision.DENY)
    assert len(cache) == 3