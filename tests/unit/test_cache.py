"""Unit tests for CacheStore."""

import asyncio

import pytest

from sso_client.common.cache import CacheKey, CacheStore, get_cache_store, reset_cache_store


class TestCacheKey:
    def test_parts_distinguish_int_and_str(self):
        assert CacheKey("org_access", user_id=1, org_id="1") != CacheKey("org_access", user_id="1", org_id="1")

    def test_namespaces_do_not_collide(self):
        assert CacheKey("user_teams", user_id=5) != CacheKey("org_access", user_id=5)

    def test_str(self):
        assert str(CacheKey("org_access", user_id=7, org_id="acme")) == "org_access:u=int:7:o=str:acme"


class TestCacheStore:
    """Test suite for CacheStore."""

    async def test_set_and_get(self):
        store = CacheStore()
        key = CacheKey("test", discriminator="a")
        await store.set(key, {"value": 1}, 60)
        assert await store.get(key) == {"value": 1}
        assert await store.has(key)

    async def test_missing_returns_default(self):
        store = CacheStore()
        assert await store.get(CacheKey("test"), "fallback") == "fallback"

    async def test_expired_entry_is_missing(self):
        store = CacheStore()
        key = CacheKey("test")
        await store.set(key, "stale", -1)
        assert await store.get(key) is None
        assert not await store.has(key)

    async def test_remember_caches_result(self):
        store = CacheStore()
        calls = []

        async def factory():
            calls.append(1)
            return "computed"

        key = CacheKey("test")
        assert await store.remember(key, 60, factory) == "computed"
        assert await store.remember(key, 60, factory) == "computed"
        assert len(calls) == 1

    async def test_remember_caches_none(self):
        store = CacheStore()
        calls = []

        async def factory():
            calls.append(1)
            return None

        key = CacheKey("denied")
        assert await store.remember(key, 60, factory) is None
        assert await store.remember(key, 60, factory) is None
        assert len(calls) == 1
        assert await store.has(key)

    async def test_remember_does_not_cache_exceptions(self):
        store = CacheStore()
        key = CacheKey("test")

        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.remember(key, 60, failing)
        assert not await store.has(key)

    @pytest.mark.parametrize("invalidate", ["tag", "key", "clear"])
    async def test_invalidation_during_load_wins(self, invalidate):
        store = CacheStore()
        key = CacheKey("role_permissions", discriminator="editor")
        loading = asyncio.Event()
        release = asyncio.Event()

        async def slow_factory():
            loading.set()
            await release.wait()
            return ["old.perm"]

        pending = asyncio.create_task(store.remember(key, 60, slow_factory, tags=("role:editor",)))
        await loading.wait()
        if invalidate == "tag":
            await store.invalidate_tags("role:editor")
        elif invalidate == "key":
            await store.forget(key)
        else:
            await store.clear()
        release.set()

        assert await pending == ["old.perm"]
        assert not await store.has(key)

    async def test_unrelated_invalidation_keeps_load(self):
        store = CacheStore()
        key = CacheKey("t")
        loading = asyncio.Event()
        release = asyncio.Event()

        async def slow_factory():
            loading.set()
            await release.wait()
            return "fresh"

        pending = asyncio.create_task(store.remember(key, 60, slow_factory, tags=("a",)))
        await loading.wait()
        await store.invalidate_tags("b")
        release.set()

        assert await pending == "fresh"
        assert await store.get(key) == "fresh"

    async def test_set_during_load_is_kept(self):
        store = CacheStore()
        key = CacheKey("session_denylist", discriminator="jti-1")
        loading = asyncio.Event()
        release = asyncio.Event()

        async def slow_factory():
            loading.set()
            await release.wait()
            return False

        pending = asyncio.create_task(store.remember(key, 60, slow_factory))
        await loading.wait()
        await store.set(key, True, 60)
        release.set()

        assert await pending is False
        assert await store.get(key) is True

    async def test_forget(self):
        store = CacheStore()
        key = CacheKey("test")
        await store.set(key, 1, 60)
        await store.forget(key)
        assert not await store.has(key)

    async def test_invalidate_tags(self):
        store = CacheStore()
        a, b, c = CacheKey("t", discriminator="a"), CacheKey("t", discriminator="b"), CacheKey("t", discriminator="c")
        await store.set(a, 1, 60, tags=("org:1", "team:1"))
        await store.set(b, 2, 60, tags=("org:1", "team:2"))
        await store.set(c, 3, 60, tags=("org:2",))

        assert await store.invalidate_tags("team:2") == 1
        assert await store.has(a)
        assert not await store.has(b)

        assert await store.invalidate_tags("org:1", "org:2") == 2
        assert store.size == 0

    async def test_overwrite_replaces_tags(self):
        store = CacheStore()
        key = CacheKey("t")
        await store.set(key, 1, 60, tags=("old",))
        await store.set(key, 2, 60, tags=("new",))
        assert await store.invalidate_tags("old") == 0
        assert await store.get(key) == 2

    async def test_lru_eviction(self):
        store = CacheStore(max_entries=2)
        k1, k2, k3 = CacheKey("t", discriminator=1), CacheKey("t", discriminator=2), CacheKey("t", discriminator=3)
        await store.set(k1, 1, 60)
        await store.set(k2, 2, 60)
        await store.get(k1)  # k2 becomes least recently used
        await store.set(k3, 3, 60)

        assert await store.has(k1)
        assert not await store.has(k2)
        assert await store.has(k3)

    async def test_clear(self):
        store = CacheStore()
        await store.set(CacheKey("t"), 1, 60, tags=("x",))
        await store.clear()
        assert store.size == 0
        assert await store.invalidate_tags("x") == 0


class TestProcessStore:
    def test_singleton_and_reset(self):
        reset_cache_store()
        store = get_cache_store()
        assert get_cache_store() is store
        reset_cache_store()
        assert get_cache_store() is not store
        reset_cache_store()
