import pytest

from wardsync.utils.cache import TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.anyio
async def test_entries_expire_after_ttl():
    clock = _Clock()
    cache = TTLCache(10, clock=clock)

    await cache.set("p1", {"total": 1})
    clock.now += 9.9
    assert await cache.get("p1") == {"total": 1}

    clock.now += 0.1
    assert await cache.get("p1") is None
    assert len(cache) == 0


@pytest.mark.anyio
async def test_set_refreshes_expiry():
    clock = _Clock()
    cache = TTLCache(10, clock=clock)

    await cache.set("p1", "old")
    clock.now += 8
    await cache.set("p1", "new")
    clock.now += 8

    assert await cache.get("p1") == "new"


@pytest.mark.anyio
async def test_pop_and_clear():
    cache = TTLCache(60)
    await cache.set("a", 1)
    await cache.set("b", 2)

    await cache.pop("a")
    await cache.pop("missing")
    assert await cache.get("a") is None
    assert len(cache) == 1

    await cache.clear()
    assert len(cache) == 0
