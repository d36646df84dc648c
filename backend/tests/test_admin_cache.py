from __future__ import annotations

import asyncio

from conftest import admin_headers

from skiniq.core.admin_cache import AdminCache, AdminCacheSweeper
from skiniq.services.admin_stats import STATS_CACHE_KEY


def test_entry_expires_exactly_at_ttl(clock):
    cache = AdminCache(default_ttl=60, clock=clock)
    cache.set("k", {"n": 1})

    clock.advance(59.999)
    assert cache.get("k") == {"n": 1}

    clock.advance(0.001)
    assert cache.get("k") is None
    assert len(cache) == 0


def test_custom_ttl_delete_and_clear(clock):
    cache = AdminCache(default_ttl=60, clock=clock)
    cache.set("short", 1, ttl=5)
    cache.set("long", 2)
    cache.set("gone", 3)

    clock.advance(5)
    assert cache.get("short") is None
    assert cache.get("long") == 2

    cache.delete("gone")
    cache.delete("never-set")
    assert cache.get("gone") is None

    cache.clear()
    assert len(cache) == 0


def test_cleanup_evicts_only_expired(clock):
    cache = AdminCache(default_ttl=10, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl=30)
    cache.set("c", 3, ttl=1)

    clock.advance(10)
    assert cache.cleanup() == 2
    assert len(cache) == 1
    assert cache.cleanup() == 0


def test_hit_counts_within_fixed_window(clock):
    cache = AdminCache(default_ttl=60, clock=clock)
    assert [cache.hit("ip") for _ in range(3)] == [1, 2, 3]

    clock.advance(59)
    assert cache.hit("ip") == 4
    clock.advance(1)
    assert cache.hit("ip") == 1
    assert cache.hit("other", ttl=5) == 1


def test_sweeper_runs_until_stopped(clock):
    cache = AdminCache(default_ttl=1, clock=clock)
    cache.set("stale", "x")
    clock.advance(2)
    sweeper = AdminCacheSweeper(cache, interval=0.05)

    async def scenario() -> None:
        sweeper.start()
        sweeper.start()
        assert sweeper.running
        assert [job.id for job in sweeper._scheduler.get_jobs()] == [AdminCacheSweeper.JOB_ID]  # type: ignore[union-attr]
        for _ in range(100):
            if len(cache) == 0:
                break
            await asyncio.sleep(0.05)
        sweeper.stop()
        sweeper.stop()

    asyncio.run(scenario())
    assert len(cache) == 0
    assert sweeper.running is False


def test_sweep_survives_cleanup_errors(clock, monkeypatch):
    cache = AdminCache(default_ttl=1, clock=clock)
    sweeper = AdminCacheSweeper(cache, interval=60)
    cache.set("stale", "x")
    clock.advance(2)
    assert sweeper.sweep() == 1

    def broken() -> int:
        raise RuntimeError("boom")

    monkeypatch.setattr(cache, "cleanup", broken)
    assert sweeper.sweep() == 0


def test_lifespan_owns_cache(client):
    state = client.app.state
    assert isinstance(state.admin_cache, AdminCache)
    assert state.admin_cache_sweeper.running is True


def test_admin_stats_are_cached(client, make_user):
    make_user(telegram_id="50001")
    headers = admin_headers()

    assert client.get("/api/v1/admin/stats").status_code == 401

    r = client.get("/api/v1/admin/stats", headers=headers)
    assert r.status_code == 200
    first = r.json()["data"]
    assert first["totalUsers"] == 1
    assert first["openChats"] == 0

    make_user(telegram_id="50002")
    assert client.get("/api/v1/admin/stats", headers=headers).json()["data"] == first

    client.app.state.admin_cache.delete(STATS_CACHE_KEY)
    assert client.get("/api/v1/admin/stats", headers=headers).json()["data"]["totalUsers"] == 2
