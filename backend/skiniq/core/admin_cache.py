"""
管理后台进程内缓存

仅用于减少管理后台的重复查询，不保证持久化：
进程重启后为空，多实例之间互不同步，调用方必须能处理任意时刻的缓存未命中。

缓存对象由应用 lifespan 显式创建（见 main.py），时钟和默认 TTL 可注入，
定期清理由 APScheduler 的 AsyncIOScheduler 在应用事件循环上调度，可以显式启动/停止。
同一个缓存也为管理员登录提供固定窗口计数（hit）。
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from datetime import timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class AdminCache:
    def __init__(
        self,
        *,
        default_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        # 同步路由运行在线程池里，dict 的读-判断-删除需要加锁
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Evicts every expired entry and returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def hit(self, key: str, ttl: float | None = None) -> int:
        """
        Increments a fixed-window counter and returns the new count.

        The window starts at the first hit and lasts `ttl` seconds; later hits
        do not extend it.
        """
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None or now >= entry[1]:
                count, expires_at = 1, now + ttl
            else:
                count, expires_at = int(entry[0]) + 1, entry[1]
            self._entries[key] = (count, expires_at)
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AdminCacheSweeper:
    """Runs AdminCache.cleanup() every `interval` seconds on an APScheduler AsyncIOScheduler."""

    JOB_ID = "admin_cache_sweep"

    def __init__(self, cache: AdminCache, *, interval: float) -> None:
        self._cache = cache
        self._interval = interval
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """必须在事件循环中调用（lifespan 内）"""
        if self.running:
            return
        scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop(), timezone=timezone.utc)
        scheduler.add_job(
            self.sweep,
            IntervalTrigger(seconds=self._interval),
            id=self.JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("admin cache sweeper started, interval=%ss", self._interval)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

    def sweep(self) -> int:
        try:
            evicted = self._cache.cleanup()
        except Exception:
            logger.exception("admin cache sweep failed")
            return 0
        if evicted:
            logger.debug("admin cache sweep evicted %d entries", evicted)
        return evicted
