"""
Snowflake ID 生成器

所有表的主键都是 64 位 Snowflake ID，不依赖数据库自增，
多实例部署时通过 SNOWFLAKE_NODE_ID 区分节点。

位布局：41 位毫秒时间戳 | 10 位节点 ID | 12 位序列号
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable

from skiniq.core.config import settings

# 2024-01-01T00:00:00Z
EPOCH_MS = 1704067200000

_NODE_BITS = 10
_SEQ_BITS = 12
_MAX_NODE = (1 << _NODE_BITS) - 1
_SEQ_MASK = (1 << _SEQ_BITS) - 1
# 超过该回拨幅度直接拒绝生成，避免重复 ID
_MAX_BACKWARDS_MS = 5000


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class Snowflake:
    """线程安全的 Snowflake 生成器"""

    def __init__(self, *, node_id: int, clock: Callable[[], int] = _wall_clock_ms) -> None:
        if not (0 <= node_id <= _MAX_NODE):
            raise ValueError(f"SNOWFLAKE_NODE_ID must be in [0, {_MAX_NODE}]")
        self._node_id = node_id
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    def _wait_past(self, ts: int) -> int:
        now = self._clock()
        while now <= ts:
            time.sleep(0.001)
            now = self._clock()
        return now

    def next_id(self) -> int:
        with self._lock:
            ts = self._clock()
            if ts < self._last_ts:
                drift = self._last_ts - ts
                if drift > _MAX_BACKWARDS_MS:
                    raise RuntimeError(
                        f"Clock moved backwards by {drift}ms. "
                        "Refusing to generate IDs to prevent duplicates."
                    )
                # 小幅回拨：沿用上一个时间戳继续递增序列号
                ts = self._last_ts

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & _SEQ_MASK
                if self._seq == 0:
                    # 同一毫秒内序列号用尽
                    ts = self._wait_past(self._last_ts)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - EPOCH_MS) << (_NODE_BITS + _SEQ_BITS)) | (self._node_id << _SEQ_BITS) | self._seq


_GENERATOR: Snowflake | None = None


def generate_id() -> int:
    """模型主键的 default_factory"""
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR.next_id()
