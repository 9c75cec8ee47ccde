"""
模板缓存引擎

- 按字节预算缓存模板副本，每次 set 之后 Σsize(存活项) <= max_bytes
- 过期（now >= expires_at）在读取时惰性删除，并由定时 cleanup 主动清理
- 驱逐策略：LRU（最近访问顺序）、FIFO（插入顺序）、LFU（访问次数最少）
- 所有公共方法共享同一把可重入锁：预算检查 -> 驱逐 -> 插入 是一个临界区
"""
from __future__ import annotations

import heapq
import math
import itertools
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Callable, List, Optional, Tuple

import schedule

from ..config import settings
from ..models import Template, serialized_size
from ..utils import get_logger

logger = get_logger("template-cache")


class EvictionPolicy(str, PyEnum):
    """驱逐策略"""
    LRU = "lru"
    FIFO = "fifo"
    LFU = "lfu"


@dataclass
class CacheItem:
    template: Template
    timestamp: float  # 最近一次访问
    inserted_at: float
    access_count: int
    expires_at: float
    size: int
    seq: int


@dataclass
class CacheStats:
    total_items: int = 0
    total_size: int = 0
    hit_count: int = 0
    miss_count: int = 0
    eviction_count: int = 0
    memory_usage: float = 0.0  # total_size / max_bytes


@dataclass(frozen=True)
class CacheConfig:
    max_bytes: int = 100 * 1024 * 1024
    default_ttl: float = 3600.0  # 秒
    cleanup_interval: float = 300.0  # 秒；<= 0 表示不启用定时清理
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU
    high_watermark: float = 0.8
    low_watermark: float = 0.5

    @classmethod
    def from_settings(cls) -> "CacheConfig":
        return cls(
            max_bytes=settings.CACHE_MAX_BYTES,
            default_ttl=settings.CACHE_TTL_SECONDS,
            cleanup_interval=settings.CACHE_CLEANUP_INTERVAL_SECONDS,
            eviction_policy=EvictionPolicy(settings.CACHE_EVICTION_POLICY),
        )


class TemplateCache:
    """
    内存模板缓存

    Args:
        config: 缓存配置
        clock: 时钟函数（秒），默认 time.monotonic，测试时可注入
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or CacheConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._items: "OrderedDict[str, CacheItem]" = OrderedDict()
        self._lfu_heap: List[Tuple[int, int, str]] = []
        self._seq = itertools.count()
        self._total_size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        self._scheduler: Optional[schedule.Scheduler] = None
        self._stop_event = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # 公共接口
    # ------------------------------------------------------------------
    def get(self, template_id: str) -> Optional[Template]:
        with self._lock:
            item = self._items.get(template_id)
            if item is None:
                self._misses += 1
                return None

            now = self._clock()
            if now >= item.expires_at:
                self._remove(template_id)
                self._misses += 1
                self._evictions += 1
                return None

            item.access_count += 1
            item.timestamp = now
            if self.config.eviction_policy == EvictionPolicy.LRU:
                self._items.move_to_end(template_id)
            elif self.config.eviction_policy == EvictionPolicy.LFU:
                self._push_lfu(template_id, item)

            self._hits += 1
            return item.template.clone()

    def peek(self, template_id: str) -> Optional[Template]:
        """读取未过期的条目，不计入命中统计，也不影响驱逐顺序"""
        with self._lock:
            item = self._items.get(template_id)
            if item is None or self._clock() >= item.expires_at:
                return None
            return item.template.clone()

    def set(self, template_id: str, template: Template, ttl: Optional[float] = None) -> bool:
        """
        写入缓存；超出预算时先按策略驱逐

        Returns:
            是否写入（单个模板超过整个预算时不缓存）
        """
        size = serialized_size(template)
        with self._lock:
            if template_id in self._items:
                self._remove(template_id)

            if size > self.config.max_bytes:
                logger.warning(
                    f"Template {template_id} ({size} bytes) exceeds cache budget "
                    f"({self.config.max_bytes} bytes); not cached"
                )
                return False

            if self._total_size + size > self.config.max_bytes:
                self._purge_expired(self._clock())
            if self._total_size + size > self.config.max_bytes:
                self._evict(self._total_size + size - self.config.max_bytes)

            now = self._clock()
            item = CacheItem(
                template=template.clone(),
                timestamp=now,
                inserted_at=now,
                access_count=0,
                expires_at=now + (self.config.default_ttl if ttl is None else ttl),
                size=size,
                seq=next(self._seq),
            )
            self._items[template_id] = item
            self._total_size += size
            if self.config.eviction_policy == EvictionPolicy.LFU:
                self._push_lfu(template_id, item)
            return True

    def delete(self, template_id: str) -> bool:
        with self._lock:
            return self._remove(template_id)

    def has(self, template_id: str) -> bool:
        with self._lock:
            item = self._items.get(template_id)
            if item is None:
                return False
            if self._clock() >= item.expires_at:
                self._remove(template_id)
                self._evictions += 1
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._lfu_heap.clear()
            self._total_size = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                total_items=len(self._items),
                total_size=self._total_size,
                hit_count=self._hits,
                miss_count=self._misses,
                eviction_count=self._evictions,
                memory_usage=(self._total_size / self.config.max_bytes) if self.config.max_bytes else 0.0,
            )

    def cleanup(self) -> int:
        """
        删除所有过期项；若仍超过预算的 80%，按策略驱逐到 50%

        Returns:
            本次移除的条目数
        """
        with self._lock:
            removed = self._purge_expired(self._clock())
            if removed:
                logger.info(f"Cleaned {removed} expired cache items")

            high = self.config.max_bytes * self.config.high_watermark
            if self._total_size > high:
                target = self.config.max_bytes * self.config.low_watermark
                evicted = self._evict(math.ceil(self._total_size - target))
                removed += evicted
                logger.info(f"Cache above {self.config.high_watermark:.0%} of budget, evicted {evicted} items")
            return removed

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._items.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # ------------------------------------------------------------------
    # 定时清理
    # ------------------------------------------------------------------
    def start(self) -> None:
        """启动后台定时清理（daemon 线程 + schedule）"""
        if self.config.cleanup_interval <= 0 or self._cleanup_thread is not None:
            return
        self._scheduler = schedule.Scheduler()
        self._scheduler.every(self.config.cleanup_interval).seconds.do(self._run_scheduled_cleanup)
        self._stop_event.clear()
        tick = min(1.0, self.config.cleanup_interval)

        def _loop() -> None:
            while not self._stop_event.wait(tick):
                self._scheduler.run_pending()

        self._cleanup_thread = threading.Thread(target=_loop, name="template-cache-cleanup", daemon=True)
        self._cleanup_thread.start()
        logger.info(f"Scheduled cache cleanup every {self.config.cleanup_interval}s")

    def close(self) -> None:
        """停止定时清理"""
        self._stop_event.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=5)
            self._cleanup_thread = None
        if self._scheduler is not None:
            self._scheduler.clear()
            self._scheduler = None

    def _run_scheduled_cleanup(self) -> None:
        try:
            self.cleanup()
        except Exception as e:
            logger.error(f"Cache cleanup failed: {e}")

    # ------------------------------------------------------------------
    # 内部实现（调用方已持有锁）
    # ------------------------------------------------------------------
    def _remove(self, template_id: str) -> bool:
        item = self._items.pop(template_id, None)
        if item is None:
            return False
        self._total_size -= item.size
        return True

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, item in self._items.items() if now >= item.expires_at]
        for k in expired:
            self._remove(k)
        self._evictions += len(expired)
        return len(expired)

    def _push_lfu(self, template_id: str, item: CacheItem) -> None:
        heapq.heappush(self._lfu_heap, (item.access_count, item.seq, template_id))
        # 惰性失效的条目过多时重建堆
        if len(self._lfu_heap) > 4 * len(self._items) + 64:
            self._lfu_heap = [(i.access_count, i.seq, k) for k, i in self._items.items()]
            heapq.heapify(self._lfu_heap)

    def _select_victims(self, required: int) -> List[str]:
        """
        按策略顺序收集驱逐对象，直到释放量 >= required（整项驱逐，可能多释放）
        """
        victims: List[str] = []
        freed = 0
        if self.config.eviction_policy == EvictionPolicy.LFU:
            while self._lfu_heap and freed < required:
                count, seq, key = heapq.heappop(self._lfu_heap)
                item = self._items.get(key)
                if item is None or item.seq != seq or item.access_count != count:
                    continue
                victims.append(key)
                freed += item.size
            return victims

        # LRU: OrderedDict 维持访问顺序；FIFO: 维持插入顺序
        for key, item in self._items.items():
            if freed >= required:
                break
            victims.append(key)
            freed += item.size
        return victims

    def _evict(self, required: int) -> int:
        if required <= 0:
            return 0
        victims = self._select_victims(required)
        for key in victims:
            self._remove(key)
        self._evictions += len(victims)
        if victims:
            logger.debug(f"Evicted {len(victims)} items ({self.config.eviction_policy.value}): {victims}")
        return len(victims)

