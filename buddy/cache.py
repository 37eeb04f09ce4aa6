"""短时结果缓存：TTL + 容量上限，近似 LRU 淘汰"""

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, List, NamedTuple, Optional

from .models import Candidate
from .scorer import normalize

SIGNATURE_CANDIDATES = 50
SIGNATURE_TOKENS = 50

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class CacheEntry(NamedTuple):
    key: str
    value: Any
    timestamp: float


def fnv1a_32(text: str) -> int:
    h = 0x811C9DC5
    for ch in text:
        h ^= ord(ch)
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def page_signature(candidates: List[Candidate]) -> str:
    """
    由候选的可读名称、文本、标签、role、tag 构造页面签名。

    token 去重后排序，与 DOM 顺序无关；只保存哈希，不保存页面内容。
    """
    tokens = set()
    for c in candidates[:SIGNATURE_CANDIDATES]:
        values = [c.acc_name, c.text, *c.labels, c.role, c.tag]
        tokens.update(normalize(v) for v in values if v)
    tokens.discard("")
    ordered = sorted(tokens)[:SIGNATURE_TOKENS]
    return to_base36(fnv1a_32("|".join(ordered)))


def rank_cache_key(goal: str, candidates: List[Candidate]) -> str:
    return f"{normalize(goal)}|{page_signature(candidates)}"


class TTLCache:
    """
    进程内共享缓存。

    每个操作都在同一把锁内完成，每次写入都是一次完整的 map 赋值；
    过期条目在读到时或写入时惰性清理，没有后台线程。
    """

    def __init__(self, ttl_seconds: float, max_entries: int = 500, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(key, value, now)
            self._entries.move_to_end(key)
            self._sweep_locked(now)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def sweep(self) -> int:
        """清理过期条目，返回清理数量"""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        stale = [k for k, entry in self._entries.items() if self._expired(entry, now)]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
