"""
Detection result cache.

In-memory LRU with per-entry TTL, keyed by a normalized URL so tracking
parameters, fragments, ``www.`` and a trailing slash don't split entries.
Auth methods rarely change within a day, so the default TTL is 24h;
loopback hosts get 5 minutes because they are usually under development.

All methods are synchronous: nothing here awaits, so concurrent requests on
the event loop can't interleave inside a read-modify-write.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urlsplit

from app.config import Settings
from app.log_utils import SYSTEM, log_event, log_warning
from app.models import DetectionMethod, DetectionResult


@dataclass
class CacheEntry:
    result: DetectionResult
    cached_at: float
    expires_at: float
    ttl: int
    page_title: Optional[str] = None
    screenshot: Optional[str] = None


def normalize_url(url: str) -> str:
    """
    https://www.Example.com/auth/?next=/home#top -> https://example.com/auth
    https://example.com -> https://example.com/

    Unparseable input (no scheme or host) is returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
        if not parts.scheme or not host:
            raise ValueError("missing scheme or host")
        port = parts.port
    except ValueError as e:
        log_warning("CACHE", "URL_NORMALIZATION_FAILED", "Invalid URL format", url=url, error=str(e))
        return url

    if host.startswith("www."):
        host = host[4:]
    netloc = f"{host}:{port}" if port else host

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    return f"{parts.scheme.lower()}://{netloc}{path}"


def _host_of(url: str) -> str:
    try:
        host = urlsplit(url.strip()).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


# Result JSON and bookkeeping, before the page title and screenshot
ENTRY_OVERHEAD_BYTES = 5 * 1024


def _entry_size(entry: CacheEntry) -> int:
    """Rough in-memory footprint; the base64 screenshot usually dominates."""
    return ENTRY_OVERHEAD_BYTES + len(entry.page_title or "") + len(entry.screenshot or "")


class DetectionCache:
    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.settings = settings
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

        log_event(SYSTEM, "CACHE_INITIALIZED",
                  maxSize=settings.cache_max_size,
                  defaultTTL=f"{settings.cache_default_ttl}s")

    # -----------------------------------------------------------------
    # Policy
    # -----------------------------------------------------------------

    def ttl_for(self, url: str, method: Optional[DetectionMethod] = None) -> int:
        host = _host_of(url)
        if host in self.settings.cache_ttl_by_domain:
            return self.settings.cache_ttl_by_domain[host]
        if method == DetectionMethod.PATTERN and self.settings.cache_pattern_result_ttl is not None:
            return self.settings.cache_pattern_result_ttl
        return self.settings.cache_default_ttl

    def _skip_reason(self, result: DetectionResult) -> Optional[str]:
        if not result.success:
            return "Detection failed"
        if not result.found and not self.settings.cache_empty_results:
            return "No auth found and empty results are not cached"
        if result.detection_method == DetectionMethod.PATTERN and not self.settings.cache_pattern_results:
            return "Pattern results are not cached"
        return None

    # -----------------------------------------------------------------
    # Store operations
    # -----------------------------------------------------------------

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def get_entry(self, url: str, request_id: str = SYSTEM) -> Optional[CacheEntry]:
        key = normalize_url(url)
        entry = self._live_entry(key)

        if entry is None:
            self._misses += 1
            log_event(request_id, "CACHE_MISS", url=key)
            return None

        self._hits += 1
        self._entries.move_to_end(key)
        now = self._clock()
        if self.settings.cache_refresh_on_read:
            entry.expires_at = now + entry.ttl

        log_event(request_id, "CACHE_HIT",
                  url=key,
                  cachedAt=_iso(entry.cached_at),
                  age=f"{int(now - entry.cached_at)}s",
                  detectionMethod=entry.result.detection_method.value,
                  componentCount=len(entry.result.components))
        return entry

    def get(self, url: str, request_id: str = SYSTEM) -> Optional[DetectionResult]:
        entry = self.get_entry(url, request_id)
        return entry.result.model_copy(deep=True) if entry else None

    def set(self, url: str, result: DetectionResult, request_id: str = SYSTEM,
            page_title: Optional[str] = None, screenshot: Optional[str] = None) -> bool:
        """Store ``result`` if it is eligible. Returns whether it was stored."""
        reason = self._skip_reason(result)
        if reason:
            log_event(request_id, "CACHE_SKIP", url=url, reason=reason)
            return False

        key = normalize_url(url)
        ttl = self.ttl_for(url, result.detection_method)
        now = self._clock()

        self._entries[key] = CacheEntry(
            result=result.model_copy(deep=True),
            cached_at=now,
            expires_at=now + ttl,
            ttl=ttl,
            page_title=page_title,
            screenshot=screenshot,
        )
        self._entries.move_to_end(key)

        while len(self._entries) > self.settings.cache_max_size:
            evicted, _ = self._entries.popitem(last=False)
            log_event(request_id, "CACHE_EVICTED", url=evicted)

        log_event(request_id, "CACHE_SET",
                  url=key,
                  ttl=f"{ttl}s",
                  expiresAt=_iso(now + ttl),
                  detectionMethod=result.detection_method.value,
                  componentCount=len(result.components),
                  cacheSize=len(self._entries))
        return True

    def has(self, url: str) -> bool:
        return self._live_entry(normalize_url(url)) is not None

    def invalidate(self, url: str, request_id: str = SYSTEM) -> bool:
        key = normalize_url(url)
        deleted = self._entries.pop(key, None) is not None
        if deleted:
            log_event(request_id, "CACHE_INVALIDATED", url=key)
        return deleted

    def clear(self, request_id: str = SYSTEM) -> int:
        previous_size = len(self._entries)
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        log_event(request_id, "CACHE_CLEARED", entriesCleared=previous_size)
        return previous_size

    def __len__(self) -> int:
        return len(self._entries)

    # -----------------------------------------------------------------
    # Observability
    # -----------------------------------------------------------------

    def stats(self) -> dict:
        now = self._clock()
        live = [e for e in self._entries.values() if e.expires_at > now]
        total = self._hits + self._misses
        hit_rate = f"{round(self._hits / total * 100)}%" if total else "0%"

        oldest = min((e.cached_at for e in live), default=None)
        newest = max((e.cached_at for e in live), default=None)

        return {
            "totalRequests": total,
            "cacheHits": self._hits,
            "cacheMisses": self._misses,
            "hitRate": hit_rate,
            "currentSize": len(live),
            "maxSize": self.settings.cache_max_size,
            "memoryEstimate": f"{round(sum(_entry_size(e) for e in live) / (1024 * 1024), 2)}MB",
            "oldestEntry": _iso(oldest) if oldest is not None else None,
            "newestEntry": _iso(newest) if newest is not None else None,
        }
