"""
Road attributes (speed limit, on-road) with provider failover and caching.

Providers are tried in order starting from the last one that worked.
Provider failures never reach the prediction cycle: when every provider
fails, the speed limit degrades to the cached value (if still fresh) or
None, and on-road degrades to the cached value or True.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, TypeVar

from . import config
from .errors import RoadAttributeUnavailable
from .events import Channel
from .geometry import Point, distance

logger = logging.getLogger('curveAdvisor.roadinfo')

T = TypeVar('T')


class RoadInfoProvider(Protocol):
    """A source of road attributes, e.g. an OSM or map vendor client."""

    name: str

    def get_speed_limit(self, lat: float, lon: float) -> Optional[float]:
        ...

    def is_on_road(self, lat: float, lon: float) -> bool:
        ...


@dataclass(frozen=True)
class RoadInfo:
    """Road attributes at a position."""
    position: Point
    speed_limit_kmh: Optional[float]
    is_on_road: bool
    timestamp: float
    degraded: bool = False  # True when no provider answered


class StaticRoadInfoProvider:
    """Fixed answers, for route replays and tests."""

    def __init__(self, speed_limit_kmh: Optional[float] = None, on_road: bool = True,
                 name: str = "static"):
        self.speed_limit_kmh = speed_limit_kmh
        self.on_road = on_road
        self.name = name

    def get_speed_limit(self, lat: float, lon: float) -> Optional[float]:
        return self.speed_limit_kmh

    def is_on_road(self, lat: float, lon: float) -> bool:
        return self.on_road


class TTLCache:
    """Values keyed by rounded position, valid for ttl_s seconds."""

    def __init__(self, ttl_s: float = config.ROAD_INFO_CACHE_TTL_S,
                 precision: int = config.ROAD_INFO_CACHE_PRECISION):
        self.ttl_s = ttl_s
        self.precision = precision
        self._entries: Dict[Tuple[float, float], Tuple[object, float]] = {}

    def key(self, lat: float, lon: float) -> Tuple[float, float]:
        return (round(lat, self.precision), round(lon, self.precision))

    def get(self, lat: float, lon: float, now: float):
        """Cached value, or None when missing or expired."""
        entry = self._entries.get(self.key(lat, lon))
        if entry is None:
            return None
        value, stamp = entry
        if now - stamp >= self.ttl_s:
            return None
        return value

    def put(self, lat: float, lon: float, value, now: float):
        self._entries[self.key(lat, lon)] = (value, now)
        self._evict(now)

    def _evict(self, now: float):
        expired = [k for k, (_, stamp) in self._entries.items() if now - stamp > self.ttl_s]
        for k in expired:
            del self._entries[k]

    def __len__(self) -> int:
        return len(self._entries)


class RoadInfoManager:
    """
    Answers road attribute queries for the prediction cycle.

    refresh() is throttled: a new lookup needs both MIN_UPDATE_INTERVAL
    seconds and MIN_UPDATE_DISTANCE metres since the last one.
    """

    def __init__(
        self,
        providers: Sequence[RoadInfoProvider],
        cache_ttl_s: float = config.ROAD_INFO_CACHE_TTL_S,
        min_update_interval_s: float = config.ROAD_INFO_MIN_UPDATE_INTERVAL_S,
        min_update_distance_m: float = config.ROAD_INFO_MIN_UPDATE_DISTANCE_M,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.providers: List[RoadInfoProvider] = list(providers)
        self.min_update_interval_s = min_update_interval_s
        self.min_update_distance_m = min_update_distance_m
        self._clock = clock
        self._speed_cache = TTLCache(cache_ttl_s)
        self._road_cache = TTLCache(cache_ttl_s)
        self._provider_index = 0
        self.current: Optional[RoadInfo] = None
        self.info_channel: Channel[RoadInfo] = Channel("road_info")

        # Statistics
        self.failures = 0

    def _call(self, operation: str, query: Callable[[RoadInfoProvider], T]) -> T:
        """
        Run a query against the providers, rotating on failure.

        Raises:
            RoadAttributeUnavailable: If every provider failed
        """
        if not self.providers:
            self.failures += 1
            raise RoadAttributeUnavailable("No road info providers configured")

        count = len(self.providers)
        for attempt in range(count):
            index = (self._provider_index + attempt) % count
            provider = self.providers[index]
            try:
                result = query(provider)
            except RoadAttributeUnavailable as e:
                logger.warning("%s: provider %s unavailable: %s",
                               operation, getattr(provider, 'name', index), e)
            except Exception as e:
                logger.warning("%s: provider %s failed: %s",
                               operation, getattr(provider, 'name', index), e,
                               exc_info=True)
            else:
                self._provider_index = index
                return result

        self.failures += 1
        raise RoadAttributeUnavailable(f"All road info providers failed for {operation}")

    def get_speed_limit(self, lat: float, lon: float, now: Optional[float] = None) -> Optional[float]:
        now = self._clock() if now is None else now
        cached = self._speed_cache.get(lat, lon, now)
        if cached is not None:
            return cached
        try:
            limit = self._call("speed limit", lambda p: p.get_speed_limit(lat, lon))
        except RoadAttributeUnavailable as e:
            fallback = self._fresh_current(now)
            logger.debug("Speed limit unknown, using %s: %s",
                         "last known" if fallback else "none", e)
            return fallback.speed_limit_kmh if fallback else None
        if limit is not None:
            self._speed_cache.put(lat, lon, limit, now)
        return limit

    def is_on_road(self, lat: float, lon: float, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        cached = self._road_cache.get(lat, lon, now)
        if cached is not None:
            return cached
        try:
            on_road = bool(self._call("on road", lambda p: p.is_on_road(lat, lon)))
        except RoadAttributeUnavailable as e:
            fallback = self._fresh_current(now)
            logger.debug("On-road unknown, %s: %s",
                         "using last known" if fallback else "assuming on road", e)
            return fallback.is_on_road if fallback else True
        self._road_cache.put(lat, lon, on_road, now)
        return on_road

    def _fresh_current(self, now: float) -> Optional[RoadInfo]:
        if self.current is not None and now - self.current.timestamp < self._speed_cache.ttl_s:
            return self.current
        return None

    def should_update(self, position: Point, now: float) -> bool:
        if self.current is None:
            return True
        if now - self.current.timestamp < self.min_update_interval_s:
            return False
        return distance(position, self.current.position) >= self.min_update_distance_m

    def refresh(self, position: Point, now: Optional[float] = None, force: bool = False) -> RoadInfo:
        """
        Road info at a position, looked up again only when due.

        Returns:
            The new RoadInfo, or the previous one if the refresh was throttled
        """
        now = self._clock() if now is None else now
        if not force and not self.should_update(position, now):
            return self.current

        failures_before = self.failures
        lat, lon = position
        info = RoadInfo(
            position=position,
            speed_limit_kmh=self.get_speed_limit(lat, lon, now),
            is_on_road=self.is_on_road(lat, lon, now),
            timestamp=now,
            degraded=self.failures > failures_before,
        )
        self.current = info
        logger.debug("Road info: limit=%s on_road=%s%s", info.speed_limit_kmh,
                     info.is_on_road, " (degraded)" if info.degraded else "")
        self.info_channel.publish(info)
        return info
