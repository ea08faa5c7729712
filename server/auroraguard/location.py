from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from auroraguard.capabilities import Capability
from auroraguard.models import Location

LOCATION_MESSAGES = {
    "permission-denied": "Location permission denied. Please enable location access.",
    "unavailable": "Location information unavailable.",
    "timeout": "Location request timed out.",
}


class LocationError(Exception):
    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code if code in LOCATION_MESSAGES else "unavailable"
        super().__init__(message or LOCATION_MESSAGES.get(code, "Unable to retrieve location"))


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_location(obj: dict[str, Any]) -> Location:
    """Build a Location from a client payload ({lat, lng, accuracy?, timestamp?})."""
    lat = float(obj["lat"])
    lng = float(obj["lng"])
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise ValueError("coordinates out of range")
    accuracy = obj.get("accuracy")
    ts = obj.get("timestamp")
    return Location(
        lat=lat,
        lng=lng,
        accuracy=float(accuracy) if accuracy is not None else None,
        timestamp_ms=int(ts) if ts is not None else _now_ms(),
    )


class WatchHandle:
    def __init__(self, cancel_cb: Callable[[], None]) -> None:
        self._cancel_cb = cancel_cb
        self.cancelled = False

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._cancel_cb()


FixCallback = Callable[[Location], None]
ErrorCallback = Callable[[LocationError], None]


class LocationSource(ABC):
    @abstractmethod
    async def get_current_position(self, timeout_s: float, max_age_s: float) -> Location: ...

    @abstractmethod
    def watch(self, on_fix: FixCallback, on_error: ErrorCallback) -> WatchHandle: ...


class StaticLocationSource(LocationSource):
    def __init__(self, lat: float, lng: float, accuracy: float | None = None) -> None:
        self._lat = float(lat)
        self._lng = float(lng)
        self._accuracy = accuracy

    def _fix(self) -> Location:
        return Location(lat=self._lat, lng=self._lng, accuracy=self._accuracy, timestamp_ms=_now_ms())

    async def get_current_position(self, timeout_s: float, max_age_s: float) -> Location:
        return self._fix()

    def watch(self, on_fix: FixCallback, on_error: ErrorCallback) -> WatchHandle:
        on_fix(self._fix())
        return WatchHandle(lambda: None)


class PhoneLocationSource(LocationSource):
    """Positions reported by the connected phone over /events."""

    def __init__(
        self,
        request_fix: Callable[[], Awaitable[int]],
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        # request_fix asks connected phones for a fresh fix and returns how many were asked.
        self._request_fix = request_fix
        self._clock_ms = clock_ms
        self._last: Location | None = None
        self._waiters: list[asyncio.Future[Location]] = []
        self._watchers: dict[int, tuple[FixCallback, ErrorCallback]] = {}
        self._next_watch_id = 1

    @property
    def last(self) -> Location | None:
        return self._last

    def push_fix(self, fix: Location) -> None:
        self._last = fix
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(fix)
        for on_fix, _ in list(self._watchers.values()):
            on_fix(fix)

    def push_error(self, code: str, message: str | None = None) -> None:
        err = LocationError(code, message)
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_exception(err)
        for _, on_error in list(self._watchers.values()):
            on_error(err)

    async def get_current_position(self, timeout_s: float, max_age_s: float) -> Location:
        last = self._last
        if last is not None and last.timestamp_ms is not None:
            if (self._clock_ms() - last.timestamp_ms) <= max_age_s * 1000.0:
                return last
        fut: asyncio.Future[Location] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            asked = await self._request_fix()
            if asked <= 0:
                raise LocationError("unavailable")
            return await asyncio.wait_for(fut, timeout=timeout_s)
        except asyncio.TimeoutError:
            raise LocationError("timeout") from None
        finally:
            if fut in self._waiters:
                self._waiters.remove(fut)

    def watch(self, on_fix: FixCallback, on_error: ErrorCallback) -> WatchHandle:
        watch_id = self._next_watch_id
        self._next_watch_id += 1
        self._watchers[watch_id] = (on_fix, on_error)
        if self._last is not None:
            on_fix(self._last)
        return WatchHandle(lambda: self._watchers.pop(watch_id, None))


class LocationProvider:
    """Last-known GPS fix, refreshable on demand and kept current by a watch."""

    def __init__(
        self,
        source: LocationSource | None,
        capability: Capability,
        *,
        timeout_s: float = 10.0,
        max_age_s: float = 60.0,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._source = source
        self._capability = capability
        self._timeout_s = timeout_s
        self._max_age_s = max_age_s
        self._on_change = on_change
        self._logger = logging.getLogger("auroraguard.location")
        self._watch: WatchHandle | None = None

        self.location: Location | None = None
        self.error: str | None = None
        self.loading = False

    @property
    def supported(self) -> bool:
        return self._capability.supported and self._source is not None

    def snapshot(self) -> Location | None:
        return self.location

    async def refresh(self) -> Location | None:
        if not self.supported or self._source is None:
            self.error = self._capability.reason or "Geolocation is not supported"
            self._changed()
            return None
        self.loading = True
        self.error = None
        self._changed()
        try:
            fix = await self._source.get_current_position(self._timeout_s, self._max_age_s)
        except LocationError as e:
            self._logger.warning("Location refresh failed: %s (%s)", e, e.code)
            self.error = str(e)
            return None
        finally:
            self.loading = False
            self._changed()
        self._set(fix)
        return fix

    def start_watch(self) -> None:
        if not self.supported or self._source is None or self._watch is not None:
            return
        self._watch = self._source.watch(self._set, self._on_watch_error)

    def stop_watch(self) -> None:
        if self._watch is not None:
            self._watch.cancel()
            self._watch = None

    def _set(self, fix: Location) -> None:
        self.location = fix
        self.error = None
        self._changed()

    def _on_watch_error(self, err: LocationError) -> None:
        # Watch failures keep the last fix; only one-shot refreshes surface errors.
        self._logger.debug("Location watch error: %s", err.code)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def as_dict(self) -> dict[str, Any]:
        return {
            "supported": self.supported,
            "location": self.location.as_dict() if self.location is not None else None,
            "error": self.error,
            "loading": self.loading,
        }
