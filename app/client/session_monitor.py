"""
Asyncio session keepalive loop for API consumers.

The monitor polls GET /api/session/health and feeds each response through
transition(), a pure function of (previous state, snapshot) that returns the next
state and the effects to perform. Polling runs on a ScheduledTask: every 5 minutes
while healthy, every 30 seconds while near expiration.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from app.services.session_health import SessionState

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_PATH = "/api/session/health"
DEFAULT_REFRESH_PATH = "/api/auth/refresh"


@dataclass(frozen=True)
class HealthSnapshot:
    """One parsed session health response."""

    healthy: bool
    session_exists: bool
    near_expiration: bool = False
    expires_at: str | None = None

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> "HealthSnapshot":
        if not isinstance(payload, dict):
            raise ValueError("Session health response must be a JSON object")
        return cls(
            healthy=bool(payload.get("healthy")),
            session_exists=bool(payload.get("sessionExists")),
            near_expiration=bool(payload.get("nearExpiration")),
            expires_at=payload.get("expiresAt"),
        )

    @property
    def state(self) -> SessionState:
        if not (self.healthy and self.session_exists):
            return SessionState.EXPIRED
        if self.near_expiration:
            return SessionState.NEAR_EXPIRATION
        return SessionState.HEALTHY


@dataclass(frozen=True)
class MonitorState:
    status: SessionState = SessionState.HEALTHY
    warning_shown: bool = False
    expires_at: str | None = None


class Effect(str, Enum):
    SHOW_WARNING = "show_warning"
    CLEAR_WARNING = "clear_warning"
    SESSION_EXPIRED = "session_expired"
    SESSION_RECOVERED = "session_recovered"
    FAST_POLL = "fast_poll"
    SLOW_POLL = "slow_poll"


@dataclass(frozen=True)
class Transition:
    state: MonitorState
    effects: tuple[Effect, ...] = ()


def transition(previous: MonitorState, snapshot: HealthSnapshot | None) -> Transition:
    """
    Compute the next monitor state. Repeating a snapshot yields no further effects.

    A failed health request (snapshot None) leaves the state unchanged.
    """
    if snapshot is None:
        return Transition(previous)

    new = snapshot.state
    effects: list[Effect] = []

    if new is SessionState.NEAR_EXPIRATION:
        if not previous.warning_shown:
            effects.append(Effect.SHOW_WARNING)
        if previous.status is not SessionState.NEAR_EXPIRATION:
            effects.append(Effect.FAST_POLL)
        return Transition(MonitorState(new, True, snapshot.expires_at), tuple(effects))

    if previous.warning_shown:
        effects.append(Effect.CLEAR_WARNING)
    if previous.status is SessionState.NEAR_EXPIRATION:
        effects.append(Effect.SLOW_POLL)
    if new is SessionState.EXPIRED and previous.status is not SessionState.EXPIRED:
        effects.append(Effect.SESSION_EXPIRED)
    if new is SessionState.HEALTHY and previous.status is SessionState.EXPIRED:
        effects.append(Effect.SESSION_RECOVERED)
    return Transition(MonitorState(new, False, snapshot.expires_at), tuple(effects))


class ScheduledTask:
    """
    Runs an async callback every interval seconds until cancelled.

    reschedule() takes effect immediately: a pending wait restarts with the new interval.
    It is safe to call from inside the callback.
    """

    def __init__(self, callback: Callable[[], Awaitable[Any]], interval: float, name: str | None = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self._interval = interval
        self._name = name or "scheduled-task"
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self._name)

    def reschedule(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._wakeup.set()

    async def _run(self) -> None:
        while True:
            self._wakeup.clear()
            # asyncio.timeout, unlike wait_for, never swallows a cancel that races a set event.
            try:
                async with asyncio.timeout(self._interval):
                    await self._wakeup.wait()
                continue
            except TimeoutError:
                pass
            try:
                await self._callback()
            except Exception:
                logger.exception("%s: callback failed", self._name)

    async def cancel(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class TokenRefresher:
    """Silent refresh: rotates the refresh token and updates the client's bearer header."""

    def __init__(self, client: httpx.AsyncClient, refresh_token: str, path: str = DEFAULT_REFRESH_PATH):
        self._client = client
        self._refresh_token = refresh_token
        self._path = path

    async def __call__(self) -> bool:
        try:
            response = await self._client.post(self._path, json={"refresh_token": self._refresh_token})
            response.raise_for_status()
            body = response.json()
            access_token = body["access_token"]
            refresh_token = body["refresh_token"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning("Silent token refresh failed: %s", e)
            return False
        self._refresh_token = refresh_token
        self._client.headers["Authorization"] = f"Bearer {access_token}"
        return True


@dataclass(frozen=True)
class MonitorConfig:
    health_path: str = DEFAULT_HEALTH_PATH
    poll_interval: float = 300.0
    fast_poll_interval: float = 30.0


SnapshotCallback = Callable[[HealthSnapshot | None], Any]


@dataclass
class MonitorCallbacks:
    on_warning: SnapshotCallback | None = None
    on_warning_cleared: SnapshotCallback | None = None
    on_expired: SnapshotCallback | None = None
    on_recovered: SnapshotCallback | None = None
    extra: dict[Effect, SnapshotCallback] = field(default_factory=dict)

    def for_effect(self, effect: Effect) -> SnapshotCallback | None:
        return {
            Effect.SHOW_WARNING: self.on_warning,
            Effect.CLEAR_WARNING: self.on_warning_cleared,
            Effect.SESSION_EXPIRED: self.on_expired,
            Effect.SESSION_RECOVERED: self.on_recovered,
        }.get(effect) or self.extra.get(effect)


class SessionMonitor:
    """Polls session health over an httpx.AsyncClient and drives renewal prompts."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: MonitorConfig | None = None,
        callbacks: MonitorCallbacks | None = None,
        refresher: Callable[[], Awaitable[bool]] | None = None,
    ) -> None:
        self._client = client
        self._config = config or MonitorConfig()
        self._callbacks = callbacks or MonitorCallbacks()
        self._refresher = refresher
        self._state = MonitorState()
        self._task = ScheduledTask(self.check_health, self._config.poll_interval, name="session-monitor")
        self._in_flight: asyncio.Future | None = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def poll_interval(self) -> float:
        return self._task.interval

    @property
    def running(self) -> bool:
        return self._task.running

    async def start(self) -> HealthSnapshot | None:
        """Start polling and run an immediate check."""
        self._task.start()
        logger.debug("Session monitor started")
        return await self.check_health()

    async def stop(self) -> None:
        """Cancel polling and any in-flight request (logout or teardown)."""
        await self._task.cancel()
        if self._in_flight is not None and not self._in_flight.done():
            self._in_flight.cancel()
        self._in_flight = None
        logger.debug("Session monitor stopped")

    async def check_health(self) -> HealthSnapshot | None:
        """Fetch health and apply the transition. Concurrent callers share one request."""
        if self._in_flight is None:
            self._in_flight = asyncio.ensure_future(self._poll_once())
            self._in_flight.add_done_callback(self._clear_in_flight)
        return await asyncio.shield(self._in_flight)

    def _clear_in_flight(self, future: asyncio.Future) -> None:
        if self._in_flight is future:
            self._in_flight = None

    async def notify_activity(self) -> HealthSnapshot | None:
        """User activity: silently refresh when near expiration, then re-check."""
        if self._refresher is not None and self._state.status is SessionState.NEAR_EXPIRATION:
            if not await self._refresher():
                logger.info("Silent refresh failed; leaving the renewal prompt in place")
        return await self.check_health()

    async def _fetch(self) -> HealthSnapshot | None:
        try:
            response = await self._client.get(self._config.health_path)
            response.raise_for_status()
            return HealthSnapshot.from_json(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Session health check failed: %s", e)
            return None

    async def _poll_once(self) -> HealthSnapshot | None:
        snapshot = await self._fetch()
        result = transition(self._state, snapshot)
        self._state = result.state
        for effect in result.effects:
            self._apply(effect, snapshot)
        return snapshot

    def _apply(self, effect: Effect, snapshot: HealthSnapshot | None) -> None:
        if effect is Effect.FAST_POLL:
            self._task.reschedule(self._config.fast_poll_interval)
        elif effect is Effect.SLOW_POLL:
            self._task.reschedule(self._config.poll_interval)
        callback = self._callbacks.for_effect(effect)
        if callback is not None:
            callback(snapshot)
