"""Per-tenant adaptive rate limiter.

State is advisory and in-process: the provider's headers overwrite it on every
response, and local reservations keep concurrent callers from spending the
same unit of quota between responses.
"""

import asyncio
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from structlog import get_logger

from xerolink.config.sync import RateLimitSettings
from xerolink.core.async_utils import Clock, Sleeper, sleep
from xerolink.ratelimit.headers import QuotaHeaderParser, get_header_parser
from xerolink.ratelimit.pacing import compute_delay


logger = get_logger(__name__)


def next_utc_midnight(now: float) -> float:
    """Epoch seconds of the next UTC midnight after ``now``."""
    current = datetime.fromtimestamp(now, tz=UTC)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    return midnight.timestamp()


@dataclass
class RateLimitState:
    """Quota snapshot for one tenant."""

    daily_remaining: int
    daily_reset_at: float
    minute_remaining: int
    minute_reset_at: float
    last_updated_at: float | None = None
    blocked_until: float | None = None
    last_call_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RateLimiter:
    """Paces calls per tenant from live quota feedback.

    ``wait_if_needed`` makes the pacing decision and the reservation under the
    tenant's lock, so two callers never spend the same unit of quota. The lock
    is released while a caller sleeps: only that caller is suspended, and
    responses for the same tenant can still update the counters.
    Different tenants never contend.
    """

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        *,
        parser: QuotaHeaderParser | None = None,
        clock: Clock = time.time,
        sleeper: Sleeper = sleep,
    ) -> None:
        self._settings = settings or RateLimitSettings()
        self._parser = parser or get_header_parser(self._settings.header_schema)
        self._clock = clock
        self._sleep = sleeper
        self._states: dict[str, RateLimitState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._changes: dict[str, asyncio.Event] = {}

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    def _state_for(self, tenant_id: str, now: float) -> RateLimitState:
        state = self._states.get(tenant_id)
        if state is None:
            state = self._states[tenant_id] = RateLimitState(
                daily_remaining=self._settings.daily_limit,
                daily_reset_at=next_utc_midnight(now),
                minute_remaining=self._settings.minute_limit,
                minute_reset_at=now + self._settings.minute_window_seconds,
            )
        return state

    def _roll_windows(self, state: RateLimitState, now: float) -> None:
        """Renew any window whose reset time has passed."""
        if now >= state.minute_reset_at:
            state.minute_remaining = self._settings.minute_limit
            state.minute_reset_at = now + self._settings.minute_window_seconds
        if now >= state.daily_reset_at:
            state.daily_remaining = self._settings.daily_limit
            state.daily_reset_at = next_utc_midnight(now)
        if state.blocked_until is not None and now >= state.blocked_until:
            state.blocked_until = None

    def _window_delay(
        self,
        remaining: int,
        reset_at: float,
        safety_buffer: int,
        low_water_mark: int,
        now: float,
        since_last_call: float,
    ) -> float:
        reset_in = max(reset_at - now, 0.0)
        delay = compute_delay(
            remaining,
            reset_in,
            safety_buffer,
            base_delay=self._settings.base_delay_seconds,
            low_water_mark=low_water_mark,
        )
        if remaining - safety_buffer <= 0:
            # Exhausted windows wait for the reset itself
            return reset_in
        return max(delay - since_last_call, 0.0)

    def _delay_for(self, state: RateLimitState, now: float) -> float:
        since_last_call = (
            now - state.last_call_at if state.last_call_at is not None else float("inf")
        )
        minute_delay = self._window_delay(
            state.minute_remaining,
            state.minute_reset_at,
            self._settings.minute_safety_buffer,
            self._settings.minute_low_water_mark,
            now,
            since_last_call,
        )
        daily_delay = self._window_delay(
            state.daily_remaining,
            state.daily_reset_at,
            self._settings.daily_safety_buffer,
            self._settings.daily_low_water_mark,
            now,
            since_last_call,
        )
        blocked = max(state.blocked_until - now, 0.0) if state.blocked_until else 0.0
        return max(minute_delay, daily_delay, blocked)

    async def _pause(self, tenant_id: str, delay: float, changed: asyncio.Event) -> None:
        """Sleep up to ``delay`` seconds, waking early when new quota is reported."""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        woken = asyncio.ensure_future(changed.wait())
        try:
            await asyncio.wait({sleeper, woken}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            woken.cancel()
        if woken.done() and not woken.cancelled():
            logger.debug("rate_limit_wait_interrupted", tenant_id=tenant_id)

    async def wait_if_needed(self, tenant_id: str) -> float:
        """Suspend the caller until a call for ``tenant_id`` fits the quota.

        Returns:
            Seconds the caller was suspended
        """
        started = self._clock()
        # Re-checked after every pause: the window may have renewed, another
        # caller may have reserved, or the provider may have reported new quota
        while True:
            async with self._lock_for(tenant_id):
                now = self._clock()
                state = self._state_for(tenant_id, now)
                self._roll_windows(state, now)
                delay = self._delay_for(state, now)
                if delay <= 0:
                    state.minute_remaining = max(state.minute_remaining - 1, 0)
                    state.daily_remaining = max(state.daily_remaining - 1, 0)
                    state.last_call_at = now
                    return max(now - started, 0.0)
                changed = self._changes.setdefault(tenant_id, asyncio.Event())
                minute_remaining = state.minute_remaining
                daily_remaining = state.daily_remaining

            if delay >= 1:
                logger.info(
                    "rate_limit_wait",
                    tenant_id=tenant_id,
                    delay_seconds=round(delay, 3),
                    minute_remaining=minute_remaining,
                    daily_remaining=daily_remaining,
                )
            await self._pause(tenant_id, delay, changed)

    def _notify_changed(self, tenant_id: str) -> None:
        changed = self._changes.pop(tenant_id, None)
        if changed is not None:
            changed.set()

    async def update_from_headers(self, tenant_id: str, headers: Mapping[str, str]) -> None:
        """Overwrite the tenant's counters with what the provider reported.

        Callers paused in ``wait_if_needed`` for this tenant re-evaluate at once.
        """
        async with self._lock_for(tenant_id):
            now = self._clock()
            reading = self._parser.parse(headers, now)
            state = self._state_for(tenant_id, now)
            if reading.is_empty:
                return
            self._notify_changed(tenant_id)

            if reading.minute_remaining is not None:
                state.minute_remaining = reading.minute_remaining
                if reading.minute_reset_in is not None:
                    state.minute_reset_at = now + reading.minute_reset_in
                elif state.minute_reset_at <= now:
                    state.minute_reset_at = now + self._settings.minute_window_seconds
            if reading.daily_remaining is not None:
                state.daily_remaining = reading.daily_remaining
                if reading.daily_reset_in is not None:
                    state.daily_reset_at = now + reading.daily_reset_in

            if reading.retry_after is not None:
                until = now + reading.retry_after
                state.blocked_until = max(state.blocked_until or 0.0, until)
                if reading.problem == "minute":
                    state.minute_remaining = 0
                    state.minute_reset_at = until
                elif reading.problem in ("day", "daily"):
                    state.daily_remaining = 0
                    state.daily_reset_at = until
                logger.warning(
                    "rate_limit_retry_after",
                    tenant_id=tenant_id,
                    retry_after=reading.retry_after,
                    problem=reading.problem,
                )

            state.last_updated_at = now
            logger.debug(
                "rate_limit_updated",
                tenant_id=tenant_id,
                minute_remaining=state.minute_remaining,
                daily_remaining=state.daily_remaining,
            )

    def snapshot(self, tenant_id: str) -> RateLimitState:
        """Copy of the tenant's current state (defaults if never seen)."""
        now = self._clock()
        state = self._state_for(tenant_id, now)
        self._roll_windows(state, now)
        return RateLimitState(**asdict(state))

    def reset(self, tenant_id: str | None = None) -> None:
        """Forget state for one tenant, or for all tenants."""
        if tenant_id is None:
            self._states.clear()
            for tenant in list(self._changes):
                self._notify_changed(tenant)
        else:
            self._states.pop(tenant_id, None)
            self._notify_changed(tenant_id)
