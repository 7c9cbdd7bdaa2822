"""Usage State Engine: credential adoption, polling and the 401 recovery.

SECURITY MODEL:
- The access token lives only in the engine's memory; it is never logged
  and never written anywhere by the engine.
- Only the read-only usage and profile endpoints are called.

THREADING:
- Every method prefixed with ``_`` runs on the owner loop thread.
- Keychain reads and HTTP calls run on the executor; their results are
  posted back to the owner loop before touching the snapshot.

RECOVERY LOGIC:
- On 401, re-read the keychain once (Claude Code may have refreshed the
  token in the background). A different token is adopted and polling
  restarts under it; the same or no token surfaces the error.
- The first fetch under a recovered token is not eligible for another
  recovery, so a persistently rejected credential cannot loop.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from functools import partial
from typing import Callable

from . import mock, usage_api
from .config import POLL_INTERVAL_SECONDS
from .errors import (
    CredentialAccessDenied, CredentialError, CredentialNotFound,
    Unauthorized, UsageAPIError,
)
from .scheduler import OwnerLoop, TimerHandle
from .state import (
    CredentialStatus, ExtraUsage, SnapshotStore, UsageSnapshot,
)
from .utils import parse_reset_timestamp

log = logging.getLogger(__name__)


class EngineMode(enum.Enum):
    UNINITIALIZED = "uninitialized"
    MOCK = "mock"
    REAL = "real"


class UsageEngine:
    """Owns the usage snapshot and everything that changes it."""

    def __init__(
        self,
        credentials,
        api=None,
        loop: OwnerLoop | None = None,
        executor: Executor | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._credentials = credentials
        self._api = api or usage_api
        self._owns_loop = loop is None
        self._loop = loop or OwnerLoop()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="UsageFetch",
        )
        self._interval = poll_interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._store = SnapshotStore(mock.initial_snapshot())

        self._mode = EngineMode.UNINITIALIZED
        self._token: str | None = None
        # Bumped on every credential change; older completions are dropped
        self._generation = 0
        self._recovering = False
        self._poll_timer: TimerHandle | None = None
        self._reset_timer: TimerHandle | None = None
        self._closed = False

    # -- public surface (any thread) ---------------------------------------

    @property
    def snapshot(self) -> UsageSnapshot:
        return self._store.get()

    @property
    def mode(self) -> EngineMode:
        return self._mode

    def subscribe(self, callback: Callable[[UsageSnapshot], None]) -> Callable[[], None]:
        """Call ``callback`` with every new snapshot. Returns an unsubscribe."""
        return self._store.subscribe(callback)

    def start(self) -> None:
        """Resolve the credential once and begin polling or mock mode."""
        if self._owns_loop:
            self._loop.start()
        self._loop.call_soon(self._resolve_credentials)

    def refresh(self) -> None:
        """One out-of-band fetch; the polling timer is left alone."""
        self._loop.call_soon(self._refresh)

    def cycle_mock_usage(self) -> None:
        """Advance the mock ladder (mock mode only)."""
        self._loop.call_soon(self._cycle_mock)

    def reset(self) -> None:
        """Forget the credential and fall back to mock data."""
        self._loop.call_soon(self._reset)

    def close(self) -> None:
        """Stop all timers; results still in flight are ignored."""
        # Queued behind any adoption already posted, so its timer is cancelled too
        self._loop.call_soon(self._shutdown)
        if self._owns_loop:
            self._loop.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        log.info("Usage engine closed")

    # -- plumbing ----------------------------------------------------------

    def _shutdown(self) -> None:
        self._closed = True
        self._cancel_timers()

    def _submit(self, fn: Callable, on_done: Callable[[Future], None], *args) -> None:
        if self._closed:
            return
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError:
            # Executor already shut down by its owner
            log.debug("Executor closed, dropping %s", getattr(fn, "__name__", fn))
            return
        future.add_done_callback(
            lambda f: self._loop.call_soon(self._deliver, on_done, f)
        )

    def _deliver(self, on_done: Callable[[Future], None], future: Future) -> None:
        if self._closed or future.cancelled():
            return
        on_done(future)

    def _cancel_timers(self) -> None:
        for timer in (self._poll_timer, self._reset_timer):
            if timer is not None:
                timer.cancel()
        self._poll_timer = None
        self._reset_timer = None

    def _publish(self, snapshot: UsageSnapshot) -> None:
        self._store.replace(snapshot)

    # -- credential resolution ---------------------------------------------

    def _resolve_credentials(self) -> None:
        log.info("Resolving Claude Code credentials")
        self._submit(self._credentials.load_credential, self._on_credentials_resolved)

    def _on_credentials_resolved(self, future: Future) -> None:
        try:
            credential = future.result()
        except CredentialNotFound as exc:
            log.info("No credentials (%s), showing mock data", exc)
            self._enter_mock(CredentialStatus.NOT_FOUND)
            return
        except CredentialAccessDenied as exc:
            log.warning("Keychain access denied (%s), showing mock data", exc)
            self._enter_mock(CredentialStatus.ACCESS_DENIED)
            return

        status, message = credential.health()
        if status == "ok":
            log.info("Credential found: %s", message)
        else:
            # Still adopt it; the CLI may refresh the token before we poll
            log.warning("Credential found: %s", message)
        self._adopt(credential.access_token)

    def _enter_mock(self, status: CredentialStatus | None) -> None:
        self._cancel_timers()
        self._mode = EngineMode.MOCK
        self._token = None
        self._generation += 1
        self._recovering = False
        self._publish(mock.initial_snapshot(status))

    def _adopt(self, token: str, allow_reauth: bool = True) -> None:
        """Switch polling to ``token``: profile fetch, immediate poll, timer."""
        was_real = self._mode is EngineMode.REAL
        self._cancel_timers()
        self._mode = EngineMode.REAL
        self._token = token
        self._generation += 1
        self._recovering = False

        if not was_real:
            # Mock numbers never leak into real data
            self._publish(UsageSnapshot(
                using_mock_data=False,
                credential_status=CredentialStatus.FOUND,
            ))

        # Armed before the first fetch so a nested adoption replaces it
        self._poll_timer = self._loop.call_every(self._interval, self._poll)
        log.info("Polling usage every %ds (generation %d)", self._interval, self._generation)
        self._fetch_profile()
        self._poll(allow_reauth=allow_reauth)

    # -- profile -----------------------------------------------------------

    def _fetch_profile(self) -> None:
        self._submit(
            self._api.fetch_profile,
            partial(self._on_profile, self._generation),
            self._token,
        )

    def _on_profile(self, generation: int, future: Future) -> None:
        if generation != self._generation:
            return
        try:
            profile = future.result()
        except UsageAPIError as exc:
            # Only display metadata; never reaches the error field
            log.info("Profile fetch failed: %s", exc)
            return
        self._publish(replace(
            self.snapshot,
            account_email=profile.email,
            subscription_tier=profile.tier,
        ))

    # -- polling -----------------------------------------------------------

    def _poll(self, allow_reauth: bool = True) -> None:
        if self._closed or self._mode is not EngineMode.REAL:
            return
        log.debug("Polling usage (generation %d)", self._generation)
        self._submit(
            self._api.fetch_usage,
            partial(self._on_usage, self._token, self._generation, allow_reauth),
            self._token,
        )

    def _refresh(self) -> None:
        if self._mode is not EngineMode.REAL:
            log.info("Refresh ignored in %s mode", self._mode.value)
            return
        log.info("Manual refresh requested")
        self._poll()

    def _on_usage(self, token: str, generation: int, allow_reauth: bool,
                  future: Future) -> None:
        if generation != self._generation:
            log.debug("Dropping result from superseded generation %d", generation)
            return
        try:
            payload = future.result()
        except Unauthorized as exc:
            if allow_reauth:
                self._recover(token, exc)
            else:
                self._fail(exc)
            return
        except UsageAPIError as exc:
            self._fail(exc)
            return
        self._apply(payload)

    def _apply(self, payload: usage_api.UsagePayload) -> None:
        five = payload.five_hour
        utilization = five.utilization if five else 0.0
        reset_at = parse_reset_timestamp(five.resets_at) if five else None
        changes = dict(
            session_utilization=utilization,
            session_active=utilization > 0 and reset_at is not None,
            session_reset_at=reset_at,
            weekly_utilization=payload.seven_day.utilization if payload.seven_day else 0.0,
            error=None,
            last_updated=self._clock(),
        )
        extra = payload.extra_usage
        if extra is not None:
            changes["extra_usage"] = ExtraUsage(
                enabled=extra.is_enabled,
                used_credits=extra.used_credits or 0.0,
                monthly_limit_credits=extra.monthly_limit or 0,
                utilization=extra.utilization or 0.0,
            )
        self._publish(replace(self.snapshot, **changes))
        log.debug("Usage updated: session %.0f%%", utilization)

    def _fail(self, exc: UsageAPIError) -> None:
        log.warning("Poll failed: %s", exc.message)
        self._publish(replace(self.snapshot, error=exc))

    # -- 401 recovery ------------------------------------------------------

    def _recover(self, failed_token: str, exc: Unauthorized) -> None:
        if self._recovering:
            log.debug("401 while recovery is already in flight, ignoring")
            return
        self._recovering = True
        log.info("Got 401, re-reading credentials")
        self._submit(
            self._credentials.load_access_token,
            partial(self._on_recovery, failed_token, exc, self._generation),
        )

    def _on_recovery(self, failed_token: str, exc: Unauthorized, generation: int,
                     future: Future) -> None:
        if generation != self._generation or self._mode is not EngineMode.REAL:
            return
        self._recovering = False
        try:
            token = future.result()
        except CredentialError as cred_exc:
            log.warning("Credential re-read failed: %s", cred_exc)
            token = None

        if token is None or token == failed_token:
            self._fail(exc)
            return
        log.info("Credential was refreshed externally, switching to it")
        self._adopt(token, allow_reauth=False)

    # -- mock mode ---------------------------------------------------------

    def _cycle_mock(self) -> None:
        if self._mode is not EngineMode.MOCK:
            log.info("Cycle ignored in %s mode", self._mode.value)
            return
        snapshot = mock.cycle(self.snapshot, self._clock())
        self._publish(snapshot)
        self._arm_mock_reset(snapshot)

    def _arm_mock_reset(self, snapshot: UsageSnapshot) -> None:
        if self._reset_timer is not None:
            self._reset_timer.cancel()
            self._reset_timer = None
        if not snapshot.session_active or snapshot.session_reset_at is None:
            return
        delay = (snapshot.session_reset_at - self._clock()).total_seconds()
        if delay <= 0:
            self._expire_mock_session()
            return
        self._reset_timer = self._loop.call_later(delay, self._expire_mock_session)

    def _expire_mock_session(self) -> None:
        self._reset_timer = None
        if self._mode is not EngineMode.MOCK:
            return
        log.info("Mock session window elapsed")
        self._publish(mock.expire(self.snapshot))

    def _reset(self) -> None:
        log.info("Resetting to mock data")
        self._enter_mock(None)
