"""Usage snapshot, derived cat state and the observable snapshot store.

SECURITY MODEL:
- Contains only usage metrics and profile metadata.
- No credentials or tokens ever flow through this module.
"""

from __future__ import annotations

import enum
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .config import THRESHOLD_EXHAUSTED, THRESHOLD_MODERATE, THRESHOLD_STRAINED
from .errors import UsageAPIError
from .utils import format_reset_time

log = logging.getLogger(__name__)


class CatState(enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    MODERATE = "moderate"
    STRAINED = "strained"
    EXHAUSTED = "exhausted"


class SubscriptionTier(enum.Enum):
    FREE = "Free"
    PRO = "Pro"
    MAX = "Max"
    TEAM = "Team"
    ENTERPRISE = "Enterprise"

    @classmethod
    def from_organization_type(cls, value: str | None) -> SubscriptionTier | None:
        """Map the profile's ``organization_type`` to a tier, None if unknown."""
        if not value:
            return None
        key = value.strip().lower()
        if key.startswith("claude_"):
            key = key[len("claude_"):]
        for tier in cls:
            if tier.value.lower() == key:
                return tier
        return None


class CredentialStatus(enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"


@dataclass(frozen=True)
class ExtraUsage:
    """Metered usage beyond the plan. Credits are in cents."""
    enabled: bool = False
    used_credits: float = 0.0
    monthly_limit_credits: int = 0
    utilization: float = 0.0


def cat_state_for(session_active: bool, utilization: float) -> CatState:
    """Map session activity and utilization to a cat state."""
    if not session_active:
        return CatState.IDLE
    if math.isnan(utilization):
        return CatState.ACTIVE
    # Clamped so floor() never sees an infinity
    p = math.floor(min(max(utilization, 0.0), THRESHOLD_EXHAUSTED))
    if p < THRESHOLD_MODERATE:
        return CatState.ACTIVE
    if p < THRESHOLD_STRAINED:
        return CatState.MODERATE
    if p < THRESHOLD_EXHAUSTED:
        return CatState.STRAINED
    return CatState.EXHAUSTED


def usage_ratio(percent: float) -> float:
    """Usage as 0.0-1.0, clamped. NaN counts as no usage."""
    if math.isnan(percent):
        return 0.0
    return min(max(percent / 100.0, 0.0), 1.0)


@dataclass(frozen=True)
class UsageSnapshot:
    """Everything the presentation layer may read, replaced atomically."""
    session_utilization: float = 0.0
    session_active: bool = False
    session_reset_at: datetime | None = None
    weekly_utilization: float = 0.0
    extra_usage: ExtraUsage | None = None
    account_email: str | None = None
    subscription_tier: SubscriptionTier | None = None
    last_updated: datetime | None = None
    error: UsageAPIError | None = None
    using_mock_data: bool = True
    credential_status: CredentialStatus | None = None

    @property
    def cat_state(self) -> CatState:
        return cat_state_for(self.session_active, self.session_utilization)

    @property
    def usage_percent(self) -> float:
        return self.session_utilization

    @property
    def usage_ratio(self) -> float:
        return usage_ratio(self.session_utilization)

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error is not None else None

    @property
    def show_weekly(self) -> bool:
        # Zero weekly usage and an omitted bucket look the same; both hide it
        return not self.using_mock_data and self.weekly_utilization > 0

    @property
    def show_extra_usage(self) -> bool:
        return (
            not self.using_mock_data
            and self.extra_usage is not None
            and self.extra_usage.enabled
        )

    @property
    def connection_hint(self) -> str | None:
        """Why we are not connected, or None when real data is flowing."""
        if not self.using_mock_data:
            return None
        if self.credential_status is CredentialStatus.ACCESS_DENIED:
            return "Keychain access denied. Allow access to connect"
        if self.credential_status is CredentialStatus.NOT_FOUND:
            return "Run `claude login` to connect"
        return "Not connected"

    def session_reset_text(self, now: datetime | None = None) -> str:
        if not self.session_active:
            return "No active session"
        return format_reset_time(self.session_reset_at, now)


class SnapshotStore:
    """Holds the current snapshot and notifies observers on replacement.

    Observers run once per ``replace`` call, after the new snapshot is
    visible, and always see a complete snapshot.
    """

    def __init__(self, initial: UsageSnapshot | None = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = initial or UsageSnapshot()
        self._callbacks: list[Callable[[UsageSnapshot], None]] = []

    def replace(self, snapshot: UsageSnapshot) -> None:
        """Swap in a new snapshot and notify all callbacks."""
        with self._lock:
            self._snapshot = snapshot
            callbacks = list(self._callbacks)
        for cb in callbacks:
            try:
                cb(snapshot)
            except Exception:
                log.exception("Snapshot observer %r failed", cb)

    def get(self) -> UsageSnapshot:
        with self._lock:
            return self._snapshot

    def subscribe(self, callback: Callable[[UsageSnapshot], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe
