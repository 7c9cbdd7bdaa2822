"""Synthetic usage used while no credential is available.

The snapshots produced here have the same shape as real ones, so the
presentation layer only has to look at ``using_mock_data``. The current
rung is implied by the snapshot's utilization; there is no other state.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from .config import MOCK_LEVELS, MOCK_SESSION_HOURS
from .state import CredentialStatus, UsageSnapshot


def initial_snapshot(status: CredentialStatus | None = None) -> UsageSnapshot:
    """All-zero, inactive mock snapshot."""
    return UsageSnapshot(using_mock_data=True, credential_status=status)


def next_level(percent: float) -> int:
    """The rung after the one ``percent`` sits on, wrapping to 0."""
    current = math.floor(percent)
    index = next((i for i, level in enumerate(MOCK_LEVELS) if level >= current), 0)
    return MOCK_LEVELS[(index + 1) % len(MOCK_LEVELS)]


def cycle(snapshot: UsageSnapshot, now: datetime | None = None) -> UsageSnapshot:
    """Advance to the next rung of the mock ladder."""
    level = next_level(snapshot.session_utilization)
    if level == 0:
        return expire(snapshot)
    reset_at = snapshot.session_reset_at
    if reset_at is None:
        now = now or datetime.now(timezone.utc)
        reset_at = now + timedelta(hours=MOCK_SESSION_HOURS)
    return replace(
        snapshot,
        session_utilization=float(level),
        session_active=True,
        session_reset_at=reset_at,
    )


def expire(snapshot: UsageSnapshot) -> UsageSnapshot:
    """Back to the zero rung: no session, no reset timestamp."""
    return replace(
        snapshot,
        session_utilization=0.0,
        session_active=False,
        session_reset_at=None,
    )
