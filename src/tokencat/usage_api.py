"""HTTP client for the Anthropic OAuth usage and profile endpoints.

SECURITY MODEL:
- Only calls read-only, non-billable OAuth endpoints.
- Uses an explicit SSL context with certificate verification.
- Response bodies are never logged or shown to users.

Every outcome is translated into the UsageAPIError taxonomy; nothing else
escapes ``fetch_usage`` or ``fetch_profile``. No retries happen here.
"""

from __future__ import annotations

import http.client
import json
import logging
import math
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass

import certifi

from .config import (
    OAUTH_BETA_HEADER, PROFILE_API_URL, REQUEST_TIMEOUT_SECONDS,
    USAGE_API_URL, USER_AGENT,
)
from .errors import (
    DecodingError, Forbidden, NetworkError, Unauthorized, UnexpectedStatus,
)
from .state import SubscriptionTier

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageBucket:
    utilization: float
    resets_at: str | None = None


@dataclass(frozen=True)
class ExtraUsagePayload:
    is_enabled: bool
    monthly_limit: int | None = None
    used_credits: float | None = None
    utilization: float | None = None


@dataclass(frozen=True)
class UsagePayload:
    five_hour: UsageBucket | None = None
    seven_day: UsageBucket | None = None
    extra_usage: ExtraUsagePayload | None = None


@dataclass(frozen=True)
class ProfilePayload:
    email: str
    organization_type: str | None = None

    @property
    def tier(self) -> SubscriptionTier | None:
        return SubscriptionTier.from_organization_type(self.organization_type)


def _ssl_context() -> ssl.SSLContext:
    """Create an SSL context with certificate verification enforced."""
    ctx = ssl.create_default_context(cafile=certifi.where())
    # Enforce minimum TLS 1.2
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    return ctx


def _authorized_request(url: str, access_token: str) -> urllib.request.Request:
    return urllib.request.Request(
        url,
        headers={
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "anthropic-beta": OAUTH_BETA_HEADER,
        },
        method="GET",
    )


def _perform(request: urllib.request.Request) -> bytes:
    """Send the request and return the body of a 200 response."""
    try:
        with urllib.request.urlopen(
            request, timeout=REQUEST_TIMEOUT_SECONDS, context=_ssl_context(),
        ) as resp:
            status = resp.status
            body = resp.read()
    except urllib.error.HTTPError as exc:
        status = exc.code
        body = b""
        exc.close()
    except urllib.error.URLError as exc:
        log.error("Request to %s failed: %s", request.full_url, exc.reason)
        raise NetworkError(exc.reason if exc.reason else exc) from exc
    except (http.client.HTTPException, OSError) as exc:
        # Timeouts, resets and malformed status lines land here
        log.error("Request to %s failed: %s", request.full_url, exc)
        raise NetworkError(exc) from exc

    if status == 200:
        return body
    log.error("API HTTP %d from %s", status, request.full_url)
    if status == 401:
        raise Unauthorized()
    if status == 403:
        raise Forbidden()
    raise UnexpectedStatus(status)


def _decode_json(body: bytes) -> dict:
    try:
        raw = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodingError(exc) from exc
    if not isinstance(raw, dict):
        raise DecodingError("top-level value is not an object")
    return raw


def _number(value, name: str, optional: bool = True) -> float | None:
    if value is None and optional:
        return None
    # bool is an int subclass but never a valid number here
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodingError(f"{name} is not a number")
    # json.loads yields inf for 1e999 and nan for NaN; huge ints overflow float()
    try:
        number = float(value)
    except OverflowError:
        raise DecodingError(f"{name} is out of range") from None
    if not math.isfinite(number):
        raise DecodingError(f"{name} is not finite")
    return number


def _object(raw: dict, key: str) -> dict | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise DecodingError(f"{key} is not an object")
    return value


def _bucket(raw: dict, key: str) -> UsageBucket | None:
    d = _object(raw, key)
    if d is None:
        return None
    resets_at = d.get("resets_at")
    if resets_at is not None and not isinstance(resets_at, str):
        raise DecodingError(f"{key}.resets_at is not a string")
    return UsageBucket(
        utilization=_number(d.get("utilization"), f"{key}.utilization", optional=False),
        resets_at=resets_at,
    )


def parse_usage(raw: dict) -> UsagePayload:
    """Parse the usage response, raising DecodingError on a shape mismatch."""
    extra = None
    extra_raw = _object(raw, "extra_usage")
    if extra_raw is not None:
        enabled = extra_raw.get("is_enabled")
        if not isinstance(enabled, bool):
            raise DecodingError("extra_usage.is_enabled is not a bool")
        limit = _number(extra_raw.get("monthly_limit"), "extra_usage.monthly_limit")
        extra = ExtraUsagePayload(
            is_enabled=enabled,
            monthly_limit=int(limit) if limit is not None else None,
            used_credits=_number(extra_raw.get("used_credits"), "extra_usage.used_credits"),
            utilization=_number(extra_raw.get("utilization"), "extra_usage.utilization"),
        )

    return UsagePayload(
        five_hour=_bucket(raw, "five_hour"),
        seven_day=_bucket(raw, "seven_day"),
        extra_usage=extra,
    )


def parse_profile(raw: dict) -> ProfilePayload:
    """Parse the profile response, raising DecodingError on a shape mismatch."""
    account = _object(raw, "account")
    if account is None or not isinstance(account.get("email"), str):
        raise DecodingError("account.email missing")
    org_type = None
    organization = _object(raw, "organization")
    if organization is not None:
        org_type = organization.get("organization_type")
        if org_type is not None and not isinstance(org_type, str):
            raise DecodingError("organization.organization_type is not a string")
    return ProfilePayload(email=account["email"], organization_type=org_type)


def fetch_usage(access_token: str) -> UsagePayload:
    """Call the OAuth usage endpoint and return the parsed payload."""
    body = _perform(_authorized_request(USAGE_API_URL, access_token))
    return parse_usage(_decode_json(body))


def fetch_profile(access_token: str) -> ProfilePayload:
    """Call the OAuth profile endpoint and return the parsed payload."""
    body = _perform(_authorized_request(PROFILE_API_URL, access_token))
    return parse_profile(_decode_json(body))
