"""Credential Provider — OAuth tokens from Claude Code's Keychain entry.

SECURITY MODEL:
- Token Cat never creates credentials; it reads the record the Claude Code
  CLI keeps in the login keychain.
- Tokens are never logged or printed.
- Writes are read-modify-write so fields owned by the CLI survive.
"""

from __future__ import annotations

import getpass
import json
import logging
import subprocess
import time
from dataclasses import dataclass

from .config import KEYCHAIN_SERVICE, KEYCHAIN_TIMEOUT_SECONDS
from .errors import CredentialAccessDenied, CredentialError, CredentialNotFound

log = logging.getLogger(__name__)

_OAUTH_KEY = "claudeAiOauth"

# `security` exits with the low byte of the OSStatus; 44 is errSecItemNotFound
_EXIT_ITEM_NOT_FOUND = 44

# Buffer before expiry to report the token as expiring (5 minutes in ms)
_EXPIRY_BUFFER_MS = 5 * 60 * 1000


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str | None = None
    expires_at: str | int | None = None

    def __repr__(self) -> str:
        return f"Credential(expires_at={self.expires_at!r})"

    def health(self, now: float | None = None) -> tuple[str, str]:
        """Check whether the token is expired or expiring soon.

        Returns (status, message) where status is one of "ok", "expiring"
        or "expired".
        """
        if self.expires_at in (None, ""):
            return "ok", "Token present (no expiry info)"
        try:
            exp_ms = int(self.expires_at)
        except (ValueError, TypeError):
            return "ok", "Token present (unparseable expiry)"

        now_ms = int((time.time() if now is None else now) * 1000)
        if now_ms > exp_ms:
            return "expired", "Token expired, Claude Code should refresh it"
        elif now_ms > exp_ms - _EXPIRY_BUFFER_MS:
            mins_left = max(0, (exp_ms - now_ms) // 60000)
            return "expiring", f"Token expires in {mins_left}m"
        else:
            mins_left = (exp_ms - now_ms) // 60000
            return "ok", f"Token valid ({mins_left}m remaining)"


class KeychainStore:
    """Generic-password item in the macOS login keychain via ``security``."""

    def __init__(self, service: str = KEYCHAIN_SERVICE, account: str | None = None) -> None:
        self.service = service
        self.account = account or getpass.getuser()

    def read(self) -> str:
        """Return the raw secret, raising a CredentialError subclass."""
        result = self._run(
            ["security", "find-generic-password",
             "-s", self.service, "-a", self.account, "-w"],
        )
        if result.returncode == _EXIT_ITEM_NOT_FOUND:
            raise CredentialNotFound(f"No keychain item for {self.service!r}")
        if result.returncode != 0:
            log.warning("Keychain read refused (exit %d)", result.returncode)
            raise CredentialAccessDenied(f"Keychain refused access to {self.service!r}")
        return result.stdout.strip()

    def write(self, secret: str) -> None:
        """Create or update the item, raising a CredentialError subclass.

        The command goes to ``security -i`` on stdin with the secret
        hex-encoded, so the tokens never appear in the process list.
        """
        command = (
            f"add-generic-password -U -s {_quote(self.service)} "
            f"-a {_quote(self.account)} -X {secret.encode('utf-8').hex()}\n"
        )
        result = self._run(["security", "-i"], stdin=command)
        # Interactive mode reports a failed command on stderr
        if result.returncode != 0 or result.stderr.strip():
            log.warning("Keychain write refused (exit %d)", result.returncode)
            raise CredentialAccessDenied(f"Keychain refused write to {self.service!r}")

    def _run(self, args: list[str], stdin: str | None = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                args, input=stdin, capture_output=True, text=True,
                timeout=KEYCHAIN_TIMEOUT_SECONDS,
            )
        except FileNotFoundError:
            raise CredentialNotFound("`security` command not available") from None
        except subprocess.TimeoutExpired:
            # The unlock/allow prompt was left unanswered
            raise CredentialAccessDenied("Keychain prompt timed out") from None
        except OSError as exc:
            log.warning("Cannot run `security`: %s", exc)
            raise CredentialAccessDenied("`security` command could not be run") from None
        except UnicodeDecodeError:
            raise CredentialNotFound("Keychain item is not valid text") from None


def _quote(value: str) -> str:
    """Quote an argument for a ``security -i`` command line."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class CredentialProvider:
    """Resolves the OAuth token pair from a secret store."""

    def __init__(self, store=None) -> None:
        self._store = store or KeychainStore()

    def load_credential(self) -> Credential:
        record = self._read_record()
        oauth = record.get(_OAUTH_KEY)
        if not isinstance(oauth, dict):
            raise CredentialNotFound(f"No {_OAUTH_KEY} entry in credential record")
        token = oauth.get("accessToken")
        if not token or not isinstance(token, str):
            raise CredentialNotFound("No accessToken in credential record")
        return Credential(
            access_token=token,
            refresh_token=oauth.get("refreshToken") or None,
            expires_at=oauth.get("expiresAt"),
        )

    def load_access_token(self) -> str:
        return self.load_credential().access_token

    def load_refresh_token(self) -> str | None:
        """Best effort; returns None on any failure."""
        try:
            return self.load_credential().refresh_token
        except CredentialError:
            return None

    def save_tokens(self, access_token: str, refresh_token: str | None,
                    expires_at: str | int | None) -> bool:
        """Write a new token pair, keeping every other field in the record.

        Returns False instead of raising; callers treat it as non-fatal.
        """
        try:
            record = self._read_record()
        except CredentialNotFound:
            record = {}
        except CredentialAccessDenied:
            log.warning("Cannot save tokens: keychain access denied")
            return False

        oauth = record.get(_OAUTH_KEY)
        if not isinstance(oauth, dict):
            oauth = {}
        oauth = dict(oauth)
        oauth["accessToken"] = access_token
        if refresh_token is not None:
            oauth["refreshToken"] = refresh_token
        if expires_at is not None:
            oauth["expiresAt"] = expires_at
        record = dict(record)
        record[_OAUTH_KEY] = oauth

        try:
            self._store.write(json.dumps(record))
        except CredentialError as exc:
            log.warning("Cannot save tokens: %s", exc)
            return False
        log.info("Saved refreshed tokens to the keychain")
        return True

    def _read_record(self) -> dict:
        raw = self._store.read()
        try:
            record = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            log.error("Failed to parse keychain credential record")
            raise CredentialNotFound("Credential record is not valid JSON") from None
        if not isinstance(record, dict):
            raise CredentialNotFound("Credential record is not a JSON object")
        return record
