import json
import subprocess

import pytest

from conftest import MemoryStore, record
from tokencat import auth
from tokencat.auth import Credential, CredentialProvider, KeychainStore
from tokencat.errors import CredentialAccessDenied, CredentialNotFound


class SecurityCalls(list):
    """Recorded `security` invocations plus the outcome to fake."""

    def __init__(self):
        super().__init__()
        self.outcome = {"returncode": 0, "stdout": record("tok-k") + "\n", "stderr": ""}
        self.inputs = []


class TestCredentialProvider:

    def test_load_access_token(self):
        provider = CredentialProvider(MemoryStore(record("tok-a")))
        assert provider.load_access_token() == "tok-a"

    def test_load_credential_fields(self):
        provider = CredentialProvider(MemoryStore(record("tok-a", expiresAt=1735725600000)))
        credential = provider.load_credential()

        assert credential.access_token == "tok-a"
        assert credential.refresh_token == "refresh-1"
        assert credential.expires_at == 1735725600000

    def test_repr_hides_tokens(self):
        credential = Credential("secret-access", "secret-refresh", 1)
        assert "secret" not in repr(credential)

    @pytest.mark.parametrize("secret", [
        "not json",
        json.dumps([1, 2]),
        json.dumps({"other": {}}),
        json.dumps({"claudeAiOauth": {"accessToken": ""}}),
        json.dumps({"claudeAiOauth": "tok"}),
    ])
    def test_unusable_record_is_not_found(self, secret):
        with pytest.raises(CredentialNotFound):
            CredentialProvider(MemoryStore(secret)).load_access_token()

    def test_missing_and_denied_are_distinct(self):
        with pytest.raises(CredentialNotFound):
            CredentialProvider(MemoryStore()).load_access_token()
        with pytest.raises(CredentialAccessDenied):
            CredentialProvider(MemoryStore(denied=True)).load_access_token()

    def test_load_refresh_token_is_best_effort(self):
        assert CredentialProvider(MemoryStore(record("a"))).load_refresh_token() == "refresh-1"
        assert CredentialProvider(MemoryStore()).load_refresh_token() is None
        assert CredentialProvider(MemoryStore(denied=True)).load_refresh_token() is None

    def test_save_then_load_round_trip_keeps_siblings(self):
        original = {
            "claudeAiOauth": {
                "accessToken": "old",
                "refreshToken": "old-refresh",
                "expiresAt": "1",
                "scopes": ["user:inference", "user:profile"],
                "subscriptionType": "max",
            },
            "mcpOAuth": {"server": {"token": "x"}},
        }
        store = MemoryStore(json.dumps(original))
        provider = CredentialProvider(store)

        assert provider.save_tokens("new", "new-refresh", "2") is True
        assert provider.load_access_token() == "new"

        saved = json.loads(store.secret)
        assert saved["mcpOAuth"] == original["mcpOAuth"]
        assert saved["claudeAiOauth"]["scopes"] == ["user:inference", "user:profile"]
        assert saved["claudeAiOauth"]["subscriptionType"] == "max"
        assert saved["claudeAiOauth"]["refreshToken"] == "new-refresh"
        assert saved["claudeAiOauth"]["expiresAt"] == "2"

    def test_save_creates_missing_record(self):
        store = MemoryStore()
        provider = CredentialProvider(store)

        assert provider.save_tokens("fresh", None, None) is True
        assert json.loads(store.secret) == {"claudeAiOauth": {"accessToken": "fresh"}}

    def test_save_denied_returns_false(self):
        assert CredentialProvider(MemoryStore(denied=True)).save_tokens("a", "b", "c") is False


class TestCredentialHealth:

    def test_no_expiry(self):
        assert Credential("a").health()[0] == "ok"

    def test_unparseable_expiry(self):
        assert Credential("a", expires_at="tomorrow").health()[0] == "ok"

    def test_expired(self):
        assert Credential("a", expires_at=1_000).health(now=10.0)[0] == "expired"

    def test_expiring(self):
        status, message = Credential("a", expires_at=120_000).health(now=0.0)
        assert status == "expiring"
        assert message == "Token expires in 2m"

    def test_valid(self):
        status, message = Credential("a", expires_at="3600000").health(now=0.0)
        assert status == "ok"
        assert "60m" in message


class TestKeychainStore:

    @pytest.fixture
    def calls(self, monkeypatch):
        calls = SecurityCalls()

        def fake_run(args, **kwargs):
            calls.append(args)
            calls.inputs.append(kwargs.get("input"))
            if "raise" in calls.outcome:
                raise calls.outcome["raise"]
            return subprocess.CompletedProcess(
                args, calls.outcome["returncode"],
                stdout=calls.outcome["stdout"], stderr=calls.outcome["stderr"],
            )

        monkeypatch.setattr(auth.subprocess, "run", fake_run)
        return calls

    def test_read_strips_output(self, calls):
        store = KeychainStore(service="svc", account="me")

        assert store.read() == record("tok-k")
        assert calls[0] == ["security", "find-generic-password",
                            "-s", "svc", "-a", "me", "-w"]

    def test_item_not_found(self, calls):
        calls.outcome["returncode"] = 44
        with pytest.raises(CredentialNotFound):
            KeychainStore(account="me").read()

    @pytest.mark.parametrize("code", [36, 51, 128, 1])
    def test_other_failures_are_denied(self, calls, code):
        calls.outcome["returncode"] = code
        with pytest.raises(CredentialAccessDenied):
            KeychainStore(account="me").read()

    def test_missing_security_binary(self, calls):
        calls.outcome["raise"] = FileNotFoundError("security")
        with pytest.raises(CredentialNotFound):
            KeychainStore(account="me").read()

    def test_prompt_timeout_is_denied(self, calls):
        calls.outcome["raise"] = subprocess.TimeoutExpired("security", 5)
        with pytest.raises(CredentialAccessDenied):
            KeychainStore(account="me").read()

    @pytest.mark.parametrize("failure", [
        PermissionError(13, "Permission denied"),
        OSError(8, "Exec format error"),
    ])
    def test_unrunnable_security_binary_is_denied(self, calls, failure):
        calls.outcome["raise"] = failure
        with pytest.raises(CredentialAccessDenied):
            KeychainStore(account="me").read()

    def test_undecodable_output_is_not_found(self, calls):
        calls.outcome["raise"] = UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
        with pytest.raises(CredentialNotFound):
            KeychainStore(account="me").read()

    def test_write_keeps_secret_off_the_command_line(self, calls):
        secret = record("tok-secret")
        KeychainStore(service="Claude Code-credentials", account="me").write(secret)

        assert calls[0] == ["security", "-i"]
        assert calls.inputs[0] == (
            'add-generic-password -U -s "Claude Code-credentials" -a "me" '
            f"-X {secret.encode('utf-8').hex()}\n"
        )
        assert "tok-secret" not in calls.inputs[0]

    def test_write_quotes_service_and_account(self, calls):
        KeychainStore(service='a"b', account="c\\d").write("{}")

        assert calls.inputs[0].startswith('add-generic-password -U -s "a\\"b" -a "c\\\\d" ')

    def test_write_failure_is_denied(self, calls):
        calls.outcome["returncode"] = 51
        with pytest.raises(CredentialAccessDenied):
            KeychainStore(account="me").write("{}")

    def test_write_error_reported_on_stderr_is_denied(self, calls):
        calls.outcome["stderr"] = "security: SecKeychainItemCreateFromContent: User interaction is not allowed.\n"
        with pytest.raises(CredentialAccessDenied):
            KeychainStore(account="me").write("{}")

    def test_account_defaults_to_os_user(self, monkeypatch):
        monkeypatch.setattr(auth.getpass, "getuser", lambda: "whiskers")
        assert KeychainStore().account == "whiskers"

    def test_provider_defaults_to_keychain(self, calls):
        assert CredentialProvider().load_access_token() == "tok-k"
