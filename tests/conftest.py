"""Fakes for the owner loop, executor, secret store and usage API."""

import json
from collections import deque
from concurrent.futures import Executor, Future
from datetime import datetime, timezone

import pytest

from tokencat.auth import CredentialProvider
from tokencat.errors import CredentialAccessDenied, CredentialNotFound
from tokencat.usage_api import ProfilePayload, UsageBucket, UsagePayload
from tokencat.usage_engine import UsageEngine

NOW = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


def record(access_token, **oauth_extra):
    """A keychain secret shaped like the one Claude Code writes."""
    oauth = {"accessToken": access_token, "refreshToken": "refresh-1",
             "expiresAt": "1735725600000"}
    oauth.update(oauth_extra)
    return json.dumps({"claudeAiOauth": oauth})


def usage(session=0.0, resets_at="2025-01-01T12:00:00Z", weekly=None, extra=None):
    return UsagePayload(
        five_hour=UsageBucket(utilization=session, resets_at=resets_at),
        seven_day=UsageBucket(utilization=weekly) if weekly is not None else None,
        extra_usage=extra,
    )


class FakeTimer:
    def __init__(self, loop, delay, callback, repeat):
        self.loop = loop
        self.delay = delay
        self.callback = callback
        self.repeat = repeat
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.loop.call_soon(self._fire)

    def _fire(self):
        if not self.cancelled:
            self.callback()


class FakeLoop:
    """Queues callables; tests decide when to run them with drain()."""

    def __init__(self):
        self.queue = deque()
        self.timers = []

    def call_soon(self, callback, *args):
        self.queue.append((callback, args))

    def call_later(self, delay, callback):
        timer = FakeTimer(self, delay, callback, repeat=False)
        self.timers.append(timer)
        return timer

    def call_every(self, interval, callback):
        timer = FakeTimer(self, interval, callback, repeat=True)
        self.timers.append(timer)
        return timer

    def drain(self):
        while self.queue:
            callback, args = self.queue.popleft()
            callback(*args)

    @property
    def active_timers(self):
        return [t for t in self.timers if not t.cancelled]

    @property
    def poll_timers(self):
        return [t for t in self.active_timers if t.repeat]


class ManualExecutor(Executor):
    """Runs work inline (auto=True) or holds it until run() is called."""

    def __init__(self, auto=True):
        self.auto = auto
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        if self.auto:
            self._run(future, fn, args, kwargs)
        else:
            self.pending.append((future, fn, args, kwargs))
        return future

    def run(self, index=0):
        future, fn, args, kwargs = self.pending.pop(index)
        self._run(future, fn, args, kwargs)

    def run_all(self):
        while self.pending:
            self.run(0)

    @staticmethod
    def _run(future, fn, args, kwargs):
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)


class MemoryStore:
    """Secret store kept in memory."""

    def __init__(self, secret=None, denied=False):
        self.secret = secret
        self.denied = denied
        self.reads = 0

    def read(self):
        self.reads += 1
        if self.denied:
            raise CredentialAccessDenied("denied")
        if self.secret is None:
            raise CredentialNotFound("no item")
        return self.secret

    def write(self, secret):
        if self.denied:
            raise CredentialAccessDenied("denied")
        self.secret = secret


class FakeAPI:
    """Returns queued usage results in call order; the last one repeats."""

    def __init__(self):
        self.usage_results = [usage(0.0)]
        self.profile_result = ProfilePayload(email="cat@example.com",
                                             organization_type="claude_max")
        self.usage_calls = []
        self.profile_calls = []

    def queue(self, *results):
        self.usage_results = list(results)

    def fetch_usage(self, token):
        self.usage_calls.append(token)
        if len(self.usage_results) > 1:
            result = self.usage_results.pop(0)
        else:
            result = self.usage_results[0]
        if isinstance(result, BaseException):
            raise result
        return result

    def fetch_profile(self, token):
        self.profile_calls.append(token)
        if isinstance(self.profile_result, BaseException):
            raise self.profile_result
        return self.profile_result


@pytest.fixture
def loop():
    return FakeLoop()


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def api():
    return FakeAPI()


@pytest.fixture
def make_engine(loop, executor, api):
    def factory(store):
        return UsageEngine(
            CredentialProvider(store),
            api=api,
            loop=loop,
            executor=executor,
            clock=lambda: NOW,
        )
    return factory
