import json
import threading
from types import SimpleNamespace

import pytest
import requests
from solders.hash import Hash
from solders.keypair import Keypair

from transfers import LAMPORTS_PER_SOL


class FakeClient:
    """Stands in for solana.rpc.api.Client."""

    def __init__(self, balance=LAMPORTS_PER_SOL, blockhash_failures=0, send_failures=0):
        self.balance = balance
        self.blockhash_failures = blockhash_failures
        self.send_failures = send_failures
        self.blockhash_calls = 0
        self.sent = []
        self._lock = threading.Lock()

    def get_balance(self, pubkey):
        return SimpleNamespace(value=self.balance)

    def get_latest_blockhash(self):
        with self._lock:
            self.blockhash_calls += 1
            if self.blockhash_failures > 0:
                self.blockhash_failures -= 1
                raise RuntimeError("blockhash unavailable")
        return SimpleNamespace(value=SimpleNamespace(blockhash=Hash.new_unique()))

    def send_transaction(self, tx):
        with self._lock:
            if self.send_failures > 0:
                self.send_failures -= 1
                raise RuntimeError("Blockhash not found")
            self.sent.append(tx)
        return SimpleNamespace(value=tx.signatures[0])


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("Expecting value")
        return self._payload


class FakeSession:
    """Routes requests by URL suffix to queued responses or exceptions."""

    def __init__(self, routes=None):
        self.routes = {suffix: list(items) for suffix, items in (routes or {}).items()}
        self.calls = []

    def _dispatch(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        for suffix, queue in self.routes.items():
            if url.endswith(suffix) and queue:
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, Exception):
                    raise item
                return item
        raise requests.ConnectionError(f"no route for {url}")

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def fake_client():
    return FakeClient()


class RecordingEvent(threading.Event):
    """Event that returns immediately from wait() and records each timeout.

    With ``stop_after`` set, the event sets itself on that wait call.
    """

    def __init__(self, stop_after=None):
        super().__init__()
        self.waits = []
        self.stop_after = stop_after

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self.stop_after is not None and len(self.waits) >= self.stop_after:
            self.set()
        return self.is_set()
