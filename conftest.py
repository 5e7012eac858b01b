"""
Shared fixtures: a fake socket factory and a manual timer, so the transport
and registry run without a network or real threads.
"""

import json

import pytest

from target_trainer.tt_registry import SessionRegistry
from target_trainer.tt_transport import TransportChannel


class FakeSocket:
    """Records frames sent by the console."""

    def __init__(self, fail_send=False):
        self.sent = []
        self.closed = False
        self.fail_send = fail_send

    def send(self, frame):
        if self.fail_send:
            raise OSError("socket send failed")
        self.sent.append(json.loads(frame))

    def close(self):
        self.closed = True

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]


class FakeConnector:
    """Socket factory; fails while fail_next > 0."""

    def __init__(self):
        self.sockets = []
        self.fail_next = 0
        self.calls = 0

    def __call__(self, url):
        self.calls += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ConnectionRefusedError("refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws

    @property
    def current(self):
        return self.sockets[-1]


class ManualScheduler:
    """Collects (delay, fn) pairs; run_next() fires the oldest one."""

    def __init__(self):
        self.pending = []
        self.delays = []

    def __call__(self, delay_secs, fn):
        self.delays.append(delay_secs)
        self.pending.append(fn)
        return None

    def run_next(self):
        fn = self.pending.pop(0)
        fn()


class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def channel(connector, scheduler):
    return TransportChannel(url="ws://test/ws", connector=connector, scheduler=scheduler,
                            base_ms=1000, max_attempts=5, start_reader=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(channel, clock):
    reg = SessionRegistry(channel, clock=clock)
    reg.attach()
    channel.connect()
    return reg


@pytest.fixture
def inbound(channel):
    """Deliver a server frame as if it came off the socket."""
    def deliver(msg_type, **payload):
        return channel.handle_message(json.dumps({"type": msg_type, **payload}))
    return deliver
