"""
Shared fixtures: a controllable clock and a scripted in-memory transport
so the prober/responder loops can be exercised without sockets
"""

import sys
import heapq
import itertools
from pathlib import Path

import pytest

# Add src to path when the package is not installed
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from mcast_probe.errors import SendFailure, ReceiveFailure, WireError
from mcast_probe.group_socket import Datagram
from mcast_probe.wire import parse_request

RESPONDER_PEER = ('fe80::1', 9999, 0, 2)
PROBER_PEER = ('fe80::2', 40000, 0, 2)


class FakeClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ScriptedTransport:
    """
    Stands in for GroupSocket on the prober side.

    `reply_after(sequence)` returns the delay in seconds before the
    acknowledgment for that sequence arrives, or None for no reply.
    Extra datagrams can be queued at absolute clock times with `inject`.
    receive() advances the fake clock to the arrival time, or by the
    full timeout when nothing is due in time.
    """

    def __init__(self, clock, reply_after=None, group='ff12::1'):
        self.clock = clock
        self.reply_after = reply_after or (lambda sequence: None)
        self.group = group
        self.sent = []
        self.receive_timeouts = []
        self.send_error = None
        self.receive_error = None
        self._pending = []
        self._order = itertools.count()

    def inject(self, at, payload, peer=RESPONDER_PEER):
        heapq.heappush(self._pending, (at, next(self._order), Datagram(payload, peer)))

    def send_multicast(self, data):
        if self.send_error is not None:
            raise SendFailure(self.send_error)
        self.sent.append(data)
        try:
            sequence = parse_request(data).sequence
        except WireError:
            return
        delay = self.reply_after(sequence)
        if delay is not None:
            self.inject(self.clock() + delay, b"ACK:" + data)

    def receive(self, timeout):
        self.receive_timeouts.append(timeout)
        if self.receive_error is not None:
            raise ReceiveFailure(self.receive_error)
        if self._pending and self._pending[0][0] <= self.clock() + timeout:
            at, _, datagram = heapq.heappop(self._pending)
            self.clock.now = max(self.clock(), at)
            return datagram
        self.clock.advance(timeout)
        return None

    def sent_sequences(self):
        return [parse_request(data).sequence for data in self.sent]


class RecordingSocket:
    """Stands in for GroupSocket on the responder side"""

    def __init__(self, datagrams=(), group='ff12::1', stop_event=None):
        self.group = group
        self.incoming = list(datagrams)
        self.replies = []
        self.fail_for = set()
        self.stop_event = stop_event

    def send_unicast(self, peer, data):
        if data in self.fail_for:
            raise SendFailure(f"unreachable {peer[0]}")
        self.replies.append((peer, data))

    def receive(self, timeout):
        if self.incoming:
            return self.incoming.pop(0)
        if self.stop_event is not None:
            self.stop_event.set()
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport(clock):
    return ScriptedTransport(clock)
