#!/usr/bin/env python3
"""
Test the prober exchange engine against a scripted transport

Covers sequence numbering, reply correlation, stale reply handling,
timeout resolution and interval pacing
"""

import random
import threading

import pytest

from conftest import ScriptedTransport, PROBER_PEER
from mcast_probe.group_socket import Datagram
from mcast_probe.prober import Prober
from mcast_probe.wire import Request

WAIT_BOUND = 0.5


def make_prober(transport, clock, **kwargs):
    kwargs.setdefault('wait_bound', WAIT_BOUND)
    kwargs.setdefault('report_interval', 0)
    return Prober(transport, clock=clock, **kwargs)


def ack(sequence):
    return b"ACK:" + Request(sequence).encode()


def test_acked_request_records_latency(clock):
    """seq=0 acknowledged after 10ms -> one success, one ~10ms sample"""
    transport = ScriptedTransport(clock, reply_after=lambda seq: 0.010)
    prober = make_prober(transport, clock)

    result = prober.run_once()

    assert result.sequence == 0
    assert result.success
    assert result.latency_ms == pytest.approx(10.0)
    assert prober.stats.sent == 1
    assert prober.stats.received == 1
    assert prober.stats.samples == [pytest.approx(10.0)]
    print(f"✓ seq=0 acked in {result.latency_ms:.3f}ms")


def test_missing_reply_is_loss_after_wait_bound(clock):
    """seq=1 unanswered -> loss after exactly the wait bound, ratio 50%"""
    transport = ScriptedTransport(clock, reply_after=lambda seq: 0.010 if seq == 0 else None)
    prober = make_prober(transport, clock)
    prober.run_once()

    start = clock()
    result = prober.run_once()

    assert result.sequence == 1
    assert not result.success
    assert result.latency_ms is None
    assert clock() - start == pytest.approx(WAIT_BOUND)
    assert prober.stats.sent == 2
    assert prober.stats.received == 1
    assert prober.stats.delivery_ratio() == pytest.approx(0.5)
    assert prober.stats.samples == [pytest.approx(10.0)]


def test_stale_replies_do_not_affect_current_sequence(clock):
    """Two late acks for seq=4 arrive while seq=5 is outstanding"""
    transport = ScriptedTransport(clock, reply_after=lambda seq: 0.030 if seq == 5 else None)
    prober = make_prober(transport, clock)
    for _ in range(5):
        prober.run_once()
    assert prober.stats.received == 0

    start = clock()
    transport.inject(start + 0.005, ack(4))
    transport.inject(start + 0.012, ack(4))
    result = prober.run_once()

    assert result.sequence == 5
    assert result.success
    assert result.latency_ms == pytest.approx(30.0)
    assert prober.stats.received == 1
    assert prober.stats.sent == 6


def test_stale_replies_do_not_extend_timeout(clock, transport):
    prober = make_prober(transport, clock)
    prober.run_once()

    start = clock()
    transport.inject(start + 0.100, ack(0))
    transport.inject(start + 0.450, ack(0))
    result = prober.run_once()

    assert not result.success
    assert clock() - start == pytest.approx(WAIT_BOUND)
    # each wait after a stale reply only uses the remaining budget
    assert transport.receive_timeouts[-3:] == [
        pytest.approx(0.5), pytest.approx(0.4), pytest.approx(0.05)]


def test_stale_replies_do_not_shorten_timeout(clock, transport):
    prober = make_prober(transport, clock)
    transport.inject(clock() + 0.001, ack(7))

    start = clock()
    result = prober.run_once()

    assert not result.success
    assert clock() - start == pytest.approx(WAIT_BOUND)


def test_malformed_and_looped_back_datagrams_are_ignored(clock):
    transport = ScriptedTransport(clock, reply_after=lambda seq: 0.200)
    prober = make_prober(transport, clock)
    start = clock()
    transport.inject(start + 0.010, b"garbage")
    transport.inject(start + 0.020, b"")
    transport.inject(start + 0.030, Request(0).encode(), PROBER_PEER)  # our own request via loopback
    transport.inject(start + 0.040, b"ACK:PING -1")

    result = prober.run_once()

    assert result.success
    assert result.latency_ms == pytest.approx(200.0)


def test_sequences_start_at_zero_and_increase_by_one(clock):
    transport = ScriptedTransport(clock, reply_after=lambda seq: 0.001 if seq % 3 else None)
    prober = make_prober(transport, clock)

    results = [prober.run_once() for _ in range(20)]

    assert [r.sequence for r in results] == list(range(20))
    assert transport.sent_sequences() == list(range(20))


def test_send_failure_counts_as_loss_without_waiting(clock, transport):
    transport.send_error = "network unreachable"
    prober = make_prober(transport, clock)

    start = clock()
    result = prober.run_once()

    assert not result.success
    assert clock() == start
    assert transport.receive_timeouts == []
    assert prober.stats.sent == 1
    assert prober.stats.received == 0

    # the failed sequence is not reused
    transport.send_error = None
    assert prober.run_once().sequence == 1


def test_receive_failure_counts_as_loss(clock, transport):
    transport.receive_error = "socket closed"
    prober = make_prober(transport, clock)

    result = prober.run_once()

    assert not result.success
    assert prober.stats.sent == 1
    assert prober.stats.received == 0


class LateTransport(ScriptedTransport):
    """Delivers the matching ack, but only after overrunning the timeout"""

    def receive(self, timeout):
        self.clock.advance(timeout + 0.010)
        return Datagram(b"ACK:" + self.sent[-1], PROBER_PEER)


def test_reply_after_wait_bound_is_loss(clock):
    transport = LateTransport(clock)
    prober = make_prober(transport, clock)

    result = prober.run_once()

    assert not result.success
    assert prober.stats.samples == []


def test_latency_within_wait_bound_and_received_never_exceeds_sent(clock):
    rng = random.Random(42)

    def reply_after(seq):
        choice = rng.random()
        if choice < 0.3:
            return None
        return rng.uniform(0.0, 0.7)

    transport = ScriptedTransport(clock, reply_after=reply_after)
    prober = make_prober(transport, clock)

    for i in range(200):
        if rng.random() < 0.2:
            transport.inject(clock() + rng.uniform(0, 0.3), ack(max(0, i - 1)))
        prober.run_once()
        assert prober.stats.received <= prober.stats.sent
        assert prober.stats.sent == i + 1

    assert prober.stats.samples
    assert all(0.0 <= sample <= WAIT_BOUND * 1000 for sample in prober.stats.samples)


class SleepRecorder:
    def __init__(self, clock):
        self.clock = clock
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)
        self.clock.advance(seconds)


def test_run_sleeps_for_remainder_of_interval(clock):
    transport = ScriptedTransport(clock, reply_after=lambda seq: 0.010 if seq == 0 else None)
    sleep = SleepRecorder(clock)
    prober = make_prober(transport, clock, interval=1.0, sleep=sleep)

    stats = prober.run(max_iterations=3)

    assert stats.sent == 3
    assert stats.received == 1
    # no sleep after the last iteration
    assert sleep.calls == [pytest.approx(0.990), pytest.approx(0.5)]


def test_run_skips_sleep_when_wait_consumed_interval(clock, transport):
    sleep = SleepRecorder(clock)
    prober = make_prober(transport, clock, interval=0.3, sleep=sleep)

    prober.run(max_iterations=4)

    assert prober.stats.sent == 4
    assert sleep.calls == []


def test_run_stops_when_event_is_set(clock, transport):
    stop_event = threading.Event()

    def sleep(seconds):
        clock.advance(seconds)
        if prober.stats.sent >= 2:
            stop_event.set()

    prober = make_prober(transport, clock, interval=1.0, sleep=sleep)
    stats = prober.run(stop_event)

    assert stats.sent == 2


def test_run_does_nothing_when_already_stopped(clock, transport):
    stop_event = threading.Event()
    stop_event.set()
    prober = make_prober(transport, clock)

    stats = prober.run(stop_event)

    assert stats.sent == 0
    assert transport.sent == []


def test_run_logs_periodic_report(clock, caplog):
    transport = ScriptedTransport(clock, reply_after=lambda seq: 0.002)
    prober = make_prober(transport, clock, interval=1.0, report_interval=5.0,
                         sleep=SleepRecorder(clock))

    with caplog.at_level("INFO", logger="mcast_probe.prober"):
        prober.run(max_iterations=12)

    reports = [r.getMessage() for r in caplog.records if r.getMessage().startswith("sent=")]
    assert len(reports) == 2
    assert reports[0].startswith("sent=6 recv=6 success=100.00%")
    assert any(r.getMessage().startswith("FINAL: sent=12 recv=12") for r in caplog.records)
