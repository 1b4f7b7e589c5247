#!/usr/bin/env python3
"""
Multicast Prober
Sends a sequenced request to the group every interval, waits up to the
wait bound for the matching unicast acknowledgment and accumulates
delivery/latency statistics

Only one request is outstanding at a time. Acknowledgments for any other
sequence are stale and dropped without touching the deadline.
"""

import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from mcast_probe import metrics
from mcast_probe.errors import SendFailure, ReceiveFailure, WireError
from mcast_probe.stats import SessionStats
from mcast_probe.wire import Request, parse_ack

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Outcome of one request/acknowledgment exchange"""
    sequence: int
    success: bool
    latency_ms: Optional[float]
    timestamp: float


class Prober:
    """Drives the measurement loop over a transport with send_multicast/receive"""

    def __init__(self, transport, stats: Optional[SessionStats] = None,
                 interval: float = 1.0, wait_bound: float = 0.5,
                 report_interval: float = 5.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Optional[Callable[[float], object]] = None):
        self.transport = transport
        self.stats = stats if stats is not None else SessionStats()
        self.interval = interval
        self.wait_bound = wait_bound
        self.report_interval = report_interval
        self.clock = clock
        self.sleep = sleep
        self.next_sequence = 0
        self.group = getattr(transport, 'group', '')

    def run_once(self) -> ProbeResult:
        """Send one request and wait for its acknowledgment or the wait bound"""
        sequence = self.next_sequence
        self.next_sequence += 1

        start = self.clock()
        try:
            self.transport.send_multicast(Request(sequence).encode())
        except (SendFailure, WireError) as e:
            self.stats.record_sent()
            logger.warning(f"Failed to send seq={sequence}: {e}")
            return self._finish(ProbeResult(sequence, False, None, time.time()))
        self.stats.record_sent()

        latency_ms = self._await_ack(sequence, start)
        if latency_ms is None:
            logger.debug(f"seq={sequence} lost (no reply within {self.wait_bound * 1000:.0f}ms)")
            return self._finish(ProbeResult(sequence, False, None, time.time()))

        self.stats.record_received(latency_ms)
        logger.debug(f"seq={sequence} acked in {latency_ms:.3f}ms")
        return self._finish(ProbeResult(sequence, True, latency_ms, time.time()))

    def _await_ack(self, sequence: int, start: float) -> Optional[float]:
        """Return the round-trip time in ms, or None when the wait bound runs out"""
        deadline = start + self.wait_bound
        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                return None

            try:
                datagram = self.transport.receive(remaining)
            except ReceiveFailure as e:
                logger.warning(f"Receive failed while waiting for seq={sequence}: {e}")
                return None
            if datagram is None:
                return None

            try:
                ack = parse_ack(datagram.payload)
            except WireError as e:
                logger.debug(f"Ignoring datagram from {datagram.peer[0]}: {e}")
                continue
            if ack.sequence != sequence:
                logger.debug(f"Ignoring stale ack seq={ack.sequence} (waiting for {sequence})")
                continue

            elapsed = self.clock() - start
            if elapsed > self.wait_bound:
                logger.debug(f"Ack for seq={sequence} arrived after the wait bound ({elapsed * 1000:.3f}ms)")
                return None
            return elapsed * 1000.0

    def _finish(self, result: ProbeResult) -> ProbeResult:
        metrics.requests_sent_counter.labels(group=self.group).inc()
        if result.success:
            metrics.replies_received_counter.labels(group=self.group).inc()
            metrics.rtt_gauge.labels(group=self.group).set(result.latency_ms)
            metrics.rtt_hist.labels(group=self.group).observe(result.latency_ms)
        ratio = self.stats.delivery_ratio()
        if ratio is not None:
            metrics.delivery_ratio_gauge.labels(group=self.group).set(ratio)
        return result

    def run(self, stop_event: Optional[threading.Event] = None,
            max_iterations: Optional[int] = None) -> SessionStats:
        """
        Probe every interval until stop_event is set or max_iterations is reached.

        The interval sleep waits on stop_event, so setting it ends the loop
        after the current exchange.

        Returns:
            The session statistics
        """
        stop_event = stop_event or threading.Event()
        sleep = self.sleep or stop_event.wait

        logger.info(f"Prober started: interval={self.interval * 1000:.0f}ms "
                    f"wait_bound={self.wait_bound * 1000:.0f}ms")
        last_report = self.clock()
        iterations = 0

        while not stop_event.is_set():
            start = self.clock()
            self.run_once()
            iterations += 1

            now = self.clock()
            if self.report_interval and now - last_report >= self.report_interval:
                logger.info(self.stats.format_line())
                last_report = now

            if max_iterations is not None and iterations >= max_iterations:
                break

            remaining = self.interval - (now - start)
            if remaining > 0:
                sleep(remaining)

        logger.info(f"FINAL: {self.stats.format_line()}")
        return self.stats
