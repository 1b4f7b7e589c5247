#!/usr/bin/env python3
"""
Session statistics for one prober run
Counts and round-trip samples; derived values are computed on demand
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class SessionStats:
    """Sent/received counters and latency samples (milliseconds)"""
    sent: int = 0
    received: int = 0
    samples: List[float] = field(default_factory=list)

    def record_sent(self) -> None:
        self.sent += 1

    def record_received(self, latency_ms: float) -> None:
        """Count one matched acknowledgment and keep its round-trip time"""
        if self.received >= self.sent:
            raise ValueError(f"received would exceed sent ({self.received + 1} > {self.sent})")
        if latency_ms < 0:
            raise ValueError(f"negative latency {latency_ms}")
        self.received += 1
        self.samples.append(latency_ms)

    def delivery_ratio(self) -> Optional[float]:
        if self.sent == 0:
            return None
        return self.received / self.sent

    def delivery_percentage(self) -> Optional[float]:
        ratio = self.delivery_ratio()
        return None if ratio is None else ratio * 100.0

    def loss_ratio(self) -> Optional[float]:
        ratio = self.delivery_ratio()
        return None if ratio is None else 1.0 - ratio

    def last_latency(self) -> Optional[float]:
        return self.samples[-1] if self.samples else None

    def mean_latency(self) -> Optional[float]:
        if not self.samples:
            return None
        return sum(self.samples) / len(self.samples)

    def min_latency(self) -> Optional[float]:
        return min(self.samples) if self.samples else None

    def max_latency(self) -> Optional[float]:
        return max(self.samples) if self.samples else None

    def summary(self) -> dict:
        return {
            'sent': self.sent,
            'received': self.received,
            'delivery_pct': self.delivery_percentage(),
            'last_ms': self.last_latency(),
            'mean_ms': self.mean_latency(),
            'min_ms': self.min_latency(),
            'max_ms': self.max_latency(),
        }

    def format_line(self) -> str:
        """One-line report, e.g. 'sent=10 recv=9 success=90.00% rtt min/avg/max/last=...ms'"""
        s = self.summary()
        line = f"sent={s['sent']} recv={s['received']} success={(s['delivery_pct'] or 0.0):.2f}%"
        if s['last_ms'] is not None:
            line += (f" rtt min/avg/max/last={s['min_ms']:.3f}/{s['mean_ms']:.3f}/"
                     f"{s['max_ms']:.3f}/{s['last_ms']:.3f}ms")
        return line
