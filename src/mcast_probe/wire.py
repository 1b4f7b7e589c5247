#!/usr/bin/env python3
"""
Request / acknowledgment wire format

    request:          b"PING <seq>"
    acknowledgment:   b"ACK:" + request payload as received

Sequence numbers are unsigned 32-bit decimal integers.
"""

from dataclasses import dataclass

from mcast_probe.errors import WireError

MAX_PAYLOAD = 512
MAX_SEQUENCE = 0xFFFFFFFF

REQUEST_MARKER = b"PING "
ACK_PREFIX = b"ACK:"


@dataclass(frozen=True)
class Request:
    """Probe request emitted by the prober"""
    sequence: int

    def encode(self) -> bytes:
        if not 0 <= self.sequence <= MAX_SEQUENCE:
            raise WireError(f"sequence {self.sequence} does not fit in 32 bits")
        return REQUEST_MARKER + str(self.sequence).encode('ascii')


@dataclass(frozen=True)
class Acknowledgment:
    """Unicast reply echoing a request's sequence"""
    sequence: int


def _parse_sequence(digits: bytes) -> int:
    # int() would also accept signs, whitespace and underscores
    if not digits or not digits.isdigit() or len(digits) > 10:
        raise WireError(f"bad sequence field {digits[:16]!r}")
    sequence = int(digits)
    if sequence > MAX_SEQUENCE:
        raise WireError(f"sequence {sequence} does not fit in 32 bits")
    return sequence


def parse_request(payload: bytes) -> Request:
    """Parse a datagram as a request, raising WireError if it is not one"""
    if len(payload) > MAX_PAYLOAD:
        raise WireError(f"payload of {len(payload)} bytes exceeds {MAX_PAYLOAD}")
    if not payload.startswith(REQUEST_MARKER):
        raise WireError("missing request marker")
    return Request(_parse_sequence(payload[len(REQUEST_MARKER):]))


def encode_ack(request_payload: bytes) -> bytes:
    """Build the acknowledgment for a request payload already validated by parse_request"""
    return ACK_PREFIX + request_payload


def parse_ack(payload: bytes) -> Acknowledgment:
    """Parse a datagram as an acknowledgment, raising WireError if it is not one"""
    if len(payload) > MAX_PAYLOAD:
        raise WireError(f"payload of {len(payload)} bytes exceeds {MAX_PAYLOAD}")
    if not payload.startswith(ACK_PREFIX):
        raise WireError("missing acknowledgment prefix")
    request = parse_request(payload[len(ACK_PREFIX):])
    return Acknowledgment(request.sequence)
