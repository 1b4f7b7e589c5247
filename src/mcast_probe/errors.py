#!/usr/bin/env python3
"""
Exception taxonomy for the multicast probe

Startup failures (ConfigError, BindFailure) abort the role.
Per-operation failures (SendFailure, ReceiveFailure, WireError) are
absorbed by the responder/prober loops and only show up in statistics.
"""


class ProbeError(Exception):
    """Base class for all multicast probe errors"""


class ConfigError(ProbeError):
    """Invalid or unreadable configuration"""


class BindFailure(ProbeError):
    """Socket bind or multicast group join refused by the platform"""


class SendFailure(ProbeError):
    """A single datagram could not be sent"""


class ReceiveFailure(ProbeError):
    """Terminal socket error while waiting for a datagram"""


class WireError(ProbeError):
    """Payload does not parse as the expected request/acknowledgment"""
