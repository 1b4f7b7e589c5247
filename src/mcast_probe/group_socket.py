#!/usr/bin/env python3
"""
IPv6 multicast UDP transport
Join a group, send unicast/multicast datagrams, receive with a wait bound

No protocol logic lives here; payloads are opaque bytes.
"""

import socket
import struct
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from mcast_probe.errors import BindFailure, SendFailure, ReceiveFailure
from mcast_probe.wire import MAX_PAYLOAD

logger = logging.getLogger(__name__)

# (address, port, flowinfo, scope_id) as returned by recvfrom on AF_INET6
PeerEndpoint = Tuple


@dataclass(frozen=True)
class Datagram:
    """A received payload together with the sender taken from recvfrom"""
    payload: bytes
    peer: PeerEndpoint


def resolve_interface(interface: Optional[Union[str, int]]) -> int:
    """Map an interface name or index to an index; 0 means the system default"""
    if interface is None:
        return 0
    if isinstance(interface, int):
        return interface
    try:
        return socket.if_nametoindex(interface)
    except OSError as e:
        raise BindFailure(f"interface '{interface}' not found: {e}") from e


class GroupSocket:
    """UDP/IPv6 socket bound for use with one multicast group"""

    def __init__(self, sock: socket.socket, group: str, port: int):
        self.sock = sock
        self.group = group
        self.port = port

    @classmethod
    def join(cls, group: str, port: int,
             interface: Optional[Union[str, int]] = None) -> "GroupSocket":
        """
        Bind [::]:port and join the multicast group on an interface.

        Raises:
            BindFailure: if the platform refuses the bind or the join
        """
        if_index = resolve_interface(interface)
        sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(('::', port))
            mreq = socket.inet_pton(socket.AF_INET6, group) + struct.pack('@I', if_index)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 1)
        except OSError as e:
            sock.close()
            raise BindFailure(f"cannot join [{group}]:{port} (if_index={if_index}): {e}") from e

        logger.info(f"Joined multicast [{group}]:{port} (if_index={if_index})")
        return cls(sock, group, port)

    @classmethod
    def open_ephemeral(cls, group: str, port: int, hops: int = 1,
                       interface: Optional[Union[str, int]] = None) -> "GroupSocket":
        """
        Bind an ephemeral port for sending to the group and receiving unicast replies.

        Raises:
            BindFailure: if the socket cannot be bound or configured
        """
        if_index = resolve_interface(interface)
        sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.bind(('::', 0))
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_HOPS, hops)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 1)
            if if_index:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, if_index)
        except OSError as e:
            sock.close()
            raise BindFailure(f"cannot open sender socket for [{group}]:{port}: {e}") from e

        logger.info(f"Sender socket bound to port {sock.getsockname()[1]} (hops={hops})")
        return cls(sock, group, port)

    def send_unicast(self, peer: PeerEndpoint, data: bytes) -> None:
        """Send a datagram directly to one peer"""
        try:
            self.sock.sendto(data, peer)
        except OSError as e:
            raise SendFailure(f"failed to send {len(data)} bytes to {peer[0]}: {e}") from e

    def send_multicast(self, data: bytes) -> None:
        """Send a datagram to the group address"""
        try:
            self.sock.sendto(data, (self.group, self.port))
        except OSError as e:
            raise SendFailure(f"failed to send {len(data)} bytes to [{self.group}]:{self.port}: {e}") from e

    def receive(self, timeout: float) -> Optional[Datagram]:
        """
        Wait up to `timeout` seconds for one datagram.

        Returns:
            The datagram, or None if the wait bound elapsed first

        Raises:
            ReceiveFailure: on a socket error other than the timeout
        """
        if timeout <= 0:
            return None
        try:
            self.sock.settimeout(timeout)
            # one extra byte so oversize payloads are visible to the codec
            payload, peer = self.sock.recvfrom(MAX_PAYLOAD + 1)
        except socket.timeout:
            return None
        except OSError as e:
            raise ReceiveFailure(f"receive failed: {e}") from e
        return Datagram(payload=payload, peer=peer)

    def local_port(self) -> int:
        return self.sock.getsockname()[1]

    def close(self) -> None:
        self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
