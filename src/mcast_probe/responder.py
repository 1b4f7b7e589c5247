#!/usr/bin/env python3
"""
Multicast Responder
Listens on the probe group and answers every request with a unicast
acknowledgment sent back to the datagram's source address/port
"""

import logging
import threading
from typing import Optional

from mcast_probe import metrics
from mcast_probe.errors import SendFailure, WireError
from mcast_probe.group_socket import Datagram
from mcast_probe.wire import parse_request, encode_ack

logger = logging.getLogger(__name__)

# Receive poll period so a stop request is noticed between datagrams
POLL_INTERVAL = 0.5


class Responder:
    """Receive -> validate -> unicast reply loop"""

    def __init__(self, transport, poll_interval: float = POLL_INTERVAL):
        self.transport = transport
        self.poll_interval = poll_interval
        self.group = getattr(transport, 'group', '')
        self.answered = 0
        self.discarded = 0
        self.send_failures = 0

    def handle(self, datagram: Datagram) -> bool:
        """Answer one datagram; returns True if an acknowledgment was sent"""
        try:
            request = parse_request(datagram.payload)
        except WireError as e:
            self.discarded += 1
            metrics.responder_discarded_counter.labels(group=self.group, reason='malformed').inc()
            logger.debug(f"Discarding {len(datagram.payload)} bytes from {datagram.peer[0]}: {e}")
            return False

        logger.debug(f"Request seq={request.sequence} from [{datagram.peer[0]}]:{datagram.peer[1]}")
        try:
            self.transport.send_unicast(datagram.peer, encode_ack(datagram.payload))
        except SendFailure as e:
            self.send_failures += 1
            metrics.responder_discarded_counter.labels(group=self.group, reason='send_failed').inc()
            logger.warning(f"Failed to reply to seq={request.sequence}: {e}")
            return False

        self.answered += 1
        metrics.responder_replies_counter.labels(group=self.group).inc()
        return True

    def serve(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        Run until stop_event is set.

        Raises:
            ReceiveFailure: if the socket itself fails; this ends the role
        """
        stop_event = stop_event or threading.Event()
        logger.info("Responder listening")

        while not stop_event.is_set():
            datagram = self.transport.receive(self.poll_interval)
            if datagram is None:
                continue
            self.handle(datagram)

        logger.info(f"Responder stopped: answered={self.answered} discarded={self.discarded} "
                    f"send_failures={self.send_failures}")
