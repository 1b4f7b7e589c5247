#!/usr/bin/env python3
"""
Prometheus metrics for the prober and responder
Exported over HTTP only when a metrics port is configured
"""

import logging
from prometheus_client import start_http_server, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

# Prober
requests_sent_counter = Counter('mcast_probe_requests_sent_total',
                                'Multicast requests sent (including failed sends)', ['group'])
replies_received_counter = Counter('mcast_probe_replies_received_total',
                                   'Matching acknowledgments received', ['group'])
delivery_ratio_gauge = Gauge('mcast_probe_delivery_ratio',
                             'Received / sent over the session', ['group'])
rtt_gauge = Gauge('mcast_probe_rtt_ms', 'Last round-trip time in milliseconds', ['group'])
rtt_hist = Histogram('mcast_probe_rtt_ms_hist', 'Round-trip time histogram', ['group'],
                     buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 50.0, 100.0, 200.0, 500.0])

# Responder
responder_replies_counter = Counter('mcast_probe_responder_replies_total',
                                    'Acknowledgments sent by the responder', ['group'])
responder_discarded_counter = Counter('mcast_probe_responder_discarded_total',
                                      'Datagrams discarded by the responder', ['group', 'reason'])


def start_metrics_server(port: int) -> bool:
    """Start the /metrics endpoint; port 0 disables it"""
    if not port:
        return False
    start_http_server(port)
    logger.info(f"Metrics server listening on :{port}/metrics")
    return True
