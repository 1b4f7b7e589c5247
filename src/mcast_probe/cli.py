#!/usr/bin/env python3
"""
mcast-probe command line entry point

    Responder:  mcast-probe -s -I eth0
    Prober:     mcast-probe -n 500

Some systems require an explicit interface when joining IPv6 multicast;
pass it with -I/--ifname (name or index).
"""

import sys
import signal
import logging
import argparse
import time
from dataclasses import replace

from mcast_probe import __version__
from mcast_probe.config import ConfigLoader, RunConfig, ROLES, ROLE_RESPONDER, ROLE_PROBER
from mcast_probe.errors import ProbeError
from mcast_probe.group_socket import GroupSocket
from mcast_probe.metrics import start_metrics_server
from mcast_probe.prober import Prober
from mcast_probe.responder import Responder

logger = logging.getLogger("mcast_probe")

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcast-probe",
        description="IPv6 multicast reachability and latency probe")
    role = parser.add_mutually_exclusive_group()
    role.add_argument("-s", "--responder", dest="role", action="store_const", const=ROLE_RESPONDER,
                      help="Run as responder (join the group and reply to senders)")
    role.add_argument("--prober", dest="role", action="store_const", const=ROLE_PROBER,
                      help="Run as prober, overriding a responder role from config")
    role.add_argument("--role", choices=ROLES, help="Role to run; overrides the config file and environment")
    parser.add_argument("-c", "--config", help="YAML configuration file")
    parser.add_argument("-a", "--group", help="IPv6 multicast group address")
    parser.add_argument("-p", "--port", type=int, help="UDP port for requests and replies")
    parser.add_argument("-I", "--ifname", help="Interface name or index for the multicast group")
    parser.add_argument("--hops", type=int, help="Multicast hop limit for requests (prober)")
    parser.add_argument("-n", "--interval-ms", type=int, help="Interval between requests in ms (prober)")
    parser.add_argument("--report-interval", type=float,
                        help="Seconds between running statistics reports, 0 disables (prober)")
    parser.add_argument("--metrics-port", type=int, help="Serve Prometheus metrics on this port")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_args(config: RunConfig, args: argparse.Namespace) -> RunConfig:
    """Overlay command-line flags on a loaded configuration"""
    endpoint = config.endpoint
    if args.group is not None:
        endpoint = replace(endpoint, group=args.group)
    if args.port is not None:
        endpoint = replace(endpoint, port=args.port)
    if args.ifname is not None:
        endpoint = replace(endpoint, interface=args.ifname)
    if args.hops is not None:
        endpoint = replace(endpoint, hops=args.hops)

    prober = config.prober
    if args.interval_ms is not None:
        prober = replace(prober, interval_ms=args.interval_ms)
    if args.report_interval is not None:
        prober = replace(prober, report_interval_s=args.report_interval)

    config = replace(config, endpoint=endpoint, prober=prober)
    if args.role is not None:
        config = replace(config, role=args.role)
    if args.metrics_port is not None:
        config = replace(config, metrics_port=args.metrics_port)
    if args.verbose:
        config = replace(config, log_level="DEBUG")
    return ConfigLoader.validate(config)


class StopFlag:
    """
    Stop request shared by the signal handlers and the role loops.

    Offers the is_set/set/wait subset of threading.Event, but set() only
    assigns a bool, so it is safe to call from a signal handler that may
    interrupt the main thread inside wait().
    """

    def __init__(self, poll_interval: float = 0.1):
        self.poll_interval = poll_interval
        self._set = False

    def is_set(self) -> bool:
        return self._set

    def set(self) -> None:
        self._set = True

    def wait(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while not self._set:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(remaining, self.poll_interval))
        return self._set


def install_signal_handlers(stop_flag: StopFlag) -> None:
    def handler(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        stop_flag.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_responder(config: RunConfig, stop_event: StopFlag) -> None:
    endpoint = config.endpoint
    logger.info(f"Starting responder: group=[{endpoint.group}]:{endpoint.port} "
                f"interface={endpoint.interface or 'default'}")
    with GroupSocket.join(endpoint.group, endpoint.port, endpoint.interface) as sock:
        Responder(sock).serve(stop_event)


def run_prober(config: RunConfig, stop_event: StopFlag) -> None:
    endpoint = config.endpoint
    logger.info(f"Starting prober: sending to [{endpoint.group}]:{endpoint.port} "
                f"every {config.prober.interval_ms}ms, wait bound {endpoint.wait_bound_ms}ms")
    with GroupSocket.open_ephemeral(endpoint.group, endpoint.port,
                                    hops=endpoint.hops, interface=endpoint.interface) as sock:
        prober = Prober(sock,
                        interval=config.prober.interval,
                        wait_bound=endpoint.wait_bound,
                        report_interval=config.prober.report_interval_s)
        prober.run(stop_event)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)

    try:
        config = apply_args(ConfigLoader.load(args.config), args)
    except ProbeError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    logging.getLogger().setLevel(config.log_level)

    stop_event = StopFlag()
    install_signal_handlers(stop_event)

    try:
        start_metrics_server(config.metrics_port)
        if config.role == ROLE_RESPONDER:
            run_responder(config, stop_event)
        elif config.role == ROLE_PROBER:
            run_prober(config, stop_event)
    except ProbeError as e:
        logger.error(f"Fatal error: {e}")
        return 1
    except OSError as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
