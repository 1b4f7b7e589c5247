"""IPv6 multicast reachability and latency probe"""

__version__ = "1.0.0"
