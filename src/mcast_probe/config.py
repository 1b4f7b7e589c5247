#!/usr/bin/env python3
"""
Multicast Probe Configuration
Endpoint identifiers plus the run settings for the responder/prober roles

Settings are layered: dataclass defaults, then an optional YAML file,
then MCAST_PROBE_* environment variables. Command-line flags are applied
on top by the cli module.
"""

import os
import ipaddress
import logging
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Union

import yaml

from mcast_probe.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "ff12:c909:3199:e8ba:6f6f:7d23:e6ae:d85d"
DEFAULT_PORT = 9999
WAIT_BOUND_MS = 500
DEFAULT_INTERVAL_MS = 1000
DEFAULT_REPORT_INTERVAL_S = 5.0

ROLE_RESPONDER = "responder"
ROLE_PROBER = "prober"
ROLES = (ROLE_RESPONDER, ROLE_PROBER)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EndpointConfig:
    """Fixed identifiers shared by both roles"""
    group: str = DEFAULT_GROUP
    port: int = DEFAULT_PORT
    interface: Optional[Union[str, int]] = None
    hops: int = 1
    wait_bound_ms: int = WAIT_BOUND_MS

    @property
    def wait_bound(self) -> float:
        """Wait bound in seconds"""
        return self.wait_bound_ms / 1000.0


@dataclass(frozen=True)
class ProberConfig:
    """Prober-only knobs"""
    interval_ms: int = DEFAULT_INTERVAL_MS
    report_interval_s: float = DEFAULT_REPORT_INTERVAL_S

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000.0


@dataclass(frozen=True)
class RunConfig:
    """Complete configuration for one process instance"""
    role: str = ROLE_PROBER
    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    prober: ProberConfig = field(default_factory=ProberConfig)
    metrics_port: int = 0
    log_level: str = "INFO"


def _split_long_groups(text: str) -> str:
    # ff12c909:3199:... -> ff12:c909:3199:...
    parts = []
    for group in text.split(':'):
        if len(group) <= 4:
            parts.append(group)
            continue
        parts.extend(group[i:i + 4] for i in range(0, len(group), 4))
    return ':'.join(parts)


def parse_group_address(text: str) -> str:
    """
    Parse and normalize an IPv6 multicast group address.

    Hex groups longer than four digits are split into four-digit chunks
    before giving up, so a missing colon is tolerated.

    Returns:
        The compressed textual form of the address

    Raises:
        ConfigError: if the text is not an IPv6 multicast address
    """
    try:
        address = ipaddress.IPv6Address(text)
    except ValueError:
        fixed = _split_long_groups(text)
        try:
            address = ipaddress.IPv6Address(fixed)
        except ValueError:
            raise ConfigError(f"failed to parse IPv6 address '{text}', tried '{fixed}'") from None
        logger.info(f"Fixed multicast address from '{text}' -> '{fixed}'")

    if not address.is_multicast:
        raise ConfigError(f"{address} is not a multicast address")
    return address.compressed


class ConfigLoader:
    """Builds and validates a RunConfig from YAML and environment"""

    ENV_PREFIX = "MCAST_PROBE_"

    @staticmethod
    def load(config_path: Optional[str] = None,
             env: Optional[Mapping[str, str]] = None) -> RunConfig:
        """Load configuration: defaults, then YAML file, then environment"""
        config = RunConfig()

        if config_path:
            try:
                with open(config_path, 'r') as f:
                    raw = yaml.safe_load(f) or {}
            except FileNotFoundError:
                logger.error(f"Config file not found: {config_path}")
                raise ConfigError(f"config file not found: {config_path}") from None
            except yaml.YAMLError as e:
                logger.error(f"YAML parsing error: {e}")
                raise ConfigError(f"invalid YAML in {config_path}: {e}") from e

            if not isinstance(raw, dict):
                raise ConfigError(f"{config_path}: top level must be a mapping")
            config = ConfigLoader._apply_mapping(config, raw)
            logger.info(f"Loaded configuration from {config_path}")

        config = ConfigLoader._apply_env(config, os.environ if env is None else env)
        return ConfigLoader.validate(config)

    @staticmethod
    def _section(raw: dict, name: str) -> dict:
        section = raw.get(name)
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise ConfigError(f"'{name}' must be a mapping, got {type(section).__name__}")
        return section

    @staticmethod
    def _apply_mapping(config: RunConfig, raw: dict) -> RunConfig:
        endpoint_raw = ConfigLoader._section(raw, 'endpoint')
        prober_raw = ConfigLoader._section(raw, 'prober')

        try:
            endpoint = replace(
                config.endpoint,
                group=str(endpoint_raw.get('group', config.endpoint.group)),
                port=int(endpoint_raw.get('port', config.endpoint.port)),
                interface=endpoint_raw.get('interface', config.endpoint.interface),
                hops=int(endpoint_raw.get('hops', config.endpoint.hops)),
            )
            prober = replace(
                config.prober,
                interval_ms=int(prober_raw.get('interval_ms', config.prober.interval_ms)),
                report_interval_s=float(prober_raw.get('report_interval_s',
                                                       config.prober.report_interval_s)),
            )
            return replace(
                config,
                role=str(raw.get('role', config.role)),
                endpoint=endpoint,
                prober=prober,
                metrics_port=int(raw.get('metrics_port', config.metrics_port)),
                log_level=str(raw.get('log_level', config.log_level)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid configuration value: {e}") from e

    @staticmethod
    def _apply_env(config: RunConfig, env: Mapping[str, str]) -> RunConfig:
        def get(name):
            return env.get(ConfigLoader.ENV_PREFIX + name)

        mapping = {'endpoint': {}, 'prober': {}}
        if get('ROLE') is not None:
            mapping['role'] = get('ROLE')
        if get('GROUP') is not None:
            mapping['endpoint']['group'] = get('GROUP')
        if get('PORT') is not None:
            mapping['endpoint']['port'] = get('PORT')
        if get('INTERFACE') is not None:
            mapping['endpoint']['interface'] = get('INTERFACE')
        if get('HOPS') is not None:
            mapping['endpoint']['hops'] = get('HOPS')
        if get('INTERVAL_MS') is not None:
            mapping['prober']['interval_ms'] = get('INTERVAL_MS')
        if get('REPORT_INTERVAL') is not None:
            mapping['prober']['report_interval_s'] = get('REPORT_INTERVAL')
        if get('METRICS_PORT') is not None:
            mapping['metrics_port'] = get('METRICS_PORT')
        if get('LOG_LEVEL') is not None:
            mapping['log_level'] = get('LOG_LEVEL')

        return ConfigLoader._apply_mapping(config, mapping)

    @staticmethod
    def validate(config: RunConfig) -> RunConfig:
        """Validate configuration consistency, normalizing the group address"""
        if config.role not in ROLES:
            raise ConfigError(f"unknown role '{config.role}' (expected one of {', '.join(ROLES)})")

        endpoint = config.endpoint
        if not 1 <= endpoint.port <= 65535:
            raise ConfigError(f"port {endpoint.port} out of range 1-65535")
        if not 0 <= endpoint.hops <= 255:
            raise ConfigError(f"hops {endpoint.hops} out of range 0-255")
        if endpoint.wait_bound_ms <= 0:
            raise ConfigError("wait bound must be positive")

        if config.prober.interval_ms <= 0:
            raise ConfigError(f"interval_ms must be positive, got {config.prober.interval_ms}")
        if config.prober.report_interval_s < 0:
            raise ConfigError("report_interval_s must not be negative")
        if not 0 <= config.metrics_port <= 65535:
            raise ConfigError(f"metrics_port {config.metrics_port} out of range 0-65535")
        if config.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"unknown log level '{config.log_level}'")

        interface = endpoint.interface
        if isinstance(interface, bool) or not isinstance(interface, (str, int, type(None))):
            raise ConfigError(f"interface must be a name or an index, got {interface!r}")
        if isinstance(interface, int) and interface < 0:
            raise ConfigError(f"interface index {interface} must not be negative")
        if isinstance(interface, str) and interface.isdigit():
            interface = int(interface)
        if interface == '':
            interface = None

        return replace(
            config,
            endpoint=replace(endpoint, group=parse_group_address(endpoint.group), interface=interface),
            log_level=config.log_level.upper(),
        )
