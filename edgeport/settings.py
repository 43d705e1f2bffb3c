"""Interface service configuration and start-up preparation."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from edgeport.duration import Duration
from edgeport.interfaces import DEVBIND_SCRIPT, InterfaceService
from edgeport.ports import InterfaceServiceError

log = logging.getLogger("edgeport.settings")

_MISSING = object()


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    """Find key in data, preferring an exact match, else ignoring case."""
    if key in data:
        return data[key]
    folded = key.casefold()
    for name, value in data.items():
        if isinstance(name, str) and name.casefold() == folded:
            return value
    return _MISSING


def _string(data: Mapping[str, Any], key: str) -> str:
    value = _lookup(data, key)
    if value is _MISSING or value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}")
    return value


def _duration(data: Mapping[str, Any], key: str) -> Duration:
    value = _lookup(data, key)
    if value is _MISSING or value is None:
        return Duration()
    return Duration.from_json(value if isinstance(value, str) else json.dumps(value))


@dataclass
class Configuration:
    """Settings of the interface service as read from its JSON file."""

    endpoint: str = ""
    heartbeat_interval: Duration = field(default_factory=Duration)
    certs_dir: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Configuration":
        """Build a configuration from decoded JSON; key case is not significant."""
        if not isinstance(data, Mapping):
            raise ValueError("configuration must be a JSON object")
        return cls(
            endpoint=_string(data, "Endpoint"),
            heartbeat_interval=_duration(data, "HeartbeatInterval"),
            certs_dir=_string(data, "CertsDirectory"),
        )


def load_configuration(path: str | os.PathLike[str]) -> Configuration:
    """Read a JSON configuration file.

    Raises OSError when the file cannot be read and ValueError when it is not
    a valid configuration.
    """
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)
    return Configuration.from_dict(data)


def prepare_service(
    service: InterfaceService,
    devbind_path: str | os.PathLike[str] = DEVBIND_SCRIPT,
) -> InterfaceService:
    """Get the service ready to serve requests.

    Without the devbind script DPDK support is switched off; with it, ports
    left broken by a restart are reattached, failures being only logged.
    """
    if not os.path.exists(devbind_path):
        service.dpdk_enabled = False
        return service
    try:
        service.reattach_dpdk_ports()
    except InterfaceServiceError as err:
        log.error("Failed to reattach Dpdk ports: %s", err)
    return service