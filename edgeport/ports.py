"""Port descriptions and validation for the interface service."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum

DEFAULT_DPDK_DRIVER = "igb_uio"
NETDEV_BRIDGE_OPTION = "netdev"

_PCI_PATTERN = re.compile(r"[0-9]{0,4}:[0-9a-f]{2}:[0-9a-f]{2}\.[0-9a-f]{1}\Z")


class InterfaceServiceError(Exception):
    """Raised when a port operation cannot be carried out."""


class Driver(IntEnum):
    """Kind of driver a port is bound to."""

    NONE = 0
    KERNEL = 1
    USERSPACE = 2


@dataclass
class Port:
    """A physical network port and the bridge it belongs to."""

    pci: str
    bridge: str = ""
    driver: Driver = Driver.NONE
    mac_address: str = ""


@dataclass
class NetworkDevice:
    """A network device as seen by the kernel."""

    pci: str
    name: str = ""
    mac: str = ""


def validate_port(port: Port) -> Port:
    """Check the port's PCI address, bridge and driver; return the port."""
    if not _PCI_PATTERN.search(port.pci):
        raise InterfaceServiceError(f"PCI address {port.pci} is invalid")
    if not port.bridge:
        raise InterfaceServiceError("Bridge has been not provided")
    if port.driver not in (Driver.USERSPACE, Driver.KERNEL):
        raise InterfaceServiceError("Driver has to be 'kernel' or 'dpdk'")
    return port