"""Parsers for the text printed by dpdk-devbind.py and ovs-vsctl."""

from __future__ import annotations

import re
from collections.abc import Iterable

from edgeport.ports import DEFAULT_DPDK_DRIVER, Driver, InterfaceServiceError, Port

_DEVBIND_LINE = re.compile(r"[0-9a-fA-F]{4}(?::[0-9a-fA-F]{2}){2}.\d .*")
_PORT_PREFIX = "Port "


def _text(output: str | bytes) -> str:
    return output.decode(errors="replace") if isinstance(output, bytes) else output


def parse_devbind_status(output: str | bytes) -> list[str]:
    """Return the lines of `dpdk-devbind.py --status` that start with a PCI address."""
    return [line.strip() for line in _DEVBIND_LINE.findall(_text(output))]


def find_port_line(lines: Iterable[str], pci: str) -> str:
    """Return the first line starting with the PCI address, or an empty string."""
    return next((line for line in lines if line.startswith(pci)), "")


def list_values(port_info: str, key: str) -> list[str] | None:
    """Return the comma separated values of key=... in a devbind line, or None."""
    match = re.search(re.escape(key) + "=[^ ]*", port_info)
    if match is None:
        return None
    return match.group(0).split("=")[1].split(",")


def find_driver_to_bind(port: Port, current: str, unused: list[str] | None) -> str:
    """Choose the driver the port must be bound to; empty when no change is needed."""
    candidates = unused or []
    if port.driver == Driver.USERSPACE:
        if current == DEFAULT_DPDK_DRIVER:
            raise InterfaceServiceError(
                f"Could not bind device {port.pci} to DPDK driver - device already bound"
            )
        if DEFAULT_DPDK_DRIVER not in candidates:
            raise InterfaceServiceError(f"Port {port.pci} cannot use DPDK enabled driver")
        return DEFAULT_DPDK_DRIVER

    if current != DEFAULT_DPDK_DRIVER:
        return ""
    for driver in candidates:
        if driver != DEFAULT_DPDK_DRIVER:
            return driver
    raise InterfaceServiceError(f"Port {port.pci} cannot use kernel driver")


def trim_vsctl_output(output: str | bytes) -> list[str]:
    """Split ovs-vsctl output into its non-empty lines."""
    return [line for line in _text(output).rstrip("\r\n").split("\n") if line]


def find_dpdk_port_name(ovs_show_output: str, pci_line: str) -> str:
    """Find the name of the OVS port whose block holds pci_line in `ovs-vsctl show`."""
    seen: list[str] = []
    for raw in ovs_show_output.split("\n"):
        line = raw.strip()
        seen.append(line)
        if line == pci_line:
            break
    for line in reversed(seen):
        if line.startswith(_PORT_PREFIX):
            return line[len(_PORT_PREFIX):].strip('"')
    return ""