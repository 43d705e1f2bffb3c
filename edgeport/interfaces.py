"""Attaching, detaching and listing physical ports on Open vSwitch bridges."""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Callable, Iterable

from edgeport.parsing import (
    find_driver_to_bind,
    find_dpdk_port_name,
    find_port_line,
    list_values,
    parse_devbind_status,
    trim_vsctl_output,
)
from edgeport.ports import (
    DEFAULT_DPDK_DRIVER,
    NETDEV_BRIDGE_OPTION,
    Driver,
    InterfaceServiceError,
    NetworkDevice,
    Port,
    validate_port,
)

log = logging.getLogger("edgeport.interfaces")

DEVBIND_SCRIPT = "./dpdk-devbind.py"
OVS_VSCTL = "ovs-vsctl"

_REATTACH_PCI = re.compile(r"[0-9a-f]{4}(?::[0-9a-f]{2}){2}\.[0-9a-f]")

Command = Callable[..., "str | bytes"]
DeviceProvider = Callable[[], Iterable[NetworkDevice]]


class CommandError(InterfaceServiceError):
    """Raised when an external command fails; carries its combined output."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


def _text(output: str | bytes) -> str:
    return output.decode(errors="replace") if isinstance(output, bytes) else output


def run_command(*args: str) -> str:
    """Run the arguments through sudo and return stdout and stderr combined."""
    try:
        completed = subprocess.run(
            ["sudo", *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as err:
        raise CommandError(f"cannot run sudo {' '.join(args)}: {err}") from err
    output = _text(completed.stdout or b"")
    if completed.returncode != 0:
        raise CommandError(
            f"sudo {' '.join(args)} exited with status {completed.returncode}", output
        )
    return output


def _wrap(message: str, err: Exception) -> InterfaceServiceError:
    return InterfaceServiceError(f"{message}: {err}")


class InterfaceService:
    """Manages physical network interfaces attached to OVS bridges."""

    def __init__(
        self,
        device_provider: DeviceProvider,
        vsctl: Command = run_command,
        devbind: Command = run_command,
        dpdk_enabled: bool = True,
    ) -> None:
        self.device_provider = device_provider
        self.vsctl = vsctl
        self.devbind = devbind
        self.dpdk_enabled = dpdk_enabled
        self.devbind_lines: list[str] = []

    def _ovs(self, *args: str) -> str:
        return _text(self.vsctl(OVS_VSCTL, *args))

    def _kernel_devices(self) -> list[NetworkDevice]:
        try:
            return list(self.device_provider())
        except Exception as err:
            raise _wrap("failed to obtain kernel devices", err) from err

    def refresh_devbind(self) -> list[str]:
        """Reread `dpdk-devbind.py --status` and keep its per-device lines."""
        try:
            output = _text(self.devbind(DEVBIND_SCRIPT, "--status"))
        except CommandError as err:
            output = err.output
        self.devbind_lines = parse_devbind_status(output)
        return self.devbind_lines

    def port_drivers(self, pci: str) -> tuple[str, list[str] | None]:
        """Return the driver the device uses and the drivers it could use."""
        if not self.dpdk_enabled:
            return "kernel", None
        line = find_port_line(self.devbind_lines, pci)
        if not line:
            return "", None
        current = list_values(line, "drv")
        unused = list_values(line, "unused")
        if current is not None:
            return current[0], unused
        return "", unused

    def bridge_type(self, bridge: str) -> str:
        """Return the bridge's datapath type ("netdev" or empty)."""
        try:
            output = self._ovs("get", "bridge", bridge, "datapath_type")
        except CommandError as err:
            raise _wrap(f"Couldn't get bridge {bridge}", err) from err
        return output.rstrip("\r\n")

    def bridge_of(self, port: str) -> str:
        """Return the bridge the named port belongs to, or an empty string."""
        try:
            return self._ovs("port-to-br", port).strip()
        except CommandError as err:
            log.info("%s", err)
            return ""

    def dpdk_port_name(self, pci: str, ovs_show_output: str = "") -> str:
        """Return the OVS port name bound to the PCI address through DPDK devargs."""
        if not ovs_show_output:
            try:
                ovs_show_output = self._ovs("show").strip()
            except CommandError as err:
                raise _wrap("ovs-vsctl show failed", err) from err
        option = f'options: {{dpdk-devargs="{pci}"}}'
        if option in ovs_show_output:
            return find_dpdk_port_name(ovs_show_output, option)
        return ""

    def port_name(self, pci: str) -> str:
        """Return the interface name of the device at the PCI address."""
        current, _ = self.port_drivers(pci)
        if current == DEFAULT_DPDK_DRIVER:
            return self.dpdk_port_name(pci, "")
        if current:
            for device in self._kernel_devices():
                if device.pci == pci:
                    return device.name
        raise InterfaceServiceError(
            "Failed to get interface's name - interface may be not bound to any driver"
        )

    def bind_driver(self, port: Port) -> None:
        """Bind the device to the driver its requested driver kind needs."""
        current, unused = self.port_drivers(port.pci)
        if not current and unused is None:
            raise InterfaceServiceError(f"{port.pci}: no such device")
        if not current:
            raise InterfaceServiceError(f"Device: {port.pci} is not bound to any driver.")
        driver = find_driver_to_bind(port, current, unused)
        if driver:
            self.devbind(DEVBIND_SCRIPT, "-b", driver, port.pci)
            log.info("Port %s bound to driver %s", port.pci, driver)

    def _validate_port_to_attach(self, port: Port) -> None:
        if not self.dpdk_enabled and port.driver == Driver.USERSPACE:
            raise InterfaceServiceError(
                f"Port {port.pci} cannot use DPDK enabled driver - node does not support DPDK"
            )
        bridge_type = self.bridge_type(port.bridge)
        if port.driver == Driver.USERSPACE and bridge_type != NETDEV_BRIDGE_OPTION:
            raise InterfaceServiceError(f"Cannot attach DPDK port to non-DPDK bridge {port.bridge}")
        if port.driver == Driver.KERNEL and bridge_type == NETDEV_BRIDGE_OPTION:
            raise InterfaceServiceError(f"Cannot attach non-DPDK port to DPDK bridge {port.bridge}")

    def attach_port(self, port: Port) -> None:
        """Bind the port's driver and add it to its bridge."""
        self._validate_port_to_attach(port)
        try:
            name = self.port_name(port.pci)
        except InterfaceServiceError as err:
            raise _wrap("Failed to find port's name", err) from err
        try:
            self.bind_driver(port)
        except InterfaceServiceError as err:
            raise _wrap("Failed to bind port to driver", err) from err

        args = ["--may-exist", "add-port", port.bridge, name]
        if port.driver != Driver.KERNEL:
            args += ["--", "set", "Interface", name, "type=dpdk",
                     f"options:dpdk-devargs={port.pci}"]
        try:
            self._ovs(*args)
        except CommandError as err:
            raise (_wrap(err.output, err) if err.output else InterfaceServiceError(str(err))) from err
        kind = "kernel" if port.driver == Driver.KERNEL else "DPDK"
        log.info("Added OVS %s port %s - name: %s bridge: %s", kind, port.pci, name, port.bridge)

    def detach_port(self, port: Port) -> None:
        """Remove the port from whichever bridge holds it."""
        name = self.port_name(port.pci)
        try:
            self._ovs("del-port", name.strip())
        except CommandError as err:
            log.info("%s", err.output)
            raise (_wrap(err.output, err) if err.output else InterfaceServiceError(str(err))) from err
        log.info("Removed OVS port: %s", name)

    def list_ports(self) -> tuple[list[Port], list[str]]:
        """Describe every kernel-visible device; also return one summary line per port."""
        devices = self._kernel_devices()
        try:
            ovs_show_output = self._ovs("show").strip()
        except CommandError as err:
            raise _wrap("failed to ovs-vsctl show", err) from err

        ports: list[Port] = []
        lines: list[str] = []
        for device in devices:
            port = Port(pci=device.pci, mac_address=device.mac, bridge=self.bridge_of(device.name))
            dpdk_name = self.dpdk_port_name(port.pci, ovs_show_output)
            if dpdk_name:
                port.bridge = self.bridge_of(dpdk_name)
            current, _ = self.port_drivers(port.pci)
            if current == DEFAULT_DPDK_DRIVER:
                port.driver = Driver.USERSPACE
            elif not current:
                port.driver = Driver.NONE
            else:
                port.driver = Driver.KERNEL
            ports.append(port)
            lines.append(" | ".join(
                [port.pci, port.driver.name, device.name, port.mac_address, port.bridge]
            ))
        return ports, lines

    def get(self) -> list[Port]:
        """Return all ports with their drivers and bridges."""
        log.info("InterfaceService Get: received request")
        self.refresh_devbind()
        try:
            ports, lines = self.list_ports()
        except InterfaceServiceError as err:
            log.error("Failed to get ports %s", err)
            raise _wrap("Failed to get ports", err) from err
        for line in lines:
            log.info("%s", line)
        return ports

    def attach(self, ports: Iterable[Port]) -> None:
        """Validate and attach each port in turn, stopping at the first failure."""
        log.info("InterfaceService Attach: received request")
        self.refresh_devbind()
        for port in ports:
            try:
                validate_port(port)
            except InterfaceServiceError as err:
                log.error("Port validation failed: %s", err)
                raise
            try:
                self.attach_port(port)
            except InterfaceServiceError as err:
                log.error("Attaching port failed: %s", err)
                raise

    def detach(self, ports: Iterable[Port]) -> None:
        """Detach each port and rebind it to the driver it asks for."""
        log.info("InterfaceService Detach: received request")
        self.refresh_devbind()
        for port in ports:
            validate_port(port)
            self.detach_port(port)
            self.bind_driver(port)

    def reattach_dpdk_ports(self) -> None:
        """Reattach DPDK ports that OVS reports as failed, e.g. after a reboot.

        Exits the process when ovs-vsctl cannot be used at all; raises the last
        detach or attach failure after trying every port.
        """
        try:
            self._ovs("show")
        except CommandError:
            log.error("Couldn't perform ovs-vsctl show. Exiting...")
            raise SystemExit(1)

        log.info("Trying to reattach ports if existed previously...")
        try:
            bridges = self._ovs("list-br")
        except CommandError as err:
            log.info("Error listing bridges: %s", err)
            raise

        failure: InterfaceServiceError | None = None
        for bridge in trim_vsctl_output(bridges):
            try:
                if self.bridge_type(bridge) != NETDEV_BRIDGE_OPTION:
                    continue
            except InterfaceServiceError:
                continue
            try:
                interfaces = self._ovs("list-ifaces", bridge)
            except CommandError as err:
                interfaces = err.output
            for interface in trim_vsctl_output(interfaces):
                try:
                    status = self._ovs("get", "interface", interface, "error")
                except CommandError as err:
                    log.info("Error getting interface %s:%s", interface, err)
                    continue
                if "Error attaching device" not in status:
                    continue
                match = _REATTACH_PCI.search(status)
                if match is None:
                    continue
                pci = match.group(0)
                self.refresh_devbind()
                current, _ = self.port_drivers(pci)
                if current == DEFAULT_DPDK_DRIVER:
                    continue
                log.info("Port %s will be reattached to bridge %s", pci, bridge)
                port = Port(pci=pci, bridge=bridge, driver=Driver.USERSPACE)
                try:
                    self.detach_port(port)
                except InterfaceServiceError as err:
                    log.info("Error detaching port: %s", err)
                    failure = err
                    continue
                try:
                    self.attach_port(port)
                except InterfaceServiceError as err:
                    log.info("Error attaching port: %s", err)
                    failure = err
                    continue
                failure = None
                log.info("Port %s successfully reattached to bridge %s", pci, bridge)

        if failure is not None:
            raise failure