# edgeport

`edgeport` manages the physical network ports of an edge node. Given the
node's network devices, it reports which driver each one uses (kernel, DPDK
userspace, or none), binds ports to the driver they need, and attaches or
detaches them from Open vSwitch bridges.

By default it runs `ovs-vsctl` and `./dpdk-devbind.py` through `sudo`
(`edgeport.interfaces.run_command`), so real use needs a Linux host with
Open vSwitch and, for DPDK ports, the `dpdk-devbind.py` script in the working
directory.

## Modules

- `edgeport.ports` – `Port`, `NetworkDevice`, the `Driver` enum
  (`NONE`, `KERNEL`, `USERSPACE`), `InterfaceServiceError` and
  `validate_port`.
- `edgeport.parsing` – parsers for `dpdk-devbind.py --status` and
  `ovs-vsctl` output (`parse_devbind_status`, `find_port_line`,
  `list_values`, `find_driver_to_bind`, `trim_vsctl_output`,
  `find_dpdk_port_name`).
- `edgeport.interfaces` – `InterfaceService`, `run_command`, `CommandError`.
- `edgeport.settings` – `Configuration`, `load_configuration`,
  `prepare_service`.
- `edgeport.duration` – `Duration`, `parse_duration`, `format_duration`,
  `heartbeat`.
- `edgeport.service` – `MainConfig`, `EnrollConfig`, `init_config`,
  `service_name`, `wait_for_services`, `run_services`.

## Using the interface service

```python
from edgeport.interfaces import InterfaceService, run_command
from edgeport.ports import Driver, InterfaceServiceError, NetworkDevice, Port

def my_devices():
    return [NetworkDevice(pci="0000:00:00.0", name="eth0")]

service = InterfaceService(
    device_provider=my_devices,
    vsctl=run_command,
    devbind=run_command,
    dpdk_enabled=True,
)

for port in service.get():
    print(port.pci, port.driver.name, port.bridge)

try:
    service.attach([Port(pci="0000:00:00.0", bridge="br-test", driver=Driver.KERNEL)])
except InterfaceServiceError as exc:
    print("attach failed:", exc)
```

- `get()` rereads the devbind status and returns one `Port` per device from
  the device provider, with its MAC address, bridge and driver kind.
- `attach(ports)` validates each port, refuses a DPDK port on a bridge whose
  datapath type is not `netdev` and a kernel port on a `netdev` bridge, binds
  the needed driver and adds the port with `ovs-vsctl --may-exist add-port`.
  It stops at the first failure.
- `detach(ports)` removes each port from its bridge with `ovs-vsctl
  del-port`, then binds it to the driver kind the port asks for.
- `reattach_dpdk_ports()` looks at every `netdev` bridge and detaches and
  reattaches interfaces that report "Error attaching device". It raises
  `SystemExit(1)` when `ovs-vsctl show` fails, and raises the last failure
  if a reattachment did not succeed.

Every port passed to `attach` or `detach` is checked with `validate_port`:
the PCI address must look like `0000:00:00.0`, a bridge must be given, and
the driver must be `Driver.KERNEL` or `Driver.USERSPACE`. Failures raise
`InterfaceServiceError`; `run_command` raises `CommandError`, which carries
the command's combined output in `output`, when the command exits non-zero.

The `vsctl` and `devbind` callables receive the command line as separate
arguments and return its output, so they are easy to replace in tests.

## Configuration

`load_configuration(path)` reads a JSON file such as:

```json
{
    "Endpoint": "localhost:42201",
    "HeartbeatInterval": "10s",
    "CertsDirectory": "/etc/edge/certs"
}
```

Key case does not matter. `HeartbeatInterval` is a duration string
(`"200ms"`, `"1m30s"`), handled by `Duration`, `parse_duration` (returns
seconds) and `format_duration`. `heartbeat(stop, interval, handler)` calls
`handler` in a background thread on that interval until the `stop` event is
set; with an interval of zero or less it starts nothing and returns `None`.

`prepare_service(service, devbind_path)` switches DPDK support off when the
devbind script is missing, and otherwise reattaches broken DPDK ports,
logging any failure instead of raising it.

## Running several services

`edgeport.service.run_services(services, argv)` parses `--config` (default
`configs/appliance.json`), loads it with `init_config`, and runs each start
function in its own thread as `start(stop_event, config_path)`. The
configuration path comes from the `Services` map, keyed by `service_name`,
which is the start function's module name. SIGINT, SIGTERM or a failing
service sets the stop event. It returns `True` when no service raised, and
raises `SystemExit(1)` when the configuration cannot be loaded.

`init_config` raises `RuntimeError` when the file cannot be loaded, syslog
cannot be reached (with `UseSyslog`) or `LogLevel` is unknown.

## What it does not do

- It has no network server: nothing listens on `Endpoint`, and
  `CertsDirectory` is read but not used to set up TLS.
- It does not discover the node's network devices; the caller supplies a
  `device_provider`.
- It installs no command-line program.

## Tests

Install the `test` extra and run `pytest` from the project root.