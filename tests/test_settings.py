import json

import pytest

from edgeport.duration import Duration
from edgeport.interfaces import CommandError, InterfaceService
from edgeport.settings import Configuration, load_configuration, prepare_service


class _Script:
    """Replays queued command results and records the arguments received."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)
        if not self.results:
            raise CommandError("results not set")
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _write(tmp_path, content):
    path = tmp_path / "interfaceservice.json"
    path.write_text(content, encoding="utf-8")
    return path


def _service(vsctl=None, devbind=None):
    return InterfaceService(
        device_provider=lambda: [],
        vsctl=vsctl or _Script(),
        devbind=devbind or _Script(),
    )


def test_load_configuration_ignores_key_case(tmp_path):
    path = _write(
        tmp_path,
        json.dumps({"endpoint": "localhost:42201", "certsDirectory": "/tmp/certs"}),
    )
    config = load_configuration(path)
    assert config.endpoint == "localhost:42201"
    assert config.certs_dir == "/tmp/certs"
    assert config.heartbeat_interval.seconds == 0


def test_load_configuration_reads_heartbeat(tmp_path):
    path = _write(
        tmp_path,
        json.dumps(
            {
                "endpoint": "localhost:22201",
                "HeartbeatInterval": "200ms",
                "certsDirectory": "/tmp/certs",
            }
        ),
    )
    config = load_configuration(path)
    assert str(config.heartbeat_interval) == "200ms"
    assert config.heartbeat_interval == Duration.from_json('"200ms"')


def test_exact_key_takes_precedence():
    config = Configuration.from_dict({"endpoint": "a:1", "Endpoint": "b:2"})
    assert config.endpoint == "b:2"


def test_damaged_config_file_is_rejected(tmp_path):
    path = _write(tmp_path, "damage date")
    with pytest.raises(ValueError):
        load_configuration(path)


def test_missing_config_file_is_rejected(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_configuration(tmp_path / "absent.json")


def test_heartbeat_without_unit_is_rejected(tmp_path):
    path = _write(tmp_path, json.dumps({"HeartbeatInterval": "5"}))
    with pytest.raises(ValueError):
        load_configuration(path)


def test_non_string_endpoint_is_rejected():
    with pytest.raises(ValueError):
        Configuration.from_dict({"Endpoint": 42})


def test_non_object_configuration_is_rejected(tmp_path):
    path = _write(tmp_path, "[1, 2]")
    with pytest.raises(ValueError):
        load_configuration(path)


def test_prepare_without_devbind_disables_dpdk(tmp_path):
    vsctl = _Script()
    service = _service(vsctl=vsctl)
    result = prepare_service(service, tmp_path / "dpdk-devbind.py")
    assert result is service
    assert service.dpdk_enabled is False
    assert vsctl.calls == []


def test_prepare_exits_when_ovs_show_fails(tmp_path):
    devbind = tmp_path / "dpdk-devbind.py"
    devbind.write_text("")
    service = _service(vsctl=_Script(CommandError("show failed")))
    with pytest.raises(SystemExit) as info:
        prepare_service(service, devbind)
    assert info.value.code == 1


def test_prepare_logs_reattach_failure(tmp_path):
    devbind = tmp_path / "dpdk-devbind.py"
    devbind.write_text("")
    vsctl = _Script("", CommandError("list-br failed"))
    service = _service(vsctl=vsctl)
    result = prepare_service(service, devbind)
    assert result.dpdk_enabled is True
    assert vsctl.calls == [("ovs-vsctl", "show"), ("ovs-vsctl", "list-br")]


def test_prepare_reattaches_when_devbind_exists(tmp_path):
    devbind = tmp_path / "dpdk-devbind.py"
    devbind.write_text("")
    vsctl = _Script("", "br-int\n", "system")
    service = _service(vsctl=vsctl)
    prepare_service(service, devbind)
    assert service.dpdk_enabled is True
    assert vsctl.calls == [
        ("ovs-vsctl", "show"),
        ("ovs-vsctl", "list-br"),
        ("ovs-vsctl", "get", "bridge", "br-int", "datapath_type"),
    ]