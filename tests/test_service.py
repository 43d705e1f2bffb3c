import functools
import json
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from edgeport.service import (
    EnrollConfig,
    MainConfig,
    init_config,
    run_services,
    service_name,
    wait_for_services,
)


class _FakeAgent:
    def __init__(self, work_time):
        self.work_time = work_time
        self.context_cancelled = False
        self.ended_work = False
        self.cfg_path = None

    def run(self, stop, cfg):
        if stop.wait(self.work_time):
            self.context_cancelled = True
        else:
            self.ended_work = True
        self.cfg_path = cfg


def failing_run(stop, cfg):
    raise RuntimeError("Fail")


def successful_run(stop, cfg):
    return None


def _write_config(tmp_path, data, name="appliance.json"):
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def _main_config(tmp_path, agent):
    return _write_config(
        tmp_path,
        {"LogLevel": "debug", "Services": {service_name(agent.run): "config.json"}},
    )


def test_failing_service_cancels_the_others(tmp_path):
    agent = _FakeAgent(work_time=5.0)
    path = _main_config(tmp_path, agent)
    result = run_services([failing_run, successful_run, agent.run], ["-config", path])
    assert result is False
    assert agent.context_cancelled is True
    assert agent.ended_work is False
    assert agent.cfg_path == "config.json"


def test_successful_services_finish_normally(tmp_path):
    agent = _FakeAgent(work_time=0.01)
    path = _main_config(tmp_path, agent)
    result = run_services([successful_run, agent.run], ["--config", path])
    assert result is True
    assert agent.ended_work is True
    assert agent.context_cancelled is False
    assert agent.cfg_path == "config.json"


def test_run_services_exits_on_bad_config(tmp_path):
    with pytest.raises(SystemExit) as info:
        run_services([successful_run], ["-config", str(tmp_path / "notExistFile.json")])
    assert info.value.code == 1


def test_init_config_with_missing_file():
    with pytest.raises(RuntimeError) as info:
        init_config("testdata/notExistFile.json")
    assert "Failed to load config" in str(info.value)


def test_init_config_with_incorrect_log_level(tmp_path):
    path = _write_config(tmp_path, {"UseSyslog": False, "LogLevel": "loud"})
    with pytest.raises(RuntimeError) as info:
        init_config(path)
    assert "Failed to parse log level" in str(info.value)


def test_init_config_with_incorrect_syslog_address(tmp_path):
    path = _write_config(
        tmp_path, {"UseSyslog": True, "SyslogAddr": "no-port-here", "LogLevel": "info"}
    )
    with pytest.raises(RuntimeError) as info:
        init_config(path)
    assert "Failed to connect to syslog" in str(info.value)


def test_init_config_reads_all_fields(tmp_path):
    path = _write_config(
        tmp_path,
        {
            "UseSyslog": False,
            "LogLevel": "debug",
            "Services": {"eaa": "configs/eaa.json"},
            "Enrollment": {
                "Endpoint": "localhost:8081",
                "ConnectionTimeout": "5s",
                "CertsDirectory": "./certs",
            },
        },
    )
    config = init_config(path)
    assert config.services == {"eaa": "configs/eaa.json"}
    assert config.enroll.endpoint == "localhost:8081"
    assert str(config.enroll.conn_timeout) == "5s"
    assert config.enroll.certs_dir == "./certs"
    assert logging.getLogger("edgeport").level == logging.DEBUG


def test_main_config_rejects_wrong_types():
    with pytest.raises(ValueError):
        MainConfig.from_dict({"UseSyslog": "yes"})


def test_enroll_config_defaults():
    config = EnrollConfig.from_dict({})
    assert config.endpoint == ""
    assert config.conn_timeout.seconds == 0


def test_service_name_is_shared_within_a_module():
    agent = _FakeAgent(work_time=0)
    assert service_name(agent.run) == service_name(successful_run)
    assert service_name(functools.partial(failing_run, None)) == service_name(failing_run)


def test_service_name_of_library_function():
    assert service_name(json.dumps) == "json"


def test_wait_for_services_reports_failure():
    cancelled = []
    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(failing_run, None, ""), pool.submit(successful_run, None, "")]
        result = wait_for_services(futures, lambda: cancelled.append(True))
    assert result is False
    assert cancelled == [True]


def test_wait_for_services_reports_success():
    cancelled = []
    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(successful_run, None, "") for _ in range(2)]
        result = wait_for_services(futures, lambda: cancelled.append(True))
    assert result is True
    assert cancelled == []