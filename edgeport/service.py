"""Loading the main configuration and running several services together."""

from __future__ import annotations

import argparse
import functools
import json
import logging
import logging.handlers
import signal
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

from edgeport.duration import Duration

log = logging.getLogger("edgeport.main")

DEFAULT_CONFIG_PATH = "configs/appliance.json"

StartFunction = Callable[[threading.Event, str], None]

_LEVELS = {
    "emerg": logging.CRITICAL,
    "emergency": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "err": logging.ERROR,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "notice": logging.INFO,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

_MISSING = object()


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    folded = key.casefold()
    for name, value in data.items():
        if isinstance(name, str) and name.casefold() == folded:
            return value
    return _MISSING


def _typed(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = _lookup(data, key)
    if value is _MISSING or value is None:
        return default
    if not isinstance(value, kind):
        raise ValueError(f"{key} has an invalid value {value!r}")
    return value


@dataclass
class EnrollConfig:
    """Enrollment settings of the main configuration."""

    endpoint: str = ""
    conn_timeout: Duration = field(default_factory=Duration)
    certs_dir: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EnrollConfig":
        timeout = _lookup(data, "ConnectionTimeout")
        if timeout is _MISSING or timeout is None:
            duration = Duration()
        else:
            duration = Duration.from_json(timeout if isinstance(timeout, str) else json.dumps(timeout))
        return cls(
            endpoint=_typed(data, "Endpoint", str, ""),
            conn_timeout=duration,
            certs_dir=_typed(data, "CertsDirectory", str, ""),
        )


@dataclass
class MainConfig:
    """Main configuration: logging and the configuration file of each service."""

    use_syslog: bool = False
    syslog_addr: str = ""
    log_level: str = ""
    services: dict[str, str] = field(default_factory=dict)
    enroll: EnrollConfig = field(default_factory=EnrollConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MainConfig":
        if not isinstance(data, Mapping):
            raise ValueError("configuration must be a JSON object")
        services = _typed(data, "Services", dict, {})
        if not all(isinstance(v, str) for v in services.values()):
            raise ValueError("Services must map names to configuration paths")
        enroll = _typed(data, "Enrollment", dict, {})
        return cls(
            use_syslog=_typed(data, "UseSyslog", bool, False),
            syslog_addr=_typed(data, "SyslogAddr", str, ""),
            log_level=_typed(data, "LogLevel", str, ""),
            services=dict(services),
            enroll=EnrollConfig.from_dict(enroll),
        )


def _syslog_address(address: str) -> tuple[str, int]:
    if not address:
        return ("localhost", logging.handlers.SYSLOG_UDP_PORT)
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid syslog address {address!r}")
    return (host or "localhost", int(port))


def _connect_syslog(address: str) -> None:
    handler = logging.handlers.SysLogHandler(address=_syslog_address(address))
    logging.getLogger().addHandler(handler)


def _parse_level(name: str) -> int:
    try:
        return _LEVELS[name.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown log level {name!r}") from None


def init_config(path: str) -> MainConfig:
    """Load the main configuration and set up logging as it asks.

    Raises RuntimeError when the file cannot be loaded, syslog cannot be
    reached or the log level is not known.
    """
    try:
        with open(path, encoding="utf-8") as handle:
            config = MainConfig.from_dict(json.load(handle))
    except (OSError, ValueError) as err:
        raise RuntimeError(f"Failed to load config: {path}: {err}") from err

    if config.use_syslog:
        try:
            _connect_syslog(config.syslog_addr)
        except (OSError, ValueError) as err:
            raise RuntimeError(
                f"Failed to connect to syslog: {config.syslog_addr}: {err}"
            ) from err

    try:
        level = _parse_level(config.log_level)
    except ValueError as err:
        raise RuntimeError(f"Failed to parse log level: {config.log_level}: {err}") from err
    logging.getLogger("edgeport").setLevel(level)
    return config


def service_name(func: Callable[..., Any]) -> str:
    """Name under which a start function's configuration path is looked up."""
    target: Any = func
    while isinstance(target, functools.partial):
        target = target.func
    target = getattr(target, "__func__", target)
    return getattr(target, "__module__", None) or ""


def wait_for_services(futures: Iterable[Future], cancel: Callable[[], None]) -> bool:
    """Wait for every service; on the first failure cancel the rest.

    Returns True when no service failed.
    """
    ok = True
    for future in as_completed(list(futures)):
        error = future.exception()
        if error is not None:
            log.error(
                "Cancelling services because of error from one of the services: %r", error
            )
            cancel()
            ok = False
    return ok


def _install_signal_handlers(stop: threading.Event) -> dict[int, Any]:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def handle(signum: int, _frame: Any) -> None:
        log.info("Received signal: %s", signal.Signals(signum).name)
        stop.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handle)
    return previous


def _restore_signal_handlers(previous: Mapping[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def run_services(
    services: Sequence[StartFunction], argv: Sequence[str] | None = None
) -> bool:
    """Run the start functions side by side until all return.

    Each receives a stop event, set on SIGINT, SIGTERM or another service's
    failure, and its configuration path from the main configuration.
    """
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "-config", "--config", dest="config", default=DEFAULT_CONFIG_PATH,
        help="config file path",
    )
    args = parser.parse_args(argv)
    try:
        config = init_config(args.config)
    except RuntimeError as err:
        log.error("InitConfig failed %s", err)
        raise SystemExit(1) from err

    stop = threading.Event()
    previous = _install_signal_handlers(stop)
    try:
        log.info("Starting services")
        with ThreadPoolExecutor(max_workers=max(1, len(services))) as pool:
            futures = []
            for start in services:
                name = service_name(start)
                log.info("Starting: %s", name)
                futures.append(pool.submit(start, stop, config.services.get(name, "")))
            return wait_for_services(futures, stop.set)
    finally:
        _restore_signal_handlers(previous)