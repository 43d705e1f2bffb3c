import threading
import time

import pytest

from edgeport.duration import Duration, format_duration, heartbeat, parse_duration


def test_marshal_json():
    assert Duration(5).to_json() == '"5s"'


def test_unmarshal_json_without_quotes():
    assert Duration.from_json("5s").seconds == 5


def test_unmarshal_json_with_quotes_and_bytes():
    assert Duration.from_json(b'"5s"') == Duration(5)


@pytest.mark.parametrize("text", ["5s", "200ms", "1m30s", "1h0m0s", "1.5s", "0s"])
def test_round_trip(text):
    assert format_duration(parse_duration(text)) == text


def test_parse_compound_equals_sum_of_parts():
    assert parse_duration("1h15m") == parse_duration("1h") + parse_duration("15m")


def test_parse_negative():
    assert parse_duration("-5s") == -parse_duration("5s")


def test_parse_zero_without_unit():
    assert parse_duration("0") == 0


@pytest.mark.parametrize("text", ["", "5", "s", "5x", "1h-5m", "--5s"])
def test_parse_invalid(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_json_round_trip():
    original = Duration(parse_duration("200ms"))
    assert Duration.from_json(original.to_json()) == original


def test_heartbeat_zero_interval_does_nothing():
    calls = []
    stop = threading.Event()
    thread = heartbeat(stop, Duration(), lambda: calls.append(1))
    time.sleep(0.01)
    assert thread is None
    assert calls == []


def test_heartbeat_calls_handler_and_stops():
    calls = []
    stop = threading.Event()
    thread = heartbeat(stop, Duration(0.001), lambda: calls.append(1))
    deadline = time.monotonic() + 2
    while not calls and time.monotonic() < deadline:
        time.sleep(0.001)
    assert len(calls) > 0

    stop.set()
    thread.join(timeout=1)
    assert not thread.is_alive()
    snapshot = len(calls)
    time.sleep(0.01)
    assert len(calls) == snapshot