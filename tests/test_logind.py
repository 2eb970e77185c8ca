from contextlib import nullcontext

import pytest

from nodemetrics.helper import ValueType
from nodemetrics.logind import (
    ATTR_CLASS_VALUES,
    ATTR_REMOTE_VALUES,
    ATTR_TYPE_VALUES,
    LogindCollector,
    LogindSession,
    LogindSessionEntry,
    collect_metrics,
    known_string_or_other,
)

TEST_SEATS = ["seat0", ""]


class _FakeLogind:
    def list_seats(self):
        return list(TEST_SEATS)

    def list_sessions(self):
        return [
            LogindSessionEntry("1", 0, "", "", "/org/freedesktop/login1/session/1"),
            LogindSessionEntry("2", 0, "", "seat0", "/org/freedesktop/login1/session/2"),
        ]

    def get_session(self, entry):
        sessions = {
            "/org/freedesktop/login1/session/1": LogindSession(
                entry.seat_id,
                "true",
                known_string_or_other("tty", ATTR_TYPE_VALUES),
                known_string_or_other("user", ATTR_CLASS_VALUES),
            ),
            "/org/freedesktop/login1/session/2": LogindSession(
                entry.seat_id,
                "false",
                known_string_or_other("x11", ATTR_TYPE_VALUES),
                known_string_or_other("greeter", ATTR_CLASS_VALUES),
            ),
        }
        return sessions.get(entry.session_object_path)


class _BrokenSeats(_FakeLogind):
    def list_seats(self):
        raise OSError("bus gone")


def test_known_string_or_other():
    known = ["foo", "bar"]
    assert known_string_or_other("foo", known) == "foo"
    assert known_string_or_other("baz", known) == "other"


def test_collect_metrics_count():
    metrics = collect_metrics(_FakeLogind())
    expected = len(TEST_SEATS) * len(ATTR_REMOTE_VALUES) * len(ATTR_TYPE_VALUES) * len(
        ATTR_CLASS_VALUES
    )
    assert len(metrics) == expected


def test_collect_metrics_values():
    metrics = collect_metrics(_FakeLogind())
    counted = {
        (m.labels["seat"], m.labels["remote"], m.labels["type"], m.labels["class"]): m.value
        for m in metrics
        if m.value
    }
    assert counted == {("", "true", "tty", "user"): 1.0, ("seat0", "false", "x11", "greeter"): 1.0}
    assert all(m.name == "node_logind_sessions" for m in metrics)
    assert all(m.value_type is ValueType.GAUGE for m in metrics)


def test_collect_metrics_seat_error():
    with pytest.raises(RuntimeError, match="unable to get seats"):
        collect_metrics(_BrokenSeats())


def test_collector_update_uses_source():
    collector = LogindCollector(connect=lambda: nullcontext(_FakeLogind()))
    metrics = collector.update()
    assert len(metrics) == 140
    assert sum(m.value for m in metrics) == 2.0


def test_collector_update_connect_failure():
    def refuse():
        raise FileNotFoundError("no bus socket")

    with pytest.raises(ConnectionError, match="unable to connect to dbus"):
        LogindCollector(connect=refuse).update()