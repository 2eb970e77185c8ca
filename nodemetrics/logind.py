"""Logind session collector talking to systemd-logind over the system D-Bus."""

from __future__ import annotations

import itertools
import logging
import os
import socket
import struct
import urllib.parse
from collections.abc import Callable, Iterable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Protocol

from .helper import NAMESPACE, Metric, ValueType, build_fq_name

LOGIND_SUBSYSTEM = "logind"
DBUS_OBJECT = "org.freedesktop.login1"
DBUS_PATH = "/org/freedesktop/login1"

# Known values as of systemd v229; "other" is the fallback for unknown ones.
ATTR_REMOTE_VALUES = ("true", "false")
ATTR_TYPE_VALUES = ("other", "unspecified", "tty", "x11", "wayland", "mir", "web")
ATTR_CLASS_VALUES = ("other", "user", "greeter", "lock-screen", "background")

_SESSIONS_NAME = build_fq_name(NAMESPACE, LOGIND_SUBSYSTEM, "sessions")
_SESSIONS_HELP = "Number of sessions registered in logind."

_DEFAULT_SYSTEM_BUS = "unix:path=/var/run/dbus/system_bus_socket"


@dataclass(frozen=True)
class LogindSession:
    """Attributes of a session that the session count is grouped by."""

    seat: str
    remote: str
    session_type: str
    session_class: str


@dataclass(frozen=True)
class LogindSessionEntry:
    """One entry of logind's session list."""

    session_id: str
    user_id: int
    user_name: str
    seat_id: str
    session_object_path: str


class LogindSource(Protocol):
    """What the collector needs from logind."""

    def list_seats(self) -> list[str]: ...

    def list_sessions(self) -> list[LogindSessionEntry]: ...

    def get_session(self, entry: LogindSessionEntry) -> LogindSession | None: ...


def known_string_or_other(value: str, known: Sequence[str]) -> str:
    """Return value if it is among the known values, otherwise 'other'."""
    return value if value in known else "other"


def collect_metrics(source: LogindSource) -> list[Metric]:
    """Count sessions for every seat, remote, type and class combination."""
    try:
        seats = source.list_seats()
    except Exception as exc:
        raise RuntimeError(f"unable to get seats: {exc}") from exc
    try:
        entries = source.list_sessions()
    except Exception as exc:
        raise RuntimeError(f"unable to get sessions: {exc}") from exc

    counts: dict[LogindSession, float] = {}
    for entry in entries:
        session = source.get_session(entry)
        if session is not None:
            counts[session] = counts.get(session, 0.0) + 1

    metrics = []
    for remote, session_type, session_class, seat in itertools.product(
        ATTR_REMOTE_VALUES, ATTR_TYPE_VALUES, ATTR_CLASS_VALUES, seats
    ):
        count = counts.get(LogindSession(seat, remote, session_type, session_class), 0.0)
        metrics.append(
            Metric(
                _SESSIONS_NAME,
                _SESSIONS_HELP,
                ValueType.GAUGE,
                count,
                {"seat": seat, "remote": remote, "type": session_type, "class": session_class},
            )
        )
    return metrics


class _DBusError(Exception):
    """An error reply from the bus."""


_ALIGNMENT = {
    "y": 1, "b": 4, "n": 2, "q": 2, "i": 4, "u": 4, "x": 8, "t": 8, "d": 8,
    "h": 4, "s": 4, "o": 4, "g": 1, "a": 4, "(": 8, "{": 8, "v": 1,
}
_FIXED = {
    "y": "B", "b": "I", "n": "h", "q": "H", "i": "i", "u": "I", "x": "q", "t": "Q",
    "d": "d", "h": "I",
}


def _type_end(signature: str, start: int) -> int:
    code = signature[start]
    if code == "a":
        return _type_end(signature, start + 1)
    if code in "({":
        depth = 0
        for position, char in enumerate(signature[start:], start=start):
            if char in "({":
                depth += 1
            elif char in ")}":
                depth -= 1
            if depth == 0:
                return position + 1
        raise ValueError(f"unbalanced D-Bus signature {signature!r}")
    return start + 1


def _split_types(signature: str) -> list[str]:
    types = []
    start = 0
    while start < len(signature):
        end = _type_end(signature, start)
        types.append(signature[start:end])
        start = end
    return types


class _Writer:
    """Little-endian D-Bus marshaller."""

    def __init__(self) -> None:
        self.buffer = bytearray()

    def align(self, boundary: int) -> None:
        self.buffer.extend(b"\0" * (-len(self.buffer) % boundary))

    def write(self, signature: str, value: Any) -> None:
        code = signature[0]
        if code in _FIXED:
            fmt = "<" + _FIXED[code]
            self.align(struct.calcsize(fmt))
            self.buffer += struct.pack(fmt, int(value) if code == "b" else value)
        elif code in "so":
            data = value.encode("utf-8")
            self.align(4)
            self.buffer += struct.pack("<I", len(data)) + data + b"\0"
        elif code == "g":
            data = value.encode("ascii")
            self.buffer += bytes([len(data)]) + data + b"\0"
        elif code == "v":
            inner_signature, inner = value
            self.write("g", inner_signature)
            self.write(inner_signature, inner)
        elif code == "a":
            self.align(4)
            length_at = len(self.buffer)
            self.buffer += b"\0\0\0\0"
            element = signature[1:]
            self.align(_ALIGNMENT[element[0]])
            start = len(self.buffer)
            items = value.items() if isinstance(value, dict) else value
            for item in items:
                self.write(element, item)
            struct.pack_into("<I", self.buffer, length_at, len(self.buffer) - start)
        elif code in "({":
            self.align(8)
            for member, item in zip(_split_types(signature[1:-1]), value):
                self.write(member, item)
        else:
            raise ValueError(f"unsupported D-Bus type {code!r}")


class _Reader:
    """D-Bus unmarshaller over a buffer starting at a message boundary."""

    def __init__(self, data: bytes, endian: str, offset: int = 0) -> None:
        self.data = data
        self.endian = endian
        self.position = offset

    def align(self, boundary: int) -> None:
        self.position += -self.position % boundary

    def _unpack(self, fmt: str) -> Any:
        fmt = self.endian + fmt
        size = struct.calcsize(fmt)
        self.align(size)
        (value,) = struct.unpack_from(fmt, self.data, self.position)
        self.position += size
        return value

    def read(self, signature: str) -> Any:
        code = signature[0]
        if code in _FIXED:
            value = self._unpack(_FIXED[code])
            return bool(value) if code == "b" else value
        if code in "sog":
            length = self._unpack("I") if code != "g" else self._unpack("B")
            text = self.data[self.position : self.position + length].decode("utf-8")
            self.position += length + 1
            return text
        if code == "v":
            return self.read(self.read("g"))
        if code == "a":
            length = self._unpack("I")
            element = signature[1:]
            self.align(_ALIGNMENT[element[0]])
            end = self.position + length
            items = []
            while self.position < end:
                items.append(self.read(element))
            return dict(items) if element[0] == "{" else items
        if code in "({":
            self.align(8)
            return tuple(self.read(member) for member in _split_types(signature[1:-1]))
        raise ValueError(f"unsupported D-Bus type {code!r}")


class _DBusConnection:
    """A minimal client connection to a D-Bus message bus."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._serials = itertools.count(1)

    @classmethod
    def system_bus(cls) -> _DBusConnection:
        address = os.environ.get("DBUS_SYSTEM_BUS_ADDRESS", _DEFAULT_SYSTEM_BUS)
        for entry in address.split(";"):
            transport, _, params = entry.partition(":")
            if transport != "unix":
                continue
            options = dict(
                part.split("=", 1) for part in params.split(",") if "=" in part
            )
            if "path" in options:
                target = urllib.parse.unquote(options["path"])
            elif "abstract" in options:
                target = "\0" + urllib.parse.unquote(options["abstract"])
            else:
                continue
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.connect(target)
            except OSError:
                sock.close()
                raise
            connection = cls(sock)
            try:
                connection._authenticate()
                connection.call("org.freedesktop.DBus", "/org/freedesktop/DBus",
                                "org.freedesktop.DBus", "Hello")
            except BaseException:
                connection.close()
                raise
            return connection
        raise ConnectionError(f"no usable D-Bus address in {address!r}")

    def close(self) -> None:
        self._sock.close()

    def _recv_exact(self, size: int) -> bytes:
        chunks = bytearray()
        while len(chunks) < size:
            chunk = self._sock.recv(size - len(chunks))
            if not chunk:
                raise ConnectionError("D-Bus connection closed")
            chunks += chunk
        return bytes(chunks)

    def _read_line(self) -> bytes:
        line = bytearray()
        while not line.endswith(b"\r\n"):
            line += self._recv_exact(1)
        return bytes(line)

    def _authenticate(self) -> None:
        uid_hex = str(os.getuid()).encode("ascii").hex().encode("ascii")
        self._sock.sendall(b"\0AUTH EXTERNAL " + uid_hex + b"\r\n")
        reply = self._read_line()
        if not reply.startswith(b"OK"):
            raise _DBusError(f"authentication rejected: {reply.strip().decode(errors='replace')}")
        self._sock.sendall(b"BEGIN\r\n")

    def _read_message(self) -> tuple[int, dict[int, Any], list[Any]]:
        fixed = self._recv_exact(16)
        endian = "<" if fixed[:1] == b"l" else ">"
        body_length, _, fields_length = struct.unpack_from(endian + "III", fixed, 4)
        header_length = 16 + fields_length + (-(16 + fields_length) % 8)
        data = fixed + self._recv_exact(header_length - 16 + body_length)
        fields = dict(_Reader(data, endian, 12).read("a(yv)"))
        body_reader = _Reader(data[header_length:], endian)
        body = [body_reader.read(kind) for kind in _split_types(fields.get(8, ""))]
        return fixed[1], fields, body

    def call(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        args: Iterable[Any] = (),
    ) -> list[Any]:
        body = _Writer()
        for kind, value in zip(_split_types(signature), args):
            body.write(kind, value)
        serial = next(self._serials)
        fields = [
            (1, ("o", path)),
            (2, ("s", interface)),
            (3, ("s", member)),
            (6, ("s", destination)),
        ]
        if signature:
            fields.append((8, ("g", signature)))
        header = _Writer()
        for kind, value in (("y", ord("l")), ("y", 1), ("y", 0), ("y", 1)):
            header.write(kind, value)
        header.write("u", len(body.buffer))
        header.write("u", serial)
        header.write("a(yv)", fields)
        header.align(8)
        self._sock.sendall(bytes(header.buffer + body.buffer))

        while True:
            message_type, reply_fields, reply_body = self._read_message()
            if reply_fields.get(5) != serial:
                continue
            if message_type == 3:
                detail = reply_body[0] if reply_body and isinstance(reply_body[0], str) else ""
                raise _DBusError(f"{reply_fields.get(4, 'error')}: {detail}")
            if message_type == 2:
                return reply_body


def _variant_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class _LogindDbus:
    """Logind source backed by a system bus connection."""

    def __init__(self, connection: _DBusConnection) -> None:
        self._connection = connection

    @classmethod
    def connect(cls) -> _LogindDbus:
        return cls(_DBusConnection.system_bus())

    def __enter__(self) -> _LogindDbus:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._connection.close()

    def list_seats(self) -> list[str]:
        (seats,) = self._connection.call(
            DBUS_OBJECT, DBUS_PATH, DBUS_OBJECT + ".Manager", "ListSeats"
        )
        # The empty seat stands for remote sessions such as SSH.
        return [seat_id for seat_id, _ in seats] + [""]

    def list_sessions(self) -> list[LogindSessionEntry]:
        (sessions,) = self._connection.call(
            DBUS_OBJECT, DBUS_PATH, DBUS_OBJECT + ".Manager", "ListSessions"
        )
        return [LogindSessionEntry(*session) for session in sessions]

    def _property(self, path: str, name: str) -> Any:
        (value,) = self._connection.call(
            DBUS_OBJECT,
            path,
            "org.freedesktop.DBus.Properties",
            "Get",
            "ss",
            (DBUS_OBJECT + ".Session", name),
        )
        return value

    def get_session(self, entry: LogindSessionEntry) -> LogindSession | None:
        path = entry.session_object_path
        try:
            remote = self._property(path, "Remote")
            session_type = self._property(path, "Type")
            session_class = self._property(path, "Class")
        except (_DBusError, OSError, ValueError):
            return None
        if not isinstance(session_type, str) or not isinstance(session_class, str):
            return None
        return LogindSession(
            seat=entry.seat_id,
            remote=_variant_text(remote),
            session_type=known_string_or_other(session_type, ATTR_TYPE_VALUES),
            session_class=known_string_or_other(session_class, ATTR_CLASS_VALUES),
        )


class LogindCollector:
    """Exposes the number of logind sessions by seat and session attributes."""

    def __init__(
        self,
        connect: Callable[[], AbstractContextManager[LogindSource]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.connect = connect or _LogindDbus.connect
        self.logger = logger or logging.getLogger(__name__)

    def update(self) -> list[Metric]:
        """Connect to logind and return the session metrics."""
        try:
            context = self.connect()
        except (OSError, _DBusError) as exc:
            raise ConnectionError(f"unable to connect to dbus: {exc}") from exc
        with context as source:
            return collect_metrics(source)