"""Nonblocking reading and writing of a tracker's HTTP exchange."""

import errno
from dataclasses import dataclass

from .errors import InvalidResponse, TrackerEOF, TrackerIOError
from .util import IOStatus, aread

_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})
_MAX_HEADERS = 16
_INITIAL_CHUNK = 75


@dataclass(frozen=True)
class ReadDone:
    """The full response body was received."""

    data: bytes


@dataclass(frozen=True)
class Redirect:
    """The tracker redirected the request to ``location``."""

    location: str


def _malformed():
    return InvalidResponse("malformed HTTP")


def _head_end(data):
    """Return (start, end) of the blank line ending the head, or None."""
    found = [
        (pos, pos + len(sep))
        for sep in (b"\r\n\r\n", b"\n\n")
        if (pos := data.find(sep)) >= 0
    ]
    return min(found) if found else None


def _parse_head(data):
    """Parse a response head: (body offset, status code, headers) or None if partial."""
    if not b"HTTP/".startswith(data[:5]):
        raise _malformed()
    bounds = _head_end(data)
    if bounds is None:
        return None
    start, end = bounds
    lines = [line.rstrip(b"\r") for line in data[:start].split(b"\n")]

    status = lines[0].split(b" ", 2)
    if len(status) < 2 or status[0] not in (b"HTTP/1.0", b"HTTP/1.1"):
        raise _malformed()
    code = status[1]
    if len(code) != 3 or not code.isdigit():
        raise _malformed()

    headers = []
    for line in lines[1:]:
        name, sep, value = line.partition(b":")
        if not sep or not name or any(c in b" \t" for c in name):
            raise _malformed()
        try:
            headers.append((name.decode("ascii"), value.strip(b" \t")))
        except UnicodeDecodeError:
            raise _malformed() from None
        if len(headers) > _MAX_HEADERS:
            raise _malformed()
    return end, int(code), headers


class Reader:
    """Accumulates an HTTP response from a nonblocking connection."""

    def __init__(self):
        self._buf = bytearray()
        self._chunk = _INITIAL_CHUNK
        self._in_body = False

    def readable(self, conn):
        """Read what is available; return ReadDone, Redirect, or None if more is needed."""
        while True:
            try:
                outcome = aread(conn, self._chunk)
            except OSError as exc:
                raise TrackerIOError() from exc
            if outcome.status is IOStatus.BLOCKED:
                return None
            if outcome.status is IOStatus.EOF:
                if not self._in_body:
                    raise TrackerEOF()
                data = bytes(self._buf)
                self._buf = bytearray()
                return ReadDone(data)
            self._buf += outcome.data
            if outcome.status is IOStatus.COMPLETE:
                self._chunk = int(self._chunk * 1.5)
            result = self._process()
            if result is not None:
                return result

    def _process(self):
        if self._in_body:
            return None
        parsed = _parse_head(bytes(self._buf))
        if parsed is None:
            return None
        offset, code, headers = parsed
        if code in _REDIRECT_CODES:
            location = next((value for name, value in headers if name == "Location"), None)
            if location is None:
                raise _malformed()
            try:
                return Redirect(location.decode("utf-8"))
            except UnicodeDecodeError:
                raise _malformed() from None
        del self._buf[:offset]
        self._in_body = True
        return None


class Writer:
    """Writes a request to a nonblocking connection across several calls."""

    def __init__(self, data):
        self._data = bytes(data)
        self._idx = 0

    def writable(self, conn):
        """Write what the connection accepts; return True once everything is written."""
        try:
            written = conn.write(self._data[self._idx:])
        except (BlockingIOError, BrokenPipeError):
            return False
        except OSError as exc:
            if exc.errno == errno.ENOTCONN:
                return False
            raise TrackerIOError() from exc
        if written is None:
            return False
        if written == 0:
            raise TrackerEOF()
        self._idx += written
        return self._idx == len(self._data)