"""Announcing to HTTP and HTTPS trackers over nonblocking connections."""

import itertools
import time
from enum import Enum, auto
from urllib.parse import urljoin, urlsplit

from .bencoding import BencodeError, decode
from .errors import InvalidRequest, InvalidResponse, TrackerError, TrackerIOError, TrackerTimeout
from .httpio import ReadDone, Reader, Redirect, Writer
from .httpreq import RequestBuilder
from .stream import SecureStream
from .tracker import QueryResponse, TrackerReply, TrackerResponse

TIMEOUT_SECS = 5.0
USER_AGENT = "synapse/1.0.0"


class _Event(Enum):
    DNS_RESOLVED = auto()
    READABLE = auto()
    WRITABLE = auto()


class _Phase(Enum):
    RESOLVING = auto()
    WRITING = auto()
    READING = auto()
    DONE = auto()
    FAILED = auto()


def _default_port(scheme):
    return 443 if scheme == "https" else 80


def _split(url, error):
    """Split ``url`` into (parts, host, port), raising ``error`` if it has no usable host."""
    parts = urlsplit(url)
    host = parts.hostname
    if not host:
        raise error
    try:
        port = parts.port
    except ValueError:
        raise error from None
    return parts, host, port if port is not None else _default_port(parts.scheme)


def _request_builder(parts):
    return RequestBuilder("GET", parts.path or "/", parts.query or None)


def _with_headers(builder, host):
    return (
        builder.header("User-agent", USER_AGENT)
        .header("Connection", "close")
        .header("Host", host)
        .encode()
    )


def build_announce_request(announce, peer_id):
    """Encode the HTTP GET request announcing ``announce`` to its tracker."""
    parts, host, _ = _split(announce.url, InvalidRequest("Tracker announce url has no host!"))
    builder = (
        _request_builder(parts)
        .query("info_hash", announce.info_hash)
        .query("peer_id", peer_id)
        .query("uploaded", str(announce.uploaded))
        .query("downloaded", str(announce.downloaded))
        .query("left", str(announce.left))
        .query("compact", b"1")
        .query("port", str(announce.port))
        .query_opt("numwant", None if announce.num_want is None else str(announce.num_want))
        .query_opt("event", None if announce.event is None else announce.event.value)
    )
    return _with_headers(builder, host)


class _Connection:
    """One announce in flight: DNS, then writing the request, then reading the reply."""

    def __init__(self, torrent, url, stream, request, port, redirect, now):
        self.torrent = torrent
        self.url = url
        self.stream = stream
        self.port = port
        self.redirect = redirect
        self.last_updated = now
        self.phase = _Phase.RESOLVING
        self._request = request
        self._writer = None
        self._reader = None

    def advance(self, event, resolved=None):
        """Feed an event; return a TrackerResponse, a Redirect, or None while pending."""
        try:
            return self._step(event, resolved)
        except TrackerError:
            self.phase = _Phase.FAILED
            raise

    def _step(self, event, resolved):
        if self.phase is _Phase.RESOLVING:
            if event is not _Event.DNS_RESOLVED:
                return None
            if resolved.error is not None:
                raise resolved.error
            try:
                self.stream.connect((resolved.address, self.port))
            except OSError as exc:
                raise TrackerIOError() from exc
            self.phase = _Phase.WRITING
            self._writer = Writer(self._request)
            result = self._step(_Event.WRITABLE, None)
            if result is not None:
                return result
            return self._step(_Event.READABLE, None)

        if self.phase is _Phase.WRITING:
            if not self._writer.writable(self.stream):
                return None
            self.phase = _Phase.READING
            self._reader = Reader()
            return self._step(_Event.READABLE, None)

        if self.phase is _Phase.READING:
            outcome = self._reader.readable(self.stream)
            if outcome is None:
                return None
            self.phase = _Phase.DONE
            if isinstance(outcome, Redirect):
                return outcome
            try:
                content = decode(outcome.data)
            except BencodeError:
                raise InvalidResponse("Invalid BEncoded response!") from None
            return TrackerResponse.from_bencode(content)

        raise TrackerError("Unknown state transition encountered!")


def _close_stream(stream):
    stream.sock.close()


class HttpAnnouncer:
    """Drives HTTP(S) announces for many torrents at once.

    ``register`` is called with each new stream and returns the id under which
    its events are reported; ``release`` is called with a stream once its
    announce is finished. ``resolver.new_query(conn_id, host)`` returns a
    cached address or None, in which case the answer arrives later through
    ``dns_resolved``.
    """

    def __init__(self, peer_id, register=None, release=None, stream_factory=None,
                 clock=time.monotonic):
        self.peer_id = bytes(peer_id)
        if register is None:
            counter = itertools.count()
            register = lambda stream: next(counter)  # noqa: E731
        self._register = register
        self._release = _close_stream if release is None else release
        self._stream_factory = SecureStream.new_v4 if stream_factory is None else stream_factory
        self._clock = clock
        self._connections = {}

    def active_requests(self):
        """Number of announces in flight."""
        return len(self._connections)

    def complete(self):
        """True when no announce is in flight."""
        return not self._connections

    def contains(self, conn_id):
        """True if ``conn_id`` belongs to an announce of this handler."""
        return conn_id in self._connections

    def _finish(self, conn_id, conn, response=None, error=None):
        del self._connections[conn_id]
        self._release(conn.stream)
        return TrackerReply(conn.torrent, conn.url, response=response, error=error)

    def _event(self, conn_id, event, resolved=None):
        conn = self._connections.get(conn_id)
        if conn is None:
            return None, None
        conn.last_updated = self._clock()
        try:
            return conn, conn.advance(event, resolved)
        except TrackerError as exc:
            return conn, exc

    def dns_resolved(self, response):
        """Handle the DNS answer for a connection; return a reply if it failed."""
        conn, result = self._event(response.id, _Event.DNS_RESOLVED, response)
        if isinstance(result, TrackerError):
            return self._finish(response.id, conn, error=result)
        return None

    def writable(self, conn_id):
        """Handle a writable socket; return a reply if the announce failed."""
        conn, result = self._event(conn_id, _Event.WRITABLE)
        if isinstance(result, TrackerError):
            return self._finish(conn_id, conn, error=result)
        return None

    def readable(self, conn_id, resolver):
        """Handle a readable socket; return a reply once the announce is settled."""
        conn, result = self._event(conn_id, _Event.READABLE)
        if result is None:
            return None
        if isinstance(result, TrackerError):
            return self._finish(conn_id, conn, error=result)
        if isinstance(result, TrackerResponse):
            return self._finish(conn_id, conn, response=result)

        self._connections.pop(conn_id)
        self._release(conn.stream)
        if conn.redirect:
            return TrackerReply(conn.torrent, conn.url,
                                error=InvalidResponse("Too many redirects"))
        try:
            self._redirect(result.location, conn.url, conn.torrent, resolver)
        except TrackerError as exc:
            return TrackerReply(conn.torrent, conn.url, error=exc)
        return None

    def _redirect(self, location, original_url, torrent, resolver):
        if not urlsplit(location).scheme:
            location = urljoin(original_url, location)
        parts, host, port = _split(location, InvalidResponse("Malformed redirect!"))
        request = _with_headers(_request_builder(parts), host)
        self._open(torrent, original_url, host, parts.scheme, port, request, True, resolver)

    def _open(self, torrent, url, host, scheme, port, request, redirect, resolver):
        try:
            stream = self._stream_factory(host if scheme == "https" else None)
            conn_id = self._register(stream)
        except (OSError, ValueError) as exc:
            raise TrackerIOError() from exc
        self._connections[conn_id] = _Connection(
            torrent, url, stream, request, port, redirect, self._clock()
        )
        try:
            cached = resolver.new_query(conn_id, host)
        except OSError as exc:
            self._connections.pop(conn_id)
            self._release(stream)
            raise TrackerIOError() from exc
        if cached is not None and self.dns_resolved(QueryResponse(conn_id, address=cached)):
            raise TrackerError("Failed to establish connection to tracker!")
        return conn_id

    def tick(self):
        """Fail every announce that has been idle too long."""
        now = self._clock()
        expired = [
            (conn_id, conn)
            for conn_id, conn in self._connections.items()
            if now - conn.last_updated > TIMEOUT_SECS
        ]
        return [self._finish(conn_id, conn, error=TrackerTimeout()) for conn_id, conn in expired]

    def new_announce(self, announce, resolver):
        """Start an announce and return the id of its connection."""
        request = build_announce_request(announce, self.peer_id)
        parts, host, port = _split(announce.url, InvalidRequest("Tracker announce url has no host!"))
        return self._open(announce.torrent_id, announce.url, host, parts.scheme, port,
                          request, False, resolver)