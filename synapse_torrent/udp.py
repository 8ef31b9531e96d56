"""Announcing to UDP trackers."""

import random
import socket
import struct
import time
from dataclasses import dataclass
from enum import Enum, auto
from urllib.parse import urlsplit

from .errors import (
    InvalidRequest,
    InvalidResponse,
    TrackerError,
    TrackerFailure,
    TrackerIOError,
    TrackerTimeout,
)
from .tracker import Event, QueryResponse, TrackerReply, TrackerResponse
from .util import bytes_to_addr

# No backoff: if the tracker or network is down now, the torrent resends later.
TIMEOUT_SECS = 15.0
RETRANS_SECS = 5.0
MAGIC_NUM = 0x417_2710_1980
ANNOUNCE_KEY = 0xFFFF_00BA

_BUF_SIZE = 350
_ACTION_CONNECT = 0
_ACTION_ANNOUNCE = 1
_ACTION_ERROR = 3
_CONNECT = struct.Struct(">QII")
_ANNOUNCE = struct.Struct(">QII20s20sQQQIIIiH")
_REPLY_HEAD = struct.Struct(">II")
_ANNOUNCE_HEAD = struct.Struct(">IIIII")
_CONNECT_REPLY = struct.Struct(">IIQ")
_PEER_LEN = 6
_ID_MASK = (1 << 64) - 1

_EVENT_CODES = {
    None: 0,
    Event.COMPLETED: 1,
    Event.STARTED: 2,
    Event.STOPPED: 3,
}


def _new_transaction_id():
    return random.getrandbits(32)


def encode_connect_request(transaction_id):
    """The 16 byte connect request carrying ``transaction_id``."""
    return _CONNECT.pack(MAGIC_NUM, _ACTION_CONNECT, transaction_id)


def encode_announce_request(connection_id, transaction_id, announce, peer_id):
    """The 98 byte announce request for ``announce``."""
    info_hash = bytes(announce.info_hash)
    peer_id = bytes(peer_id)
    if len(info_hash) != 20:
        raise ValueError("info hash must be 20 bytes")
    if len(peer_id) != 20:
        raise ValueError("peer id must be 20 bytes")
    num_want = -1 if announce.num_want is None else announce.num_want
    return _ANNOUNCE.pack(
        connection_id,
        _ACTION_ANNOUNCE,
        transaction_id,
        info_hash,
        peer_id,
        announce.downloaded,
        announce.left,
        announce.uploaded,
        _EVENT_CODES[announce.event],
        0,
        ANNOUNCE_KEY,
        num_want,
        announce.port,
    )


def parse_announce_response(data):
    """Parse an announce reply datagram into ``(transaction_id, TrackerResponse)``.

    A trailing partial peer entry is ignored.
    """
    data = bytes(data)
    if len(data) < _ANNOUNCE_HEAD.size:
        raise ValueError("announce response is too short")
    action, transaction_id, interval, leechers, seeders = _ANNOUNCE_HEAD.unpack_from(data)
    if action != _ACTION_ANNOUNCE:
        raise ValueError("not an announce response")
    body = data[_ANNOUNCE_HEAD.size:]
    whole = len(body) - len(body) % _PEER_LEN
    peers = [bytes_to_addr(body[i:i + _PEER_LEN]) for i in range(0, whole, _PEER_LEN)]
    return transaction_id, TrackerResponse(peers, interval, leechers, seeders)


class _Phase(Enum):
    RESOLVING = auto()
    CONNECTING = auto()
    ANNOUNCING = auto()


@dataclass
class _Connection:
    torrent: int
    announce: object
    port: int
    last_updated: float
    last_retrans: float
    phase: _Phase = _Phase.RESOLVING
    addr: tuple = None
    packet: bytes = b""


class UdpAnnouncer:
    """Drives announces to UDP trackers over a single nonblocking socket.

    ``resolver.new_query(conn_id, host)`` returns a cached address or None,
    in which case the answer arrives later through ``dns_resolved``.
    """

    def __init__(self, peer_id, port=0, sock=None, clock=time.monotonic):
        self.peer_id = bytes(peer_id)
        if sock is None:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                sock.bind(("0.0.0.0", port))
                sock.setblocking(False)
            except OSError:
                sock.close()
                raise
        self._sock = sock
        self._clock = clock
        self._connections = {}
        self._transactions = {}
        self._next_id = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def fileno(self):
        """The descriptor of the announce socket."""
        return self._sock.fileno()

    def close(self):
        """Close the announce socket."""
        self._sock.close()

    def complete(self):
        """True when no announce is in flight."""
        return not self._connections

    def active_requests(self):
        """Number of announces in flight."""
        return len(self._connections)

    def contains(self, conn_id):
        """True if ``conn_id`` belongs to an announce of this handler."""
        return conn_id in self._connections

    def _new_conn(self):
        conn_id = self._next_id
        self._next_id = (self._next_id + 1) & _ID_MASK
        return conn_id

    def new_announce(self, announce, resolver):
        """Start an announce and return the id of its connection."""
        parts = urlsplit(announce.url)
        host = parts.hostname
        if not host:
            raise InvalidRequest("Tracker announce url has no host!")
        try:
            port = parts.port
        except ValueError:
            port = None
        if port is None:
            raise InvalidRequest("Tracker announce url has no port!")

        conn_id = self._new_conn()
        now = self._clock()
        self._connections[conn_id] = _Connection(announce.torrent_id, announce, port, now, now)
        try:
            cached = resolver.new_query(conn_id, host)
        except OSError as exc:
            self._connections.pop(conn_id, None)
            raise TrackerIOError() from exc
        if cached is not None and self.dns_resolved(QueryResponse(conn_id, address=cached)):
            raise TrackerError("Failed to establish connection to tracker!")
        return conn_id

    def _reply(self, conn, response=None, error=None):
        return TrackerReply(conn.torrent, conn.announce.url, response=response, error=error)

    def dns_resolved(self, response):
        """Handle the DNS answer for a connection; return a reply if it failed."""
        conn = self._connections.get(response.id)
        if conn is None or conn.phase is not _Phase.RESOLVING:
            return None
        conn.last_updated = self._clock()
        if response.error is not None:
            del self._connections[response.id]
            return self._reply(conn, error=response.error)
        transaction_id = _new_transaction_id()
        conn.phase = _Phase.CONNECTING
        conn.addr = (response.address, conn.port)
        conn.packet = encode_connect_request(transaction_id)
        self._transactions[transaction_id] = response.id
        return self._send(response.id)

    def readable(self):
        """Process every datagram waiting on the socket; return the settled replies."""
        replies = []
        while True:
            try:
                data, _ = self._sock.recvfrom(_BUF_SIZE)
            except OSError:
                break
            if len(data) < 4:
                continue
            action = int.from_bytes(data[:4], "big")
            if action == _ACTION_CONNECT and len(data) == _CONNECT_REPLY.size:
                reply = self._process_connect(data)
            elif action == _ACTION_ANNOUNCE and len(data) >= _ANNOUNCE_HEAD.size:
                reply = self._process_announce(data)
            elif action == _ACTION_ERROR and len(data) >= _REPLY_HEAD.size:
                reply = self._process_error(data)
            else:
                reply = None
            if reply is not None:
                replies.append(reply)
        return replies

    def tick(self):
        """Time out idle announces and retransmit stale packets."""
        now = self._clock()
        replies = []
        retrans = []
        for conn_id, conn in list(self._connections.items()):
            if now - conn.last_updated > TIMEOUT_SECS:
                del self._connections[conn_id]
                replies.append(self._reply(conn, error=TrackerTimeout()))
            elif now - conn.last_retrans > RETRANS_SECS:
                retrans.append(conn_id)
        self._transactions = {
            tid: conn_id
            for tid, conn_id in self._transactions.items()
            if conn_id in self._connections
        }
        for conn_id in retrans:
            reply = self._send(conn_id)
            if reply is not None:
                replies.append(reply)
        return replies

    def _process_connect(self, data):
        _, transaction_id, connection_id = _CONNECT_REPLY.unpack(data)
        conn_id = self._transactions.pop(transaction_id, None)
        if conn_id is None:
            return None
        conn = self._connections.get(conn_id)
        if conn is None or conn.phase is not _Phase.CONNECTING:
            return None
        announce_tid = _new_transaction_id()
        self._transactions[announce_tid] = conn_id
        conn.packet = encode_announce_request(
            connection_id, announce_tid, conn.announce, self.peer_id
        )
        conn.phase = _Phase.ANNOUNCING
        conn.last_updated = self._clock()
        return self._send(conn_id)

    def _take(self, data):
        _, transaction_id = _REPLY_HEAD.unpack_from(data)
        conn_id = self._transactions.pop(transaction_id, None)
        if conn_id is None:
            return None
        return self._connections.pop(conn_id, None)

    def _process_announce(self, data):
        conn = self._take(data)
        if conn is None:
            return None
        _, response = parse_announce_response(data)
        return self._reply(conn, response=response)

    def _process_error(self, data):
        conn = self._take(data)
        if conn is None:
            return None
        try:
            message = data[_REPLY_HEAD.size:].decode("utf-8")
        except UnicodeDecodeError:
            return self._reply(
                conn, error=InvalidResponse("Tracker error response was invalid UTF8")
            )
        return self._reply(conn, error=TrackerFailure(message))

    def _send(self, conn_id):
        conn = self._connections[conn_id]
        if conn.phase is _Phase.RESOLVING:
            return None
        conn.last_retrans = self._clock()
        try:
            self._sock.sendto(conn.packet, conn.addr)
        except OSError as exc:
            del self._connections[conn_id]
            error = TrackerIOError()
            error.__cause__ = exc
            return self._reply(conn, error=error)
        return None