"""KRPC messages of the mainline DHT: queries, replies and their bencoded form.

Node ids and targets are plain integers. They are written big-endian without
leading zero bytes and read from the first 20 bytes of a field.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .bencoding import BencodeError, decode, encode
from .util import addr_to_bytes, bytes_to_addr

VERSION = "SY"

GENERIC = 201
SERVER = 202
PROTOCOL = 203
METHOD_UNKNOWN = 204

_ERROR_CODES = frozenset({GENERIC, SERVER, PROTOCOL, METHOD_UNKNOWN})
_ID_LEN = 20
_HASH_LEN = 20
_ADDR_LEN = 6
_NODE_LEN = _ID_LEN + _ADDR_LEN
_MAX_PORT = 65_535


class ProtocolError(ValueError):
    """A DHT message could not be decoded."""


def _bad_request(reason):
    return ProtocolError(f"invalid request: {reason}")


def _bad_response(reason):
    return ProtocolError(f"invalid response: {reason}")


@dataclass(frozen=True)
class KRPCError:
    """An error carried in a KRPC error reply."""

    code: int
    message: str

    def __post_init__(self):
        if self.code not in _ERROR_CODES:
            raise ValueError(f"unknown KRPC error code {self.code}")


def _id_bytes(node_id):
    return node_id.to_bytes(max(1, (node_id.bit_length() + 7) // 8), "big")


def _as_bytes(value):
    return value if isinstance(value, bytes) else None


def _as_text(value):
    if not isinstance(value, bytes):
        return None
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _as_int(value):
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _as_id(value):
    raw = _as_bytes(value)
    if raw is None or len(raw) < _ID_LEN:
        return None
    return int.from_bytes(raw[:_ID_LEN], "big")


def _as_hash(value):
    raw = _as_bytes(value)
    if raw is None or len(raw) != _HASH_LEN:
        return None
    return raw


def _decode_dict(buf, error):
    try:
        value = decode(buf)
    except BencodeError:
        raise error("Invalid BEncoded data") from None
    if not isinstance(value, dict):
        raise error("Invalid BEncoded data(must be dict)")
    return value


def _compact_nodes(raw):
    whole = len(raw) - len(raw) % _NODE_LEN
    return [Node.from_bytes(raw[i:i + _NODE_LEN]) for i in range(0, whole, _NODE_LEN)]


@dataclass(frozen=True)
class Node:
    """A DHT node: its id and IPv4 address ``(host, port)``."""

    id: int
    addr: tuple

    @classmethod
    def from_bytes(cls, data):
        """Decode a 26 byte compact node record."""
        if len(data) < _NODE_LEN:
            raise ValueError("compact node needs 26 bytes")
        return cls(int.from_bytes(data[:_ID_LEN], "big"), bytes_to_addr(data[_ID_LEN:_NODE_LEN]))

    def to_bytes(self):
        """The compact form: id followed by the 6 byte address."""
        return _id_bytes(self.id) + addr_to_bytes(self.addr)


@dataclass(frozen=True)
class Ping:
    node_id: int


@dataclass(frozen=True)
class FindNode:
    node_id: int
    target: int


@dataclass(frozen=True)
class GetPeersQuery:
    node_id: int
    info_hash: bytes


@dataclass(frozen=True)
class AnnouncePeer:
    node_id: int
    info_hash: bytes
    token: bytes
    port: int
    implied_port: bool = False


@dataclass
class Request:
    """A KRPC query."""

    transaction: bytes
    kind: object
    version: str | None = None

    @classmethod
    def ping(cls, transaction, node_id):
        return cls(transaction, Ping(node_id), VERSION)

    @classmethod
    def find_node(cls, transaction, node_id, target):
        return cls(transaction, FindNode(node_id, target), VERSION)

    @classmethod
    def get_peers(cls, transaction, node_id, info_hash):
        return cls(transaction, GetPeersQuery(node_id, bytes(info_hash)), VERSION)

    @classmethod
    def announce(cls, transaction, node_id, info_hash, token, port):
        return cls(
            transaction, AnnouncePeer(node_id, bytes(info_hash), bytes(token), port), VERSION
        )

    def encode(self):
        """The bencoded query."""
        msg = {"t": bytes(self.transaction), "y": "q"}
        if self.version is not None:
            msg["v"] = self.version
        kind = self.kind
        args = {"id": _id_bytes(kind.node_id)}
        if isinstance(kind, Ping):
            msg["q"] = "ping"
        elif isinstance(kind, FindNode):
            msg["q"] = "find_node"
            args["target"] = _id_bytes(kind.target)
        elif isinstance(kind, GetPeersQuery):
            msg["q"] = "get_peers"
            args["info_hash"] = kind.info_hash
        elif isinstance(kind, AnnouncePeer):
            msg["q"] = "announce_peer"
            args["info_hash"] = kind.info_hash
            args["implied_port"] = 1 if kind.implied_port else 0
            args["port"] = kind.port
            args["token"] = kind.token
        else:
            raise TypeError(f"unknown query kind {type(kind).__name__}")
        msg["a"] = args
        return encode(msg)

    @classmethod
    def decode(cls, buf):
        """Parse a bencoded query, raising ProtocolError if it is not one."""
        d = _decode_dict(buf, _bad_request)
        transaction = _as_bytes(d.get("t"))
        if transaction is None:
            raise _bad_request("Invalid BEncoded data(dict must have t field)")
        version = _as_text(d.get("v"))
        y = _as_text(d.get("y"))
        if y is None:
            raise _bad_request("Invalid BEncoded data(dict must have y field)")
        if y != "q":
            raise _bad_request("Invalid BEncoded data(request must have y: q field)")
        q = _as_text(d.get("q"))
        if q is None:
            raise _bad_request("Invalid BEncoded data(dict must have q field)")
        a = d.get("a")
        if not isinstance(a, dict):
            raise _bad_request("Invalid BEncoded data(dict must have a field)")
        node_id = _as_id(a.get("id"))
        if node_id is None:
            raise _bad_request("Invalid BEncoded data(ping must have id field)")

        if q == "ping":
            kind = Ping(node_id)
        elif q == "find_node":
            target = _as_id(a.get("target"))
            if target is None:
                raise _bad_request("Invalid BEncoded data(find_node must have target field)")
            kind = FindNode(node_id, target)
        elif q == "get_peers":
            info_hash = _as_hash(a.get("info_hash"))
            if info_hash is None:
                raise _bad_request("Invalid BEncoded data(get_peers must have hash field)")
            kind = GetPeersQuery(node_id, info_hash)
        elif q == "announce_peer":
            info_hash = _as_hash(a.get("info_hash"))
            if info_hash is None:
                raise _bad_request("Invalid BEncoded data(announce_peer must have hash field)")
            implied = _as_int(a.get("implied_port"))
            port = _as_int(a.get("port"))
            if port is None or not 0 <= port <= _MAX_PORT:
                raise _bad_request("Invalid BEncoded data(announce_peer must have port field)")
            token = _as_bytes(a.get("token"))
            if token is None:
                raise _bad_request("Invalid BEncoded data(announce_peer must have port field)")
            kind = AnnouncePeer(node_id, info_hash, token, port,
                                implied is not None and implied > 0)
        else:
            raise _bad_request("Invalid BEncoded data(request must be a valid query type)")
        return cls(transaction, kind, version)


@dataclass(frozen=True)
class IDReply:
    node_id: int


@dataclass
class FindNodeReply:
    node_id: int
    nodes: list = field(default_factory=list)


@dataclass
class GetPeersReply:
    node_id: int
    token: bytes
    values: list = field(default_factory=list)
    nodes: list = field(default_factory=list)


@dataclass(frozen=True)
class ErrorReply:
    error: KRPCError


@dataclass
class Response:
    """A KRPC reply or error."""

    transaction: bytes
    kind: object

    @classmethod
    def id(cls, transaction, node_id):
        return cls(transaction, IDReply(node_id))

    @classmethod
    def find_node(cls, transaction, node_id, nodes):
        return cls(transaction, FindNodeReply(node_id, list(nodes)))

    @classmethod
    def peers(cls, transaction, node_id, token, values):
        return cls(transaction, GetPeersReply(node_id, bytes(token), values=list(values)))

    @classmethod
    def nodes(cls, transaction, node_id, token, nodes):
        return cls(transaction, GetPeersReply(node_id, bytes(token), nodes=list(nodes)))

    @classmethod
    def error(cls, transaction, error):
        return cls(transaction, ErrorReply(error))

    def is_err(self):
        """True for an error reply."""
        return isinstance(self.kind, ErrorReply)

    def encode(self):
        """The bencoded reply."""
        msg = {"t": bytes(self.transaction)}
        kind = self.kind
        if isinstance(kind, ErrorReply):
            msg["y"] = "e"
            msg["e"] = [kind.error.code, kind.error.message]
            return encode(msg)

        args = {"id": _id_bytes(kind.node_id)}
        if isinstance(kind, FindNodeReply):
            args["nodes"] = b"".join(node.to_bytes() for node in kind.nodes)
        elif isinstance(kind, GetPeersReply):
            args["token"] = kind.token
            args["values"] = [addr_to_bytes(addr) for addr in kind.values]
            args["nodes"] = b"".join(node.to_bytes() for node in kind.nodes)
        elif not isinstance(kind, IDReply):
            raise TypeError(f"unknown reply kind {type(kind).__name__}")
        msg["y"] = "r"
        msg["r"] = args
        return encode(msg)

    @classmethod
    def decode(cls, buf):
        """Parse a bencoded reply, raising ProtocolError if it is not one."""
        d = _decode_dict(buf, _bad_response)
        transaction = _as_bytes(d.get("t"))
        if transaction is None:
            raise _bad_response("Invalid BEncoded data(dict must have t field)")
        y = _as_text(d.get("y"))
        if y is None:
            raise _bad_response("Invalid BEncoded data(dict must have y field)")

        if y == "e":
            e = d.get("e")
            if not isinstance(e, list):
                raise _bad_response("Invalid BEncoded data(error resp must have e field)")
            if len(e) != 2:
                raise _bad_response("Invalid BEncoded data(e field must have two terms)")
            code = _as_int(e[0])
            if code is None:
                raise _bad_response(
                    "Invalid BEncoded data(e field must start with integer code)"
                )
            message = _as_text(e[1])
            if message is None:
                raise _bad_response("Invalid BEncoded data(e field must end with string data)")
            if code not in _ERROR_CODES:
                raise _bad_response("Invalid BEncoded data(invalid error code)")
            return cls(transaction, ErrorReply(KRPCError(code, message)))

        if y != "r":
            raise _bad_response("Invalid BEncoded data(y field must be e/r)")
        r = d.get("r")
        if not isinstance(r, dict):
            raise _bad_response("Invalid BEncoded data(resp must have r field)")
        node_id = _as_id(r.get("id"))
        if node_id is None:
            raise _bad_response("Invalid BEncoded data(response must have id)")

        token = _as_bytes(r.get("token"))
        raw_nodes = _as_bytes(r.get("nodes"))
        if token is not None:
            raw_values = r.get("values")
            values = []
            if isinstance(raw_values, list):
                values = [
                    bytes_to_addr(item)
                    for item in raw_values
                    if isinstance(item, bytes) and len(item) == _ADDR_LEN
                ]
            nodes = _compact_nodes(raw_nodes) if raw_nodes is not None else []
            kind = GetPeersReply(node_id, token, values, nodes)
        elif raw_nodes is not None:
            kind = FindNodeReply(node_id, _compact_nodes(raw_nodes))
        else:
            kind = IDReply(node_id)
        return cls(transaction, kind)