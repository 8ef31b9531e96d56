"""Small helpers shared across the client: ids, hashes, addresses and nonblocking IO."""

import hashlib
import ipaddress
import random
import string
from dataclasses import dataclass
from enum import Enum, auto

_ALPHANUMERIC = string.ascii_letters + string.digits
_HEX_DIGITS = frozenset(string.hexdigits)


class IOStatus(Enum):
    """Outcome of a single nonblocking read or write."""

    COMPLETE = auto()
    INCOMPLETE = auto()
    BLOCKED = auto()
    EOF = auto()


@dataclass(frozen=True)
class IOOutcome:
    """Status of a nonblocking operation with the bytes read or the count written."""

    status: IOStatus
    data: bytes = b""
    count: int = 0


def aread(reader, size):
    """Read up to ``size`` bytes from ``reader`` without blocking.

    Errors other than would-block and broken pipe propagate.
    """
    if size == 0:
        return IOOutcome(IOStatus.COMPLETE)
    try:
        chunk = reader.read(size)
    except (BlockingIOError, BrokenPipeError):
        return IOOutcome(IOStatus.BLOCKED)
    if chunk is None:
        return IOOutcome(IOStatus.BLOCKED)
    if not chunk:
        return IOOutcome(IOStatus.EOF)
    status = IOStatus.COMPLETE if len(chunk) == size else IOStatus.INCOMPLETE
    return IOOutcome(status, bytes(chunk), len(chunk))


def awrite(writer, data):
    """Write ``data`` to ``writer`` without blocking."""
    try:
        written = writer.write(data)
    except (BlockingIOError, BrokenPipeError):
        return IOOutcome(IOStatus.BLOCKED)
    if written is None:
        return IOOutcome(IOStatus.BLOCKED)
    if written == 0:
        return IOOutcome(IOStatus.EOF)
    status = IOStatus.COMPLETE if written == len(data) else IOStatus.INCOMPLETE
    return IOOutcome(status, count=written)


def random_sample(iterable):
    """Pick one item uniformly at random from ``iterable``, or None if it is empty."""
    chosen = None
    for seen, item in enumerate(iterable, start=1):
        if random.random() < 1.0 / seen:
            chosen = item
    return chosen


def random_string(length):
    """Return a random alphanumeric string of ``length`` characters."""
    return "".join(random.choices(_ALPHANUMERIC, k=length))


def sha1_hash(data):
    """Return the 20 byte SHA-1 digest of ``data``."""
    return hashlib.sha1(data).digest()


def _rpc_id(*parts):
    ctx = hashlib.sha1()
    for part in parts:
        ctx.update(part)
    return hash_to_id(ctx.digest())


def peer_rpc_id(torrent, peer):
    """Stable RPC id for a peer of a torrent."""
    return _rpc_id(torrent, b"PEER", peer.to_bytes(8, "big"))


def file_rpc_id(torrent, file):
    """Stable RPC id for a file of a torrent."""
    return _rpc_id(torrent, b"FILE", file.encode("utf-8"))


def trk_rpc_id(torrent, url):
    """Stable RPC id for a tracker of a torrent."""
    return _rpc_id(torrent, b"TRK", url.encode("utf-8"))


def hash_to_id(digest):
    """Render bytes as upper case hex."""
    return bytes(digest).hex().upper()


def id_to_hash(s):
    """Parse a 40 character hex id into 20 bytes, or None if it is not one."""
    if len(s) != 40 or not all(c in _HEX_DIGITS for c in s):
        return None
    return bytes.fromhex(s)


def bytes_to_addr(data):
    """Decode a compact 6 byte IPv4 address into ``(host, port)``."""
    if len(data) < 6:
        raise ValueError("compact address needs 6 bytes")
    host = str(ipaddress.IPv4Address(bytes(data[:4])))
    return host, int.from_bytes(data[4:6], "big")


def addr_to_bytes(addr):
    """Encode an IPv4 ``(host, port)`` address into its compact 6 byte form."""
    host, port = addr[0], addr[1]
    ip = ipaddress.ip_address(host)
    if ip.version != 4:
        raise ValueError("IPv6 DHT not supported")
    return ip.packed + port.to_bytes(2, "big")


def find_subseq(haystack, needle):
    """Index of the first occurrence of ``needle`` in ``haystack``, or None."""
    if not needle:
        raise ValueError("needle must not be empty")
    pos = bytes(haystack).find(bytes(needle))
    return None if pos < 0 else pos


def div_round_up(a, b):
    """Integer division rounding up."""
    return (a + b - 1) // b