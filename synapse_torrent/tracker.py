"""Tracker announce requests, DNS results and tracker responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .errors import InvalidResponse, TrackerError, TrackerFailure
from .util import bytes_to_addr

DEFAULT_INTERVAL = 900
LEECHING_NUM_WANT = 50
_COMPACT_PEER_LEN = 6


class Event(Enum):
    """Announce event sent to a tracker."""

    STARTED = "started"
    STOPPED = "stopped"
    COMPLETED = "completed"


@dataclass
class Announce:
    """An announce to send to one tracker for one torrent."""

    torrent_id: int
    url: str
    info_hash: bytes
    port: int
    uploaded: int = 0
    downloaded: int = 0
    left: int = 0
    num_want: int | None = None
    event: Event | None = None


@dataclass(frozen=True)
class GetPeers:
    """A request to look up peers for a torrent over the DHT."""

    torrent_id: int
    info_hash: bytes


@dataclass(frozen=True)
class QueryResponse:
    """Result of resolving a tracker host: an address or the error that stopped it."""

    id: int
    address: str | None = None
    error: TrackerError | None = None


@dataclass
class TrackerResponse:
    """Peers and swarm statistics returned by a tracker."""

    peers: list = field(default_factory=list)
    interval: int = DEFAULT_INTERVAL
    leechers: int = 0
    seeders: int = 0

    @classmethod
    def empty(cls):
        """A response with no peers and the default interval."""
        return cls()

    @classmethod
    def from_bencode(cls, data):
        """Build a response from a decoded bencode dictionary.

        Raises TrackerFailure when the tracker reported a failure reason and
        InvalidResponse when the data is not a usable response.
        """
        if not isinstance(data, dict):
            raise InvalidResponse("Tracker response must be a dictionary type!")

        failure = data.get("failure reason")
        if isinstance(failure, (bytes, bytearray)):
            try:
                reason = bytes(failure).decode("utf-8")
            except UnicodeDecodeError:
                raise InvalidResponse("Failure reason must be UTF8!") from None
            raise TrackerFailure(reason)

        resp = cls.empty()
        peers = data.get("peers")
        if isinstance(peers, (bytes, bytearray)):
            whole = len(peers) - len(peers) % _COMPACT_PEER_LEN
            resp.peers = [
                bytes_to_addr(peers[start:start + _COMPACT_PEER_LEN])
                for start in range(0, whole, _COMPACT_PEER_LEN)
            ]

        interval = data.get("interval")
        if not isinstance(interval, int) or isinstance(interval, bool):
            raise InvalidResponse("Response must have interval!")
        resp.interval = interval & 0xFFFF_FFFF
        return resp


@dataclass(frozen=True)
class TrackerReply:
    """Outcome of an announce: a response on success, an error otherwise."""

    tid: int
    url: str
    response: TrackerResponse | None = None
    error: TrackerError | None = None


@dataclass(frozen=True)
class DHTPeers:
    """Peers found for a torrent through the DHT."""

    tid: int
    peers: list


@dataclass(frozen=True)
class PEXPeers:
    """Peers learned for a torrent through peer exchange."""

    tid: int
    peers: list


def bytes_left(total_len, pieces_have, piece_len):
    """Bytes still to download, never below zero.

    The last piece is usually shorter, so this rounds down to zero at the end.
    """
    return max(0, total_len - pieces_have * piece_len)