import select
import socket
import struct

import pytest

from synapse_torrent.errors import (
    DNSInvalid,
    InvalidRequest,
    InvalidResponse,
    TrackerError,
    TrackerFailure,
    TrackerIOError,
    TrackerTimeout,
)
from synapse_torrent.tracker import Announce, Event, QueryResponse
from synapse_torrent.udp import (
    ANNOUNCE_KEY,
    MAGIC_NUM,
    UdpAnnouncer,
    encode_announce_request,
    encode_connect_request,
    parse_announce_response,
)

PEER_ID = b"-SY0001-abcdefghijkl"
URL = "udp://tracker.example.com:6969/announce"


class FakeSocket:
    def __init__(self):
        self.sent = []
        self.incoming = []
        self.fail = False
        self.closed = False

    def sendto(self, data, addr):
        if self.fail:
            raise OSError("network down")
        self.sent.append((bytes(data), addr))
        return len(data)

    def recvfrom(self, size):
        if not self.incoming:
            raise BlockingIOError()
        return self.incoming.pop(0)[:size], ("10.0.0.1", 6969)

    def fileno(self):
        return 42

    def close(self):
        self.closed = True


class FakeResolver:
    def __init__(self, cached=None):
        self.cached = cached
        self.queries = []

    def new_query(self, conn_id, host):
        self.queries.append((conn_id, host))
        return self.cached


def make_announce(url=URL, event=Event.STARTED, num_want=50):
    return Announce(
        torrent_id=7,
        url=url,
        info_hash=b"\x11" * 20,
        port=6881,
        uploaded=1,
        downloaded=2,
        left=3,
        num_want=num_want,
        event=event,
    )


def make_announcer():
    sock = FakeSocket()
    clock = [0.0]
    announcer = UdpAnnouncer(PEER_ID, sock=sock, clock=lambda: clock[0])
    return announcer, sock, clock


def connect_reply(packet, connection_id):
    return struct.pack(">IIQ", 0, int.from_bytes(packet[12:16], "big"), connection_id)


def test_connect_request_layout():
    packet = encode_connect_request(0x01020304)
    assert len(packet) == 16
    assert packet[:8] == MAGIC_NUM.to_bytes(8, "big")
    assert packet[8:12] == b"\x00\x00\x00\x00"
    assert packet[12:] == b"\x01\x02\x03\x04"


def test_announce_request_fields():
    packet = encode_announce_request(99, 5, make_announce(), PEER_ID)
    assert len(packet) == 98
    fields = struct.unpack(">QII20s20sQQQIIIiH", packet)
    assert fields == (
        99, 1, 5, b"\x11" * 20, PEER_ID, 2, 3, 1, 2, 0, ANNOUNCE_KEY, 50, 6881
    )


@pytest.mark.parametrize(
    "event, code",
    [(None, 0), (Event.COMPLETED, 1), (Event.STARTED, 2), (Event.STOPPED, 3)],
)
def test_announce_event_codes(event, code):
    packet = encode_announce_request(1, 1, make_announce(event=event, num_want=None), PEER_ID)
    fields = struct.unpack(">QII20s20sQQQIIIiH", packet)
    assert fields[8] == code
    assert fields[11] == -1


def test_announce_request_rejects_short_peer_id():
    with pytest.raises(ValueError):
        encode_announce_request(1, 1, make_announce(), b"short")


def test_parse_announce_response_round_trip():
    peer = bytes([1, 2, 3, 4]) + (6881).to_bytes(2, "big")
    data = struct.pack(">IIIII", 1, 77, 1800, 4, 9) + peer + b"\x05\x06"
    tid, resp = parse_announce_response(data)
    assert tid == 77
    assert (resp.interval, resp.leechers, resp.seeders) == (1800, 4, 9)
    assert resp.peers == [("1.2.3.4", 6881)]


def test_parse_announce_response_rejects_short():
    with pytest.raises(ValueError):
        parse_announce_response(b"\x00\x00\x00\x01")


def test_full_announce_flow():
    announcer, sock, _ = make_announcer()
    resolver = FakeResolver("10.0.0.1")
    conn_id = announcer.new_announce(make_announce(), resolver)
    assert resolver.queries == [(conn_id, "tracker.example.com")]
    packet, addr = sock.sent[0]
    assert addr == ("10.0.0.1", 6969)
    assert packet[:8] == MAGIC_NUM.to_bytes(8, "big")

    sock.incoming.append(connect_reply(packet, 0xABCDEF))
    assert announcer.readable() == []
    announce_packet, _ = sock.sent[1]
    assert len(announce_packet) == 98
    assert int.from_bytes(announce_packet[:8], "big") == 0xABCDEF

    tid = int.from_bytes(announce_packet[12:16], "big")
    peer = bytes([1, 2, 3, 4]) + (6881).to_bytes(2, "big")
    sock.incoming.append(struct.pack(">IIIII", 1, tid, 1800, 4, 9) + peer)
    replies = announcer.readable()
    assert len(replies) == 1
    reply = replies[0]
    assert reply.tid == 7
    assert reply.url == URL
    assert reply.error is None
    assert reply.response.peers == [("1.2.3.4", 6881)]
    assert reply.response.interval == 1800
    assert announcer.complete()


def test_dns_error_settles_announce():
    announcer, sock, _ = make_announcer()
    conn_id = announcer.new_announce(make_announce(), FakeResolver())
    assert sock.sent == []
    assert announcer.active_requests() == 1
    reply = announcer.dns_resolved(QueryResponse(conn_id, error=DNSInvalid()))
    assert isinstance(reply.error, DNSInvalid)
    assert not announcer.contains(conn_id)


def test_url_without_port_is_rejected():
    announcer, _, _ = make_announcer()
    with pytest.raises(InvalidRequest):
        announcer.new_announce(make_announce(url="udp://tracker.example.com/announce"),
                               FakeResolver())
    assert announcer.complete()


def test_error_response():
    announcer, sock, _ = make_announcer()
    announcer.new_announce(make_announce(), FakeResolver("10.0.0.1"))
    tid = sock.sent[0][0][12:16]
    sock.incoming.append(struct.pack(">I", 3) + tid + b"go away")
    [reply] = announcer.readable()
    assert isinstance(reply.error, TrackerFailure)
    assert reply.error.reason == "go away"


def test_error_response_invalid_utf8():
    announcer, sock, _ = make_announcer()
    announcer.new_announce(make_announce(), FakeResolver("10.0.0.1"))
    tid = sock.sent[0][0][12:16]
    sock.incoming.append(struct.pack(">I", 3) + tid + b"\xff\xfe")
    [reply] = announcer.readable()
    assert reply.tid == 7
    assert reply.url == URL
    assert reply.response is None
    assert str(reply.error).startswith("invalid tracker response: ")
    assert isinstance(reply.error, InvalidResponse)
    assert announcer.complete()


def test_unknown_transaction_is_ignored():
    announcer, sock, _ = make_announcer()
    announcer.new_announce(make_announce(), FakeResolver("10.0.0.1"))
    sock.incoming.append(struct.pack(">IIQ", 0, 0, 1))
    sock.incoming.append(b"\x00\x00")
    assert announcer.readable() == []
    assert announcer.active_requests() == 1


def test_timeout_drops_transactions():
    announcer, sock, clock = make_announcer()
    announcer.new_announce(make_announce(), FakeResolver("10.0.0.1"))
    clock[0] = 16.0
    [reply] = announcer.tick()
    assert isinstance(reply.error, TrackerTimeout)
    assert announcer.complete()
    sock.incoming.append(connect_reply(sock.sent[0][0], 1))
    assert announcer.readable() == []
    assert len(sock.sent) == 1


def test_retransmit_after_delay():
    announcer, sock, clock = make_announcer()
    announcer.new_announce(make_announce(), FakeResolver("10.0.0.1"))
    clock[0] = 2.0
    assert announcer.tick() == []
    assert len(sock.sent) == 1
    clock[0] = 6.0
    assert announcer.tick() == []
    assert len(sock.sent) == 2
    assert sock.sent[1] == sock.sent[0]


def test_send_failure_with_cached_dns_raises():
    announcer, sock, _ = make_announcer()
    sock.fail = True
    with pytest.raises(TrackerError):
        announcer.new_announce(make_announce(), FakeResolver("10.0.0.1"))
    assert announcer.complete()


def test_send_failure_after_dns():
    announcer, sock, _ = make_announcer()
    conn_id = announcer.new_announce(make_announce(), FakeResolver())
    sock.fail = True
    reply = announcer.dns_resolved(QueryResponse(conn_id, address="10.0.0.1"))
    assert isinstance(reply.error, TrackerIOError)
    assert announcer.complete()


def test_close_and_fileno():
    announcer, sock, _ = make_announcer()
    assert announcer.fileno() == 42
    with announcer:
        pass
    assert sock.closed


def test_real_socket_round_trip():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as tracker:
        tracker.bind(("127.0.0.1", 0))
        tracker.settimeout(5)
        port = tracker.getsockname()[1]
        with UdpAnnouncer(PEER_ID, port=0) as announcer:
            announcer.new_announce(
                make_announce(url=f"udp://127.0.0.1:{port}/announce"),
                FakeResolver("127.0.0.1"),
            )
            packet, addr = tracker.recvfrom(100)
            assert packet[:8] == MAGIC_NUM.to_bytes(8, "big")
            tracker.sendto(connect_reply(packet, 5), addr)
            ready, _, _ = select.select([announcer], [], [], 5)
            assert ready == [announcer]
            assert announcer.readable() == []
            announce_packet, _ = tracker.recvfrom(200)
            assert len(announce_packet) == 98
            assert int.from_bytes(announce_packet[:8], "big") == 5