import io
import string

import pytest

from synapse_torrent.util import (
    IOOutcome,
    IOStatus,
    addr_to_bytes,
    aread,
    awrite,
    bytes_to_addr,
    div_round_up,
    file_rpc_id,
    find_subseq,
    hash_to_id,
    id_to_hash,
    peer_rpc_id,
    random_sample,
    random_string,
    sha1_hash,
    trk_rpc_id,
)


class Blocked:
    def read(self, size):
        raise BlockingIOError()

    def write(self, data):
        raise BlockingIOError()


def test_hash_enc():
    digest = bytes([8] * 20)
    s = hash_to_id(digest)
    assert id_to_hash(s) == digest


def test_hash_to_id_is_upper_hex():
    assert hash_to_id(b"\x00\xab\xff") == "00ABFF"


def test_id_to_hash_accepts_lower_case():
    assert id_to_hash("ab" * 20) == bytes([0xAB] * 20)


@pytest.mark.parametrize("s", ["00" * 19, "00" * 21, "zz" + "00" * 19, " 0" * 20])
def test_id_to_hash_rejects(s):
    assert id_to_hash(s) is None


def test_sha1_hash_known_vector():
    assert hash_to_id(sha1_hash(b"abc")) == "A9993E364706816ABA3E25717850C26C9CD0D89D"


def test_rpc_ids_are_stable_and_distinct():
    torrent = bytes(range(20))
    peer = peer_rpc_id(torrent, 7)
    assert peer == peer_rpc_id(torrent, 7)
    assert len(peer) == 40
    assert id_to_hash(peer) is not None
    ids = {peer, peer_rpc_id(torrent, 8), file_rpc_id(torrent, "a"), trk_rpc_id(torrent, "a")}
    assert len(ids) == 4


def test_addr_round_trip():
    addr = ("10.1.2.3", 6881)
    data = addr_to_bytes(addr)
    assert len(data) == 6
    assert data[:4] == bytes([10, 1, 2, 3])
    assert bytes_to_addr(data) == addr


def test_addr_to_bytes_rejects_ipv6():
    with pytest.raises(ValueError, match="IPv6"):
        addr_to_bytes(("::1", 80))


def test_bytes_to_addr_too_short():
    with pytest.raises(ValueError):
        bytes_to_addr(b"\x01\x02\x03")


def test_find_subseq():
    assert find_subseq(b"hello world", b"world") == 6
    assert find_subseq(b"hello", b"xyz") is None
    assert find_subseq(b"ab", b"abc") is None


def test_div_round_up():
    assert div_round_up(10, 5) == 2
    assert div_round_up(11, 5) == 3
    assert div_round_up(0, 5) == 0


def test_random_string():
    s = random_string(32)
    assert len(s) == 32
    assert all(c in string.ascii_letters + string.digits for c in s)


def test_random_sample():
    items = [1, 2, 3, 4]
    assert random_sample(iter(items)) in items
    assert random_sample(iter([])) is None
    assert random_sample(["only"]) == "only"


def test_aread_complete_then_incomplete_then_eof():
    reader = io.BytesIO(b"abcde")
    assert aread(reader, 3) == IOOutcome(IOStatus.COMPLETE, b"abc", 3)
    assert aread(reader, 3) == IOOutcome(IOStatus.INCOMPLETE, b"de", 2)
    assert aread(reader, 3).status is IOStatus.EOF


def test_aread_zero_size_is_complete():
    assert aread(io.BytesIO(b""), 0).status is IOStatus.COMPLETE


def test_aread_and_awrite_blocked():
    assert aread(Blocked(), 4).status is IOStatus.BLOCKED
    assert awrite(Blocked(), b"x").status is IOStatus.BLOCKED


def test_awrite_complete():
    sink = io.BytesIO()
    outcome = awrite(sink, b"data")
    assert outcome == IOOutcome(IOStatus.COMPLETE, count=4)
    assert sink.getvalue() == b"data"


def test_awrite_empty_is_eof():
    assert awrite(io.BytesIO(), b"").status is IOStatus.EOF