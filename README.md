# synapse_torrent

Building blocks for a BitTorrent client. The package uses only the Python
standard library.

## What is in it

- `synapse_torrent.bencoding`: `encode(value)` and `decode(data)` for
  bencode. Integers decode to `int`, strings to `bytes`, lists to `list`, and
  dictionaries to `dict` with `str` keys. Invalid input raises `BencodeError`.
- `synapse_torrent.tracker`: the data types shared by the tracker clients.
  - `Announce`, `Event` and `GetPeers` describe requests.
  - `QueryResponse` is the result of a DNS lookup.
  - `TrackerResponse` holds a tracker's answer.
    `TrackerResponse.from_bencode` parses a decoded announce reply.
  - `TrackerReply`, `DHTPeers` and `PEXPeers` are the results handed back to
    a caller.
  - `bytes_left` computes the `left` value of an announce.
- `synapse_torrent.httptracker`:
  - `HttpAnnouncer` drives HTTP and HTTPS announces as non-blocking state
    machines. It follows at most one redirect and times out idle announces
    in `tick()`.
  - `build_announce_request` encodes the GET request for an announce.
- `synapse_torrent.udp`:
  - `UdpAnnouncer` runs the UDP tracker protocol (connect, then announce) on
    one non-blocking socket, with retransmission and timeouts.
  - `encode_connect_request`, `encode_announce_request` and
    `parse_announce_response` handle the packet formats.
- `synapse_torrent.httpio`: `Reader` and `Writer` move an HTTP exchange over
  a non-blocking connection. `Reader.readable` returns `ReadDone`,
  `Redirect`, or `None` while more data is needed.
- `synapse_torrent.stream`: `SecureStream` is a non-blocking TCP socket that
  may be wrapped in client-side or server-side TLS through the `ssl` module.
- `synapse_torrent.httpreq`: `RequestBuilder` and `encode_param` build
  HTTP/1.1 request heads with percent-encoded query values.
- `synapse_torrent.dht_proto`: the KRPC messages of the mainline DHT.
  - `Request` covers ping, find_node, get_peers and announce_peer.
  - `Response` covers id, find_node, get_peers and error replies.
  - `Node` and `KRPCError` describe nodes and errors.
  - Every message has `encode()` and `decode()`. Malformed input raises
    `ProtocolError`.
- `synapse_torrent.picker`:
  - `rarest.RarestPicker` picks rarest first.
  - `sequential.SequentialPicker` picks in order by priority; its priorities
    run from 0, which skips a piece, to 5.
  - `core.Picker` works at block level. It re-requests stalled blocks,
    spreads the last outstanding blocks over several peers, and takes
    per-file priorities.
- `synapse_torrent.util`:
  - `hash_to_id` / `id_to_hash` convert between bytes and hex ids.
  - `peer_rpc_id`, `file_rpc_id` and `trk_rpc_id` give stable ids.
  - `bytes_to_addr` / `addr_to_bytes` handle compact IPv4 addresses.
  - `aread` / `awrite` do non-blocking IO.
  - `random_sample`, `random_string`, `sha1_hash`, `find_subseq` and
    `div_round_up` are small helpers.
- `synapse_torrent.native`:
  - `is_sparse(f)` reports whether a file is sparse.
  - `fallocate(f, length)` preallocates space and falls back to resizing the
    file.

Tracker failures are raised, or carried in `TrackerReply.error`, as
subclasses of `synapse_torrent.errors.TrackerError`:

- `InvalidRequest`
- `InvalidResponse`
- `TrackerFailure`
- `TrackerEOF`
- `TrackerIOError`
- `TrackerTimeout`
- `DNSTimeout`
- `DNSInvalid`

## Installation

```
pip install .
```

## Examples

Parsing a tracker reply:

```python
from synapse_torrent.bencoding import decode
from synapse_torrent.tracker import TrackerResponse

resp = TrackerResponse.from_bencode(
    decode(b"d8:intervali1800e5:peers6:\x7f\x00\x00\x01\x1a\xe1e")
)
print(resp.interval, resp.peers)   # 1800 [('127.0.0.1', 6881)]
```

A DHT message round trip:

```python
from synapse_torrent.dht_proto import Request

msg = Request.ping(b"aa", 1).encode()
assert Request.decode(msg).transaction == b"aa"
```

Picking blocks. A peer is any object with `id`, `rank`, a set of piece
indices `pieces`, and a list `piece_cache`:

```python
from types import SimpleNamespace
from synapse_torrent.picker.core import Picker

picker = Picker(num_pieces=4, piece_len=16_384)
peer = SimpleNamespace(id=1, rank=0, pieces={0, 1, 2, 3}, piece_cache=[])
picker.add_peer(peer)
block = picker.pick(peer)                        # a Block(index, offset)
piece_done = picker.completed(block, lambda peer_id: None)
```

## What it does not do

This is a library, not a client. It has:

- no command-line program;
- no event loop;
- no DNS resolver. The announcers call `resolver.new_query(conn_id, host)`
  on an object you supply, and you pass the answers back through
  `dns_resolved`;
- no DHT routing table or node manager beyond the message codec;
- no torrent metadata, peer wire protocol or on-disk storage.

## Tests

```
pip install .[test]
pytest
```