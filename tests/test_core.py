from dataclasses import dataclass, field

import pytest

from synapse_torrent.picker.core import Block, Picker, piece_priorities


@dataclass
class FakePeer:
    id: int
    pieces: set
    rank: int = 0
    piece_cache: list = field(default_factory=list)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def collect_cancel():
    cancelled = []
    return cancelled, cancelled.append


def test_seq_picker():
    p = Picker(10, 16_384)
    p.change_picker(True)
    peer = FakePeer(0, set(range(10)))

    for i in range(10):
        assert p.pick(peer) == Block(i, 0)

    for i in range(10):
        cancelled, cancel = collect_cancel()
        assert p.completed(Block(i, 0), cancel) is True
        assert cancelled == [0]

    p.invalidate_piece(5)
    assert p.pick(peer) == Block(5, 0)


def test_change_picker_toggles_mode():
    p = Picker(4, 16_384)
    assert p.is_sequential() is False
    p.change_picker(True)
    assert p.is_sequential() is True
    p.change_picker(False)
    assert p.is_sequential() is False


def test_rarest_picks_least_available_piece():
    p = Picker(3, 16_384)
    a = FakePeer(1, {0, 1})
    b = FakePeer(2, {1})
    p.add_peer(a)
    p.add_peer(b)
    assert p.pick(a) == Block(0, 0)


def test_multi_block_piece_offsets_and_completion():
    p = Picker(2, 32_768)
    peer = FakePeer(1, {0})
    p.add_peer(peer)
    first = p.pick(peer)
    second = p.pick(peer)
    assert (first, second) == (Block(0, 0), Block(0, 16_384))
    _, cancel = collect_cancel()
    assert p.completed(first, cancel) is False
    assert p.completed(second, cancel) is True


def test_endgame_duplicates_request_to_other_peer():
    p = Picker(2, 16_384)
    p.change_picker(True)
    a = FakePeer(1, {0})
    b = FakePeer(2, {0})
    assert p.pick(a) == Block(0, 0)
    assert p.pick(b) == Block(0, 0)
    assert p.pick(a) is None
    cancelled, cancel = collect_cancel()
    assert p.completed(Block(0, 0), cancel) is True
    assert cancelled == [1, 2]


def test_completed_unrequested_block_raises():
    p = Picker(2, 16_384)
    _, cancel = collect_cancel()
    with pytest.raises(KeyError):
        p.completed(Block(0, 0), cancel)


def test_have_block_tracks_downloads():
    p = Picker(2, 16_384)
    p.change_picker(True)
    peer = FakePeer(1, {0})
    block = p.pick(peer)
    assert p.have_block(block) is False
    _, cancel = collect_cancel()
    p.completed(block, cancel)
    assert p.have_block(block) is True


def test_remove_peer_drops_its_requests():
    p = Picker(2, 16_384)
    p.change_picker(True)
    a = FakePeer(1, {0})
    b = FakePeer(2, {0})
    assert p.pick(a) == Block(0, 0)
    p.remove_peer(a)
    assert p.pick(b) == Block(0, 0)
    cancelled, cancel = collect_cancel()
    p.completed(Block(0, 0), cancel)
    assert cancelled == [2]


def test_seeder_counting():
    p = Picker(2, 16_384)
    seeder = FakePeer(1, {0, 1})
    p.add_peer(seeder)
    assert p.seeders == 1
    p.remove_peer(seeder)
    assert p.seeders == 0


def test_stalled_request_is_reassigned():
    clock = FakeClock()
    p = Picker(2, 16_384, clock=clock)
    p.change_picker(True)
    a = FakePeer(1, {0})
    b = FakePeer(2, {0})
    assert p.pick(a) == Block(0, 0)
    clock.now += 9.5
    assert p.tick() == 0
    clock.now += 0.5
    assert p.tick() == 1
    assert p.tick() == 0
    assert p.pick(b) == Block(0, 0)
    assert p.tick() == 0
    cancelled, cancel = collect_cancel()
    p.completed(Block(0, 0), cancel)
    assert cancelled == [1, 2]


def test_high_priority_times_out_sooner():
    clock = FakeClock()
    p = Picker(1, 16_384, file_priorities=[5], clock=clock)
    peer = FakePeer(1, {0})
    p.change_picker(True)
    p.apply_priorities()
    assert p.pick(peer) == Block(0, 0)
    clock.now += 8
    assert p.tick() == 1


def test_zero_priority_pieces_are_skipped_rarest():
    p = Picker(2, 16_384, file_priorities=[0, 3], piece_files=[(0,), (1,)])
    peer = FakePeer(1, {0, 1})
    p.add_peer(peer)
    assert p.pick(peer) == Block(1, 0)


def test_zero_priority_pieces_are_skipped_sequential():
    p = Picker(2, 16_384, file_priorities=[0, 3], piece_files=[(0,), (1,)])
    p.change_picker(True)
    p.apply_priorities()
    peer = FakePeer(1, {0, 1})
    assert p.pick(peer) == Block(1, 0)
    assert p.pick(peer) is None


def test_sequential_prefers_higher_priority():
    p = Picker(2, 16_384, file_priorities=[3, 5], piece_files=[(0,), (1,)])
    p.change_picker(True)
    p.apply_priorities()
    peer = FakePeer(1, {0, 1})
    assert p.pick(peer) == Block(1, 0)
    assert p.pick(peer) == Block(0, 0)


def test_set_priorities_updates_piece_priorities():
    p = Picker(3, 16_384, piece_files=[(0,), (0, 1), (1,)])
    assert p.priorities == [3, 3, 3]
    p.set_priorities([1, 4])
    assert p.priorities == [1, 4, 4]


def test_done_then_invalidate_allows_repick():
    p = Picker(2, 16_384)
    p.change_picker(True)
    peer = FakePeer(1, {0, 1})
    block = p.pick(peer)
    p.done()
    assert p.have_block(block) is True
    p.invalidate_piece(0)
    assert p.pick(peer) == Block(0, 0)


def test_complete_torrent_picks_nothing():
    p = Picker(2, 16_384, have={0, 1})
    peer = FakePeer(1, {0, 1})
    assert p.pick(peer) is None


def test_piece_priorities_takes_max_of_files():
    assert piece_priorities([1, 5], [[0], [0, 1], [1]]) == [1, 5, 5]


def test_piece_priorities_requires_locations():
    with pytest.raises(ValueError):
        piece_priorities([3], [[0], []])