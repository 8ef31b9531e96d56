"""Block picking for a torrent download.

The picker chooses which 16 KiB block to request from which peer. It starts
in rarest-first mode and can be switched to sequential mode. It re-requests
blocks from other peers when a request stalls, and spreads the last
outstanding blocks over several peers.

A peer passed to the picker exposes ``id``, ``rank``, the set of pieces it
has as ``pieces`` and a mutable list ``piece_cache``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from itertools import islice

from .rarest import RarestPicker
from .sequential import SequentialPicker

log = logging.getLogger(__name__)

BLOCK_SIZE = 16_384
MAX_DUP_REQS = 3
MAX_DL_REREQ = 150
REQ_TIMEOUT = 10
DEFAULT_PRIORITY = 3


@dataclass(frozen=True)
class Block:
    """A block of a piece, addressed by piece index and byte offset."""

    index: int
    offset: int


@dataclass
class _Request:
    """An outstanding block request and the peers it was sent to."""

    peers: list
    rank: int
    requested_at: float

    def has_peer(self, peer_id):
        return peer_id in self.peers

    def rereq(self, peer_id, rank, now):
        self.rank = rank
        self.peers.append(peer_id)
        self.requested_at = now

    def force_rereq(self, peer_id, rank, now):
        if len(self.peers) < MAX_DUP_REQS:
            self.rereq(peer_id, rank, now)
        else:
            self.peers[0] = peer_id
            self.requested_at = now
            self.rank = rank

    def drop_peer(self, peer_id):
        if peer_id in self.peers:
            idx = self.peers.index(peer_id)
            self.peers[idx] = self.peers[-1]
            self.peers.pop()


def piece_priorities(file_priorities, piece_files):
    """Priority of every piece: the highest priority among the files it covers."""
    result = []
    for files in piece_files:
        files = list(files)
        if not files:
            raise ValueError("Piece must have locations!")
        result.append(max(file_priorities[f] for f in files))
    return result


def _ceil_blocks(length):
    return -(-length // BLOCK_SIZE)


class Picker:
    """Selects blocks to request from peers.

    ``piece_files`` lists, for every piece, the indices of the files it
    overlaps; by default every piece lies in file 0. ``file_priorities``
    gives a priority from 0 (skip) to 5 (highest) for each file.
    """

    def __init__(self, num_pieces, piece_len, last_piece_len=None, have=(),
                 file_priorities=None, piece_files=None, clock=time.monotonic):
        if piece_files is None:
            piece_files = [(0,)] * num_pieces
        self._piece_files = [tuple(files) for files in piece_files]
        if len(self._piece_files) != num_pieces:
            raise ValueError("one file list is needed per piece")
        if file_priorities is None:
            num_files = 1 + max((f for files in self._piece_files for f in files), default=0)
            file_priorities = [DEFAULT_PRIORITY] * num_files

        self._num_pieces = num_pieces
        self._clock = clock
        self._scale = piece_len // BLOCK_SIZE
        self._last_piece = max(num_pieces - 1, 0)
        if last_piece_len is None:
            last_piece_len = piece_len
        self._last_piece_scale = _ceil_blocks(last_piece_len)
        self.seeders = 0

        # Pieces fully picked (or downloaded already).
        self._picked = set(have)
        complete = len(self._picked) >= num_pieces
        self._downloading = {}
        self._requested = [] if complete else [0] * num_pieces
        self._received = [] if complete else [0] * num_pieces
        # Blocks whose requests stalled, in insertion order.
        self._stalled = {}
        self._picker = RarestPicker(num_pieces, self._picked)
        self.priorities = [DEFAULT_PRIORITY] * num_pieces
        self.set_priorities(file_priorities)

    def is_sequential(self):
        """True if pieces are picked in order."""
        return isinstance(self._picker, SequentialPicker)

    def done(self):
        """Drop all download state once the torrent is complete."""
        self._downloading = {}
        self._requested = []
        self._received = []
        self._stalled = {}

    def tick(self):
        """Mark requests that have waited too long as stalled; return how many."""
        now = self._clock()
        expired = 0
        for block, req in self._downloading.items():
            deadline = REQ_TIMEOUT + (DEFAULT_PRIORITY - self.priorities[block.index])
            if now - req.requested_at >= deadline and block not in self._stalled:
                expired += 1
                self._stalled[block] = None
        if expired:
            log.debug("Expired %d chunks!", expired)
        if self._downloading:
            log.debug("Picked: %d/%d, Downloading: %d",
                      len(self._picked), self._num_pieces, len(self._downloading))
        return expired

    def _is_full(self, piece, amount):
        return amount == self._scale or (
            piece == self._last_piece and amount == self._last_piece_scale
        )

    def pick(self, peer):
        """The next block to request from ``peer``, or None."""
        for block in self._stalled:
            req = self._downloading.get(block)
            if block.index in peer.pieces and req is not None and not req.has_peer(peer.id):
                del self._stalled[block]
                req.force_rereq(peer.id, peer.rank, self._clock())
                return block

        piece = self._picker.pick(peer)
        if piece is not None:
            return self._pick_piece(piece, peer.id, peer.rank)
        return self._pick_dl(peer)

    def _pick_piece(self, piece, peer_id, rank):
        self._requested[piece] += 1
        amount = self._requested[piece]
        if self._is_full(piece, amount):
            self._picker.completed(piece)
            self._picked.add(piece)
        block = Block(piece, (amount - 1) * BLOCK_SIZE)
        self._downloading[block] = _Request([peer_id], rank, self._clock())
        return block

    def _pick_dl(self, peer):
        candidates = (
            (block, req)
            for block, req in self._downloading.items()
            if len(req.peers) < MAX_DUP_REQS and not req.has_peer(peer.id)
        )
        best = None
        for block, req in islice(candidates, MAX_DL_REREQ):
            if best is None or len(req.peers) < len(best[1].peers):
                best = (block, req)
        if best is None:
            return None
        block, req = best
        req.rereq(peer.id, peer.rank, self._clock())
        return block

    def completed(self, block, cancel):
        """Record a received block and return True if its piece is now whole.

        ``cancel`` is called with the id of every peer the block was
        requested from. Raises KeyError if the block was never requested.
        """
        self._stalled.pop(block, None)
        req = self._downloading.pop(block, None)
        if req is None:
            raise KeyError(block)
        for peer_id in req.peers:
            cancel(peer_id)
        self._received[block.index] += 1
        return self._is_full(block.index, self._received[block.index])

    def have_block(self, block):
        """True unless ``block`` is still being downloaded."""
        return block not in self._downloading

    def invalidate_piece(self, idx):
        """Make piece ``idx`` downloadable again, e.g. after a failed hash check."""
        self._picker.incomplete(idx)
        if not self._requested:
            self._requested = [0] * len(self.priorities)
            self._received = [0] * len(self.priorities)
        self._requested[idx] = 0
        self._received[idx] = 0
        self._picked.discard(idx)

    def piece_available(self, idx):
        """A connected peer announced that it has piece ``idx``."""
        if isinstance(self._picker, RarestPicker):
            self._picker.piece_available(idx)

    def _is_seeder(self, peer):
        return all(i in peer.pieces for i in range(self._num_pieces))

    def add_peer(self, peer):
        """Account for a newly connected peer."""
        if self._is_seeder(peer):
            self.seeders += 1
        elif isinstance(self._picker, RarestPicker):
            self._picker.add_peer(peer)

    def remove_peer(self, peer):
        """Forget a disconnected peer and its outstanding requests."""
        # A peer may have become a seeder after joining as a leecher.
        if self._is_seeder(peer) and self.seeders > 0:
            self.seeders -= 1
        elif isinstance(self._picker, RarestPicker):
            self._picker.remove_peer(peer)
        for req in self._downloading.values():
            req.drop_peer(peer.id)

    def change_picker(self, sequential):
        """Switch between sequential and rarest-first picking.

        Switching back to rarest first needs peers to be added again.
        """
        if sequential:
            self._picker = SequentialPicker(self._num_pieces, self._picked)
        else:
            self._picker = RarestPicker(self._num_pieces, self._picked)

    def set_priorities(self, priorities):
        """Apply new per-file priorities."""
        self.unapply_priorities()
        self.priorities = piece_priorities(priorities, self._piece_files)
        self.apply_priorities()

    def apply_priorities(self):
        """Weight the current picker by the piece priorities."""
        if self.is_sequential():
            self._picker = SequentialPicker.with_pri(
                self._num_pieces, self._picked, self.priorities
            )
            return
        for piece, pri in enumerate(self.priorities):
            for _ in range(pri):
                self._picker.piece_unavailable(piece)
            if pri == 0 and piece not in self._picked:
                self._picker.completed(piece)

    def unapply_priorities(self):
        """Undo the weighting done by ``apply_priorities``."""
        if self.is_sequential():
            return
        for piece, pri in enumerate(self.priorities):
            for _ in range(pri):
                self._picker.piece_available(piece)
            if pri == 0 and piece not in self._picked:
                self._picker.incomplete(piece)