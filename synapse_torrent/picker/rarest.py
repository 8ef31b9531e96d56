"""Rarest-first piece picking.

Pieces are kept in one list ordered by availability, with a table of
boundaries between availability levels, so that changing one piece's
availability is a single swap.
"""

from dataclasses import dataclass

MAX_PC_SIZE = 50
PIECE_COMPLETE_DEC = 100
_INITIAL_AVAILABILITY_STEPS = 6


@dataclass
class _PieceInfo:
    idx: int
    availability: int = 0
    complete: bool = False


class RarestPicker:
    """Picks the rarest piece a peer has.

    ``have`` holds the indices already downloaded. A peer exposes the pieces
    it has as ``peer.pieces`` and a mutable list ``peer.piece_cache`` the
    picker uses to remember its candidate pieces.
    """

    def __init__(self, num_pieces, have=()):
        have = set(have)
        self._pieces = list(range(num_pieces))
        self._info = [_PieceInfo(i) for i in range(num_pieces)]
        self._priorities = [num_pieces]
        # Every piece starts at an even availability above zero so an initial
        # pick never underflows; odd means picked, even means unpicked.
        for piece in reversed(range(num_pieces)):
            for _ in range(_INITIAL_AVAILABILITY_STEPS):
                self.piece_available(piece)
            if piece in have:
                self.completed(piece)

    def add_peer(self, peer):
        """Count the pieces of a newly connected peer."""
        for piece in sorted(peer.pieces):
            self.piece_available(piece)

    def remove_peer(self, peer):
        """Forget the pieces of a disconnected peer."""
        for piece in sorted(peer.pieces):
            self.piece_unavailable(piece)

    def piece_available(self, piece):
        """One more peer has ``piece``."""
        self.dec_pri(piece)
        self.dec_pri(piece)

    def piece_unavailable(self, piece):
        """One fewer peer has ``piece``."""
        self.inc_pri(piece)
        self.inc_pri(piece)

    def dec_pri(self, piece):
        """Lower the picking priority of ``piece`` by one step."""
        info = self._info[piece]
        self._priorities[info.availability] -= 1
        info.availability += 1
        if len(self._priorities) == info.availability:
            self._priorities.append(len(self._pieces))
        self._swap(info.idx, self._priorities[info.availability - 1])

    def inc_pri(self, piece):
        """Raise the picking priority of ``piece`` by one step."""
        info = self._info[piece]
        if info.availability < 2:
            raise ValueError(f"availability of piece {piece} cannot go lower")
        info.availability -= 1
        self._priorities[info.availability] += 1
        self._swap(info.idx, self._priorities[info.availability - 1])

    def pick(self, peer):
        """The rarest incomplete piece the peer has, or None."""
        cache = peer.piece_cache
        while cache and self._info[cache[-1]].complete:
            cache.pop()

        if not cache:
            for piece in self._pieces:
                if piece in peer.pieces and not self._info[piece].complete:
                    cache.append(piece)
                if len(cache) >= MAX_PC_SIZE:
                    break
            cache.reverse()

        if not cache:
            return None
        piece = cache[-1]
        if self._info[piece].availability % 2 == 0:
            self.inc_pri(piece)
        return piece

    def incomplete(self, piece):
        """Make ``piece`` pickable again."""
        info = self._info[piece]
        if info.complete:
            info.complete = False
            for _ in range(PIECE_COMPLETE_DEC):
                self.inc_pri(piece)

    def completed(self, piece):
        """Stop ``piece`` from being picked."""
        info = self._info[piece]
        if not info.complete:
            info.complete = True
            # Pushing the piece far down the order keeps it out of the way.
            for _ in range(PIECE_COMPLETE_DEC):
                self.dec_pri(piece)

    def _swap(self, a, b):
        self._info[self._pieces[a]].idx = b
        self._info[self._pieces[b]].idx = a
        self._pieces[a], self._pieces[b] = self._pieces[b], self._pieces[a]