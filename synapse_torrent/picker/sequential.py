"""Sequential piece picking: lowest index first within each priority level."""

from dataclasses import dataclass

_LEVELS = 6
_DEFAULT_PRIORITY = 3


@dataclass
class _Piece:
    pos: int
    complete: bool


class SequentialPicker:
    """Picks pieces in order, highest priority first.

    ``have`` is a collection of piece indices already downloaded. A peer passed
    to ``pick`` exposes the pieces it has as ``peer.pieces``.
    """

    def __init__(self, num_pieces, have=(), priorities=None):
        if priorities is None:
            priorities = [_DEFAULT_PRIORITY] * num_pieces
        elif len(priorities) != num_pieces:
            raise ValueError("one priority is needed per piece")
        have = set(have)
        buckets = [[] for _ in range(_LEVELS)]
        for piece, pri in enumerate(priorities):
            if not 0 <= pri < _LEVELS:
                raise ValueError(f"priority {pri} out of range")
            buckets[0 if piece in have else pri].append(piece)

        self._pieces = [_Piece(pos, True) for pos in buckets[0]]
        self._piece_idx = len(self._pieces)
        for level in reversed(range(1, _LEVELS)):
            self._pieces.extend(_Piece(pos, False) for pos in buckets[level])

    @classmethod
    def with_pri(cls, num_pieces, have, priorities):
        """A picker ordering pieces by per-piece priority (0 skips, 5 first)."""
        return cls(num_pieces, have, priorities)

    def pick(self, peer):
        """The next piece the peer can provide, or None."""
        return next(
            (p.pos for p in self._pieces[self._piece_idx:] if p.pos in peer.pieces), None
        )

    def completed(self, idx):
        """Mark piece ``idx`` as fully picked."""
        piece = next((p for p in self._pieces[self._piece_idx:] if p.pos == idx), None)
        if piece is not None:
            piece.complete = True
        self._piece_idx += sum(p.complete for p in self._pieces[self._piece_idx:])

    def incomplete(self, idx):
        """Mark piece ``idx`` as needing to be picked again."""
        found = next(
            ((i, p) for i, p in enumerate(self._pieces) if p.pos == idx), None
        )
        if found is not None:
            position, piece = found
            piece.complete = False
            self._piece_idx = position