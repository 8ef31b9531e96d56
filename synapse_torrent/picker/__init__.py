"""Piece picking: rarest-first, sequential by priority, and block-level picking."""