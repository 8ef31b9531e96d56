"""Bencode encoding and decoding.

Integers decode to ``int``, byte strings to ``bytes``, lists to ``list`` and
dictionaries to ``dict`` with ``str`` keys.
"""

import re

_INT_RE = re.compile(rb"-?(?:0|[1-9][0-9]*)")
_LEN_RE = re.compile(rb"0|[1-9][0-9]*")
_MAX_DEPTH = 512


class BencodeError(ValueError):
    """The data is not valid bencode."""


def encode(value):
    """Encode ``value`` to bencoded bytes.

    Accepts ints, bytes-like objects, strings (encoded as UTF-8), lists,
    tuples and dicts with ``str`` or ``bytes`` keys.
    """
    out = []
    _encode(value, out)
    return b"".join(out)


def _key_bytes(key):
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, (bytes, bytearray)):
        return bytes(key)
    raise TypeError(f"dictionary keys must be str or bytes, not {type(key).__name__}")


def _encode(value, out):
    if isinstance(value, bool):
        raise TypeError("cannot bencode a bool")
    if isinstance(value, int):
        out.append(b"i%de" % value)
    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        out.append(b"%d:" % len(raw))
        out.append(raw)
    elif isinstance(value, str):
        _encode(value.encode("utf-8"), out)
    elif isinstance(value, (list, tuple)):
        out.append(b"l")
        for item in value:
            _encode(item, out)
        out.append(b"e")
    elif isinstance(value, dict):
        out.append(b"d")
        for key, item in sorted(
            ((_key_bytes(k), v) for k, v in value.items()), key=lambda kv: kv[0]
        ):
            _encode(key, out)
            _encode(item, out)
        out.append(b"e")
    else:
        raise TypeError(f"cannot bencode {type(value).__name__}")


def decode(data):
    """Decode one bencoded value that makes up all of ``data``."""
    buf = bytes(data)
    value, pos = _decode(buf, 0, 0)
    if pos != len(buf):
        raise BencodeError("trailing data after bencoded value")
    return value


def _decode_string(buf, pos):
    colon = buf.find(b":", pos)
    if colon < 0 or not _LEN_RE.fullmatch(buf, pos, colon):
        raise BencodeError(f"invalid string length at offset {pos}")
    start = colon + 1
    end = start + int(buf[pos:colon])
    if end > len(buf):
        raise BencodeError("string runs past end of data")
    return buf[start:end], end


def _decode(buf, pos, depth):
    if depth > _MAX_DEPTH:
        raise BencodeError("bencoded data nested too deeply")
    if pos >= len(buf):
        raise BencodeError("unexpected end of data")
    lead = buf[pos:pos + 1]
    if lead == b"i":
        end = buf.find(b"e", pos + 1)
        if end < 0 or not _INT_RE.fullmatch(buf, pos + 1, end) or buf[pos + 1:end] == b"-0":
            raise BencodeError(f"invalid integer at offset {pos}")
        return int(buf[pos + 1:end]), end + 1
    if lead == b"l":
        items = []
        pos += 1
        while buf[pos:pos + 1] != b"e":
            item, pos = _decode(buf, pos, depth + 1)
            items.append(item)
        return items, pos + 1
    if lead == b"d":
        result = {}
        pos += 1
        while buf[pos:pos + 1] != b"e":
            if pos >= len(buf):
                raise BencodeError("unexpected end of data")
            raw_key, pos = _decode_string(buf, pos)
            try:
                key = raw_key.decode("utf-8")
            except UnicodeDecodeError:
                raise BencodeError("dictionary key is not UTF-8") from None
            result[key], pos = _decode(buf, pos, depth + 1)
        return result, pos + 1
    if lead.isdigit():
        return _decode_string(buf, pos)
    raise BencodeError(f"unexpected byte {lead!r} at offset {pos}")