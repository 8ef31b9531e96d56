"""Minimal HTTP/1.1 request encoding for tracker announces."""

import string

_PLAIN_BYTES = frozenset((string.ascii_letters + string.digits + "-").encode("ascii"))


def _as_bytes(value):
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def encode_param(param):
    """Percent-encode every byte that is not an ASCII letter, digit or ``-``."""
    return "".join(
        chr(b) if b in _PLAIN_BYTES else f"%{b:02X}" for b in _as_bytes(param)
    ).encode("ascii")


class RequestBuilder:
    """Builds a request line with query parameters and headers."""

    def __init__(self, method, path, query=None):
        self.method = method
        self.path = path
        self.base_query = query
        self._pairs = []
        self._headers = []

    def query(self, name, value):
        """Add a query parameter; ``value`` is percent-encoded."""
        self._pairs.append((name, _as_bytes(value)))
        return self

    def query_opt(self, name, value):
        """Add a query parameter only when ``value`` is not None."""
        if value is not None:
            self.query(name, value)
        return self

    def header(self, name, value):
        """Add a header line."""
        self._headers.append((name, value))
        return self

    def encode(self):
        """Return the request head as bytes."""
        query = []
        if self.base_query is not None:
            query.append(self.base_query.encode("utf-8"))
        query.extend(name.encode("utf-8") + b"=" + encode_param(value) for name, value in self._pairs)

        out = [self.method.encode("utf-8"), b" ", self.path.encode("utf-8")]
        if query:
            out.append(b"?" + b"&".join(query))
        out.append(b" HTTP/1.1\r\n")
        for name, value in self._headers:
            out.append(f"{name}: {value}\r\n".encode("utf-8"))
        out.append(b"\r\n")
        return b"".join(out)