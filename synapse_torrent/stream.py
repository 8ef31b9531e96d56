"""Nonblocking TCP streams, optionally wrapped in TLS."""

import errno
import re
import socket
import ssl

_RECV_SIZE = 16 * 1024
_LABEL_RE = re.compile(r"[A-Za-z0-9_](?:[A-Za-z0-9_-]{0,61}[A-Za-z0-9_])?")
_CONNECT_PENDING = frozenset({0, errno.EINPROGRESS, errno.EWOULDBLOCK})


def _valid_dns_name(host):
    if not host or len(host) > 253 or not host.isascii():
        return False
    labels = host[:-1].split(".") if host.endswith(".") else host.split(".")
    return all(_LABEL_RE.fullmatch(label) for label in labels)


class SecureStream:
    """A nonblocking socket that speaks plain TCP, client TLS or server TLS.

    Reads and writes never block: when the socket has nothing to give,
    ``BlockingIOError`` is raised.
    """

    def __init__(self, sock, tls=None, server_side=False):
        sock.setblocking(False)
        self.sock = sock
        self._fd = sock.fileno()
        self._tls = tls
        self._server_side = server_side
        self._incoming = None
        self._outgoing = None
        if tls is not None:
            self._incoming, self._outgoing = tls
            self._tls = None
        self._handshaken = False
        self._eof = False
        self._out = bytearray()
        self._plain_out = bytearray()

    @classmethod
    def _client(cls, family, host):
        sock = socket.socket(family, socket.SOCK_STREAM)
        if host is None:
            return cls(sock)
        if not _valid_dns_name(host):
            sock.close()
            raise ValueError("invalid host string used")
        context = ssl.create_default_context()
        stream = cls(sock, (ssl.MemoryBIO(), ssl.MemoryBIO()))
        stream._tls = context.wrap_bio(
            stream._incoming, stream._outgoing, server_side=False, server_hostname=host
        )
        return stream

    @classmethod
    def new_v4(cls, host):
        """A fresh IPv4 stream; TLS with ``host`` as server name when host is given."""
        return cls._client(socket.AF_INET, host)

    @classmethod
    def new_v6(cls, host):
        """A fresh IPv6 stream; TLS with ``host`` as server name when host is given."""
        return cls._client(socket.AF_INET6, host)

    @classmethod
    def from_plain(cls, sock):
        """Wrap an existing socket without TLS."""
        return cls(sock)

    @classmethod
    def from_ssl(cls, sock, context):
        """Wrap an accepted socket as the server side of a TLS session."""
        stream = cls(sock, (ssl.MemoryBIO(), ssl.MemoryBIO()), server_side=True)
        stream._tls = context.wrap_bio(stream._incoming, stream._outgoing, server_side=True)
        return stream

    def connect(self, addr):
        """Start connecting to ``addr`` without waiting for it to finish."""
        if self._server_side:
            raise RuntimeError("server side TLS stream cannot connect")
        code = self.sock.connect_ex(addr)
        if code not in _CONNECT_PENDING:
            raise OSError(code, errno.errorcode.get(code, "connect failed"))

    def read(self, size):
        """Read up to ``size`` bytes; b"" means the peer closed the stream."""
        try:
            if self._tls is None:
                return self.sock.recv(size)
            return self._read_tls(size)
        except ConnectionAbortedError:
            return b""

    def write(self, data):
        """Write ``data`` and return how many bytes were accepted."""
        if self._tls is None:
            return self.sock.send(data)
        self._plain_out += data
        self._push_plaintext()
        try:
            self._complete_io()
        except BlockingIOError:
            pass
        self._push_plaintext()
        self._send_pending()
        return len(data)

    def flush(self):
        """Send any TLS records still held back."""
        if self._tls is not None:
            self._push_plaintext()
            self._send_pending()

    def fileno(self):
        """The descriptor of the underlying socket."""
        return self._fd

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.sock.close()

    def _read_tls(self, size):
        while True:
            data = self._tls_plaintext(size)
            if data is not None:
                return data
            if self._complete_io() == (0, 0):
                data = self._tls_plaintext(size)
                return b"" if data is None else data

    def _tls_plaintext(self, size):
        """Buffered plaintext, b"" at end of session, or None if there is none yet."""
        try:
            return self._tls.read(size)
        except ssl.SSLWantReadError:
            return None
        except (ssl.SSLZeroReturnError, ssl.SSLEOFError):
            return b""

    def _advance_handshake(self):
        if self._handshaken:
            return
        try:
            self._tls.do_handshake()
        except ssl.SSLWantReadError:
            return
        except (ssl.SSLEOFError, ssl.SSLZeroReturnError) as exc:
            raise ConnectionError("unexpected EOF during TLS handshake") from exc
        self._handshaken = True

    def _push_plaintext(self):
        if not self._handshaken or not self._plain_out:
            return
        try:
            written = self._tls.write(bytes(self._plain_out))
        except ssl.SSLWantReadError:
            return
        del self._plain_out[:written]

    def _send_pending(self):
        self._out += self._outgoing.read()
        sent = 0
        while self._out:
            try:
                count = self.sock.send(self._out)
            except BlockingIOError:
                break
            del self._out[:count]
            sent += count
        return sent

    def _complete_io(self):
        """Move TLS records between session and socket; return (read, written)."""
        until_handshaked = not self._handshaken
        received = sent = 0
        while True:
            self._advance_handshake()
            sent += self._send_pending()
            if not until_handshaked and sent:
                return received, sent
            if not self._eof:
                data = self.sock.recv(_RECV_SIZE)
                if data:
                    self._incoming.write(data)
                    received += len(data)
                else:
                    self._eof = True
                    self._incoming.write_eof()
            self._advance_handshake()
            if until_handshaked and self._handshaken:
                self._push_plaintext()
                sent += self._send_pending()
                return received, sent
            if not until_handshaked:
                return received, sent
            if self._eof:
                raise ConnectionError("unexpected EOF during TLS handshake")