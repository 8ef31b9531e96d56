"""File preallocation helpers."""

import errno
import os

_UNSUPPORTED = frozenset(
    code
    for code in (
        getattr(errno, "EOPNOTSUPP", None),
        getattr(errno, "ENOTSUP", None),
        getattr(errno, "ENOSYS", None),
    )
    if code is not None
)


def is_sparse(f):
    """True when the file occupies fewer bytes on disk than its length."""
    stat = os.fstat(f.fileno())
    return stat.st_blocks * stat.st_blksize < stat.st_size


def fallocate(f, length):
    """Reserve ``length`` bytes for ``f``.

    Returns True if space was really allocated, False if the file was only
    resized because the platform or filesystem cannot preallocate.
    """
    while True:
        allocate = getattr(os, "posix_fallocate", None)
        if allocate is None:
            f.truncate(length)
            return False
        try:
            allocate(f.fileno(), 0, length)
            return True
        except InterruptedError:
            continue
        except OSError as exc:
            if exc.errno in _UNSUPPORTED:
                f.truncate(length)
                return False
            if exc.errno == errno.ENOSPC:
                raise OSError(errno.ENOSPC, "Out of disk space!") from exc
            raise