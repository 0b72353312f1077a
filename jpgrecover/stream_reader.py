"""
Input Stream Reader: mmap-backed cursor over the raw input + integer reads.

APPROACH
────────
1. Memory-mapped I/O (mmap) when the handle is a regular file; the OS
   handles paging and seek/read never leave user space.
2. Fallback to the handle's own read()/seek() if mmap fails (pipes wrapped
   in BytesIO, block devices that refuse mapping, empty files).
3. The reader never opens or closes the underlying handle; the caller owns it.

All structural reads used by the extractors go through read_exact(), so a
short read surfaces as TruncatedStreamError instead of garbage values.
"""

import os
import mmap
import struct
import logging
from typing import Optional, BinaryIO

logger = logging.getLogger(__name__)

_SHORT = {True: struct.Struct(">H"), False: struct.Struct("<H")}
_LONG = {True: struct.Struct(">I"), False: struct.Struct("<I")}


class TruncatedStreamError(EOFError):
    """The input ended in the middle of a structure."""


def _stream_size(fd: BinaryIO) -> int:
    """Size of the file behind `fd`, or 0 when it cannot be determined."""
    try:
        return os.fstat(fd.fileno()).st_size
    except (OSError, ValueError, AttributeError):
        return 0


class StreamReader:
    """
    Seekable byte cursor over an open binary handle.

    Usage:
        with open(path, "rb") as fd:
            reader = StreamReader(fd)
            magic = reader.read_short(big_endian=False)
            ...
            reader.close()     # releases the mmap, leaves `fd` open
    """

    def __init__(self, fd: BinaryIO, use_mmap: bool = True):
        self._fd = fd
        self._size = _stream_size(fd)
        self._mmap: Optional[mmap.mmap] = None

        if use_mmap and self._size > 0:
            self._try_mmap()

    def _try_mmap(self):
        """Attempt to memory-map the input, starting at its current position."""
        try:
            start = self._fd.tell()
            self._mmap = mmap.mmap(
                self._fd.fileno(),
                0,  # Map entire file
                access=mmap.ACCESS_READ,
            )
            self._mmap.seek(start)
            logger.debug(
                "mmap enabled: %d bytes (%.1f MB)",
                self._size, self._size / (1024 ** 2),
            )
        except (OSError, ValueError, OverflowError) as e:
            logger.debug("mmap unavailable (%s), using buffered reads", e)
            self._mmap = None

    @property
    def is_mmap(self) -> bool:
        return self._mmap is not None

    @property
    def size(self) -> int:
        """Total input size in bytes (0 if unknown, e.g. for non-file streams)."""
        return self._size

    @property
    def _src(self):
        return self._mmap if self._mmap is not None else self._fd

    def tell(self) -> int:
        return self._src.tell()

    def seek(self, offset: int):
        """Move to the absolute position `offset`.

        Seeking past the end is allowed; subsequent reads return nothing.
        """
        if offset < 0:
            raise ValueError(f"negative seek position: {offset}")
        if self._mmap is not None and offset > len(self._mmap):
            # mmap refuses positions past its end; park the cursor at EOF.
            offset = len(self._mmap)
        self._src.seek(offset)

    def read(self, size: int) -> bytes:
        """Read up to `size` bytes. Returns b"" at end of stream."""
        if size <= 0:
            return b""
        return self._src.read(size)

    def read_exact(self, size: int) -> bytes:
        """Read exactly `size` bytes or raise TruncatedStreamError."""
        data = self.read(size)
        if len(data) != size:
            raise TruncatedStreamError(
                f"wanted {size} bytes at offset {self.tell() - len(data)}, "
                f"got {len(data)}"
            )
        return data

    def read_byte(self) -> int:
        """Read one byte as an int, raising TruncatedStreamError at EOF."""
        return self.read_exact(1)[0]

    def read_short(self, big_endian: bool) -> int:
        """Unsigned 16-bit integer in the given byte order."""
        return _SHORT[bool(big_endian)].unpack(self.read_exact(2))[0]

    def read_long(self, big_endian: bool) -> int:
        """Unsigned 32-bit integer, i.e. two shorts combined in the given byte order."""
        return _LONG[bool(big_endian)].unpack(self.read_exact(4))[0]

    def close(self):
        """Release mmap resources. The wrapped handle stays open."""
        if self._mmap is not None:
            try:
                self._mmap.close()
            except (OSError, ValueError) as e:
                logger.debug("mmap close failed: %s", e)
            self._mmap = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
