"""
File Materializer: create an output file and stream bytes into it.

The only fatal condition of the whole engine lives here: if an output file
cannot be created, OutputFileError is raised and nothing below the CLI
catches it.
"""

import os
import logging

from .stream_reader import StreamReader

logger = logging.getLogger(__name__)

# Bounded intermediate buffer for dump_file()
DUMP_CHUNK_SIZE = 512 * 1024


class OutputFileError(RuntimeError):
    """An output file could not be created."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not create {path}: {reason}")
        self.path = path
        self.reason = reason


def open_output(path: str):
    """
    Open `path` for binary writing, overwriting any existing file.

    A prefix may name a subdirectory (e.g. ``out/img_``); missing parent
    directories are created.
    """
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        return open(path, "wb")
    except OSError as e:
        raise OutputFileError(path, e.strerror or str(e)) from e


def dump_file(reader: StreamReader, path: str, size: int) -> int:
    """
    Copy `size` bytes from the reader's current position into a new file.

    Stops early, without error, when the input ends first: a partial dump of
    a truncated image is still useful. Returns the number of bytes written.
    """
    written = 0
    with open_output(path) as out:
        while written < size:
            chunk = reader.read(min(DUMP_CHUNK_SIZE, size - written))
            if not chunk:
                logger.info(
                    "  ! Input ended after %d of %d bytes, keeping partial file.",
                    written, size,
                )
                break
            out.write(chunk)
            written += len(chunk)
    return written
