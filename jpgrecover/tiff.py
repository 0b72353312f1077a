"""
TIFF / CR2 Directory Walker.

Entered with the stream positioned right after a byte-order mark ("II" or
"MM"). A TIFF file carries no length field, so its extent is computed from
its Image File Directories before a single byte is written:

    II|MM  42  → IFD0 offset
    IFD:   entry count, count × (tag, type, count, value/offset), next IFD offset

The extent is the larger of
  (a) the end of the furthest entry data block, and
  (b) the end of the strip with the highest offset (STRIP_OFFSETS /
      STRIP_BYTE_COUNTS).

All offsets are relative to the byte-order mark, not to the stream. CR2 raw
files are structurally TIFF and carry several IFDs, each with its own strips;
the last strip tags seen win.
"""

import struct
import logging
from dataclasses import dataclass, field
from typing import Optional

from .materialize import dump_file
from .signatures import TIFF_EXTENSION, DEFAULT_PREFIX, output_filename
from .stream_reader import StreamReader, TruncatedStreamError

logger = logging.getLogger(__name__)

TIFF_MAGIC = 42

TAG_STRIP_OFFSETS = 273
TAG_STRIP_BYTE_COUNTS = 279

TYPE_LONG = 4

# Element size per TIFF field type
TYPE_SIZES = {
    1: 1,   # BYTE
    2: 1,   # ASCII
    3: 2,   # SHORT
    4: 4,   # LONG
    5: 8,   # RATIONAL (= 2 LONGs)
}

# Strip arrays are read in blocks of this many LONGs
_STRIP_BLOCK = 4096


class MalformedTiffError(ValueError):
    """The directory structure cannot describe a usable TIFF file."""


def type_size(type_code: int) -> int:
    """Return the size of one element of `type_code`, in bytes (0 if unknown)."""
    size = TYPE_SIZES.get(type_code)
    if size is None:
        logger.warning(
            "  ! Warning, unrecognized TIFF entry type: %d, assuming size of zero.",
            type_code,
        )
        logger.warning("  ! The recovered image may be damaged.")
        return 0
    return size


@dataclass
class IfdEntry:
    tag: int
    type: int
    count: int
    offset: int     # value or offset to the data block

    @property
    def block_end(self) -> int:
        return self.offset + self.count * type_size(self.type)


@dataclass
class TiffLayout:
    """Everything the directory walk learned about one TIFF candidate."""
    file_start: int                 # stream position of the byte-order mark
    big_endian: bool
    directories: list[int] = field(default_factory=list)   # IFD offsets walked
    entries_end: int = 0            # furthest end of any entry data block
    strip_offsets: Optional[int] = None
    strip_lengths: Optional[int] = None
    strip_count: int = 0
    strip_end: int = 0

    @property
    def size(self) -> int:
        return max(self.entries_end, self.strip_end)


def read_tiff_layout(reader: StreamReader, big_endian: bool) -> Optional[TiffLayout]:
    """
    Walk the IFD chain and compute the file extent. Writes nothing.

    Returns None when the candidate is rejected: wrong magic, non-LONG strip
    tags, missing strip metadata, a looping chain, or a structure that runs
    past the end of the stream.
    """
    try:
        magic = reader.read_short(big_endian)
    except TruncatedStreamError:
        return None
    if magic != TIFF_MAGIC:
        logger.debug("TIFF magic mismatch (%d), skipping.", magic)
        return None

    layout = TiffLayout(file_start=reader.tell() - 4, big_endian=big_endian)
    logger.info(
        "Correct TIFF file header recognized at offset %d... reading on.",
        layout.file_start,
    )

    try:
        _walk_directories(reader, layout)
        _check_strips(layout)
        layout.strip_end = _last_strip_end(reader, layout)
    except MalformedTiffError as e:
        logger.info("-> %s Skipping.", e)
        return None
    except TruncatedStreamError:
        logger.info("-> premature EOF inside the TIFF structure. Skipping.")
        return None

    logger.info("  * Strip data ends at the offset %d.", layout.strip_end)
    return layout


def recover_tiff(
    reader: StreamReader,
    index: int,
    big_endian: bool,
    prefix: str = DEFAULT_PREFIX,
) -> int:
    """
    Try to recover a TIFF/CR2 file from the current position in the stream.

    Returns the next index if a file was saved, otherwise `index`.
    """
    layout = read_tiff_layout(reader, big_endian)
    if layout is None:
        return index

    fname = output_filename(prefix, index, TIFF_EXTENSION)
    logger.info(
        "-> The TIFF file appears correct, dumping %d bytes as %s...",
        layout.size, fname,
    )
    reader.seek(layout.file_start)
    written = dump_file(reader, fname, layout.size)
    logger.info("-> saved successfully as %s (%d bytes).", fname, written)
    return index + 1


def _walk_directories(reader: StreamReader, layout: TiffLayout):
    big_endian = layout.big_endian
    while True:
        ifd = reader.read_long(big_endian)
        if ifd == 0:
            return
        if ifd in layout.directories:
            raise MalformedTiffError(
                f"IF directory chain loops back to offset {ifd}."
            )
        layout.directories.append(ifd)

        reader.seek(layout.file_start + ifd)
        entry_count = reader.read_short(big_endian)
        logger.info("  * IF directory at offset %d, %d entries.", ifd, entry_count)

        for _ in range(entry_count):
            entry = IfdEntry(
                tag=reader.read_short(big_endian),
                type=reader.read_short(big_endian),
                count=reader.read_long(big_endian),
                offset=reader.read_long(big_endian),
            )
            # A data block may be the last thing in a TIFF file.
            layout.entries_end = max(layout.entries_end, entry.block_end)

            if entry.tag == TAG_STRIP_OFFSETS:
                _check_strip_entry(entry, "STRIP_OFFSETS")
                layout.strip_offsets = entry.offset
                _merge_strip_count(layout, entry.count)
            elif entry.tag == TAG_STRIP_BYTE_COUNTS:
                _check_strip_entry(entry, "STRIP_LENGTHS")
                layout.strip_lengths = entry.offset
                _merge_strip_count(layout, entry.count)


def _check_strip_entry(entry: IfdEntry, name: str):
    if entry.type != TYPE_LONG:
        raise MalformedTiffError(f"{name} are not LONGs.")


def _merge_strip_count(layout: TiffLayout, count: int):
    # On disagreement the smaller count wins; the file may come out short.
    if layout.strip_count and layout.strip_count != count:
        logger.warning(
            "  ! Warning: STRIP_OFFSETS has different count of elements "
            "than STRIP_LENGTHS (%d vs %d).", layout.strip_count, count,
        )
        logger.warning("  !          The resulting file may be unusable.")
        layout.strip_count = min(layout.strip_count, count)
    else:
        layout.strip_count = count


def _check_strips(layout: TiffLayout):
    if (layout.strip_offsets is None or layout.strip_lengths is None
            or not layout.strip_count):
        raise MalformedTiffError(
            "Strip offsets/lengths/count not present, "
            "this file would be unusable."
        )


def _last_strip_end(reader: StreamReader, layout: TiffLayout) -> int:
    """End of the strip with the highest offset, relative to the file start."""
    if layout.strip_count == 1:
        # A single strip stores the values themselves, not array offsets.
        return layout.strip_offsets + layout.strip_lengths

    fmt = ">" if layout.big_endian else "<"
    highest_offset = 0
    highest_index = 0
    reader.seek(layout.file_start + layout.strip_offsets)
    done = 0
    while done < layout.strip_count:
        n = min(_STRIP_BLOCK, layout.strip_count - done)
        block = reader.read_exact(4 * n)
        for i, (offset,) in enumerate(struct.iter_unpack(fmt + "I", block)):
            if offset > highest_offset:
                highest_offset = offset
                highest_index = done + i
        done += n

    reader.seek(layout.file_start + layout.strip_lengths + 4 * highest_index)
    return highest_offset + reader.read_long(layout.big_endian)
