"""
JPEG Segment Extractor.

Entered with the stream positioned right after an FF D8 (SOI) pair. Walks
the marker segments, copying each one verbatim, and on SOS (FF DA) copies the
entropy-coded data until FF D9 (EOI):

    FF D8 | FF E0 len body | FF DB len body | ... | FF DA len body | scan data ... FF D9

Outcome is reported only through the returned index:
  • index + 1 : file saved as <prefix>NNNNN.jpg
  • index     : no file (bad first marker), or a failed attempt whose partial
                file stays on disk and is overwritten by the next success.
"""

import logging

from .materialize import open_output
from .signatures import SIG_JPEG, DEFAULT_PREFIX, output_filename
from .stream_reader import StreamReader, TruncatedStreamError

logger = logging.getLogger(__name__)

# Maximum size of the SOS..EOI block, in bytes.
MAX_SCAN_DATA_SIZE = 8 * 1024 * 1024

# Scan data is copied in blocks of this size while searching for EOI.
SCAN_COPY_CHUNK = 64 * 1024

MARKER_APP0 = 0xE0
MARKER_APP1 = 0xE1
MARKER_SOS = 0xDA
EOI = b"\xFF\xD9"


def recover_jpeg(
    reader: StreamReader,
    index: int,
    prefix: str = DEFAULT_PREFIX,
    require_app_marker: bool = True,
    max_scan_size: int = MAX_SCAN_DATA_SIZE,
) -> int:
    """
    Try to recover a JPEG file from the current position in the stream.

    Args:
        reader:             Input positioned just after FF D8.
        index:              Index used to build the output file name.
        prefix:             Output name prefix.
        require_app_marker: Demand APP0/APP1 as the first marker. Raw sensor
                            dumps are full of stray FF D8 pairs; without this
                            check each one would create an output file.
        max_scan_size:      Cap on the entropy-coded data, in bytes.

    Returns:
        The next index if a file was saved, otherwise `index`.
    """
    try:
        intro = reader.read_byte()
        if intro != 0xFF:
            logger.debug("-> no marker after SOI (%02X), not a JPEG.", intro)
            return index
        marker = reader.read_byte()
    except TruncatedStreamError:
        logger.info("-> premature EOF.")
        return index

    if require_app_marker and marker not in (MARKER_APP0, MARKER_APP1):
        logger.debug("-> first marker %02X is not APP0/APP1, skipping.", marker)
        return index

    fname = output_filename(prefix, index, SIG_JPEG.extension)
    logger.info("JPEG image at offset %d, recovering as %s.", reader.tell() - 4, fname)
    with open_output(fname) as out:
        out.write(SIG_JPEG.header)
        saved = _copy_segments(reader, out, marker, max_scan_size)

    if not saved:
        return index

    logger.info("-> saved successfully as %s.", fname)
    return index + 1


def _copy_segments(reader: StreamReader, out, marker: int, max_scan_size: int) -> bool:
    """Copy segments starting with the already-read `marker`. True once EOI is copied."""
    while True:
        out.write(bytes((0xFF, marker)))

        length_bytes = reader.read(2)
        out.write(length_bytes)
        if len(length_bytes) < 2:
            logger.info("-> premature EOF.")
            return False
        length = (length_bytes[0] << 8) | length_bytes[1]
        if length < 2:
            # The length field counts itself; anything smaller is garbage.
            logger.info("-> quitting on invalid segment length %d.", length)
            return False

        body = reader.read(length - 2)
        out.write(body)
        if len(body) < length - 2:
            logger.info("-> premature EOF.")
            return False

        # length + the 2-byte marker
        logger.info("  * segment %02X, length %d", marker, length + 2)

        if marker == MARKER_SOS:
            return _copy_scan_data(reader, out, max_scan_size)

        intro = reader.read(1)
        if not intro:
            logger.info("-> premature EOF.")
            return False
        if intro[0] != 0xFF:
            logger.info("-> quitting on invalid marker.")
            return False
        next_marker = reader.read(1)
        if not next_marker:
            logger.info("-> premature EOF.")
            return False
        marker = next_marker[0]


def _copy_scan_data(reader: StreamReader, out, max_scan_size: int) -> bool:
    """
    Copy entropy-coded data up to and including FF D9.

    Equivalent to copying byte by byte while tracking the last two bytes:
    the copy succeeds only if the D9 of the EOI is among the first
    `max_scan_size` bytes. Otherwise max_scan_size + 1 bytes end up in the
    output and the attempt fails.
    """
    count = 0
    last = 0   # previous byte; the tracked window starts at zero
    while True:
        pos = reader.tell()
        chunk = reader.read(min(SCAN_COPY_CHUNK, max_scan_size + 1 - count))
        if not chunk:
            logger.info("  * Scan data: %d bytes.", count)
            logger.info("-> premature EOF.")
            return False

        if last == 0xFF and chunk[0] == EOI[1]:
            end = 1
        else:
            hit = chunk.find(EOI)
            end = hit + 2 if hit >= 0 else -1

        if end >= 0:
            out.write(chunk[:end])
            count += end
            reader.seek(pos + end)
        else:
            out.write(chunk)
            count += len(chunk)
            last = chunk[-1]

        if count > max_scan_size:
            logger.info(
                "-> Refusing to dump more than %d kB.", max_scan_size // 1024,
            )
            return False
        if end >= 0:
            logger.info("  * Scan data: %d bytes.", count)
            return True
