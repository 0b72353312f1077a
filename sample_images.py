"""
Builders for the synthetic JPEG / TIFF images used by the test suite.
"""
import struct

# Scan data without FF bytes, so it never contains an EOI by accident.
DEFAULT_SCAN = bytes((i * 7 + 3) % 0xF0 for i in range(200))


def segment(marker: int, body: bytes) -> bytes:
    """FF <marker> <big-endian length incl. itself> <body>."""
    return bytes((0xFF, marker)) + struct.pack(">H", len(body) + 2) + body


def build_jpeg(scan_data: bytes = DEFAULT_SCAN, first_marker: int = 0xE0,
               eoi: bool = True) -> bytes:
    """A structurally valid baseline-looking JPEG: SOI APPn DQT SOS data EOI."""
    return (
        b"\xFF\xD8"
        + segment(first_marker, b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00")
        + segment(0xDB, b"\x00" + bytes(range(1, 65)))
        + segment(0xDA, b"\x01\x01\x00\x00\x3F\x00")
        + scan_data
        + (b"\xFF\xD9" if eoi else b"")
    )


def ifd_entry(tag: int, type_code: int, count: int, value: int,
              big_endian: bool = False) -> bytes:
    e = ">" if big_endian else "<"
    return struct.pack(e + "HHII", tag, type_code, count, value)


def build_ifd(entries, next_ifd: int = 0, big_endian: bool = False) -> bytes:
    """entries: iterable of (tag, type, count, value) tuples."""
    e = ">" if big_endian else "<"
    entries = list(entries)
    return (
        struct.pack(e + "H", len(entries))
        + b"".join(ifd_entry(*ent, big_endian=big_endian) for ent in entries)
        + struct.pack(e + "I", next_ifd)
    )


def build_tiff(strip_offsets, strip_lengths, big_endian: bool = False,
               extra_entries=(), size: int = 0,
               offsets_type: int = 4, lengths_type: int = 4) -> bytes:
    """
    A single-IFD TIFF: header, IFD at offset 8, strip arrays right after the
    IFD (when there is more than one strip), then zero fill up to `size`.
    """
    e = ">" if big_endian else "<"
    entries = list(extra_entries)
    n_off, n_len = len(strip_offsets), len(strip_lengths)
    arrays_at = 8 + 2 + 12 * (len(entries) + 2) + 4

    if n_off == 1 and n_len == 1:
        off_value, len_value = strip_offsets[0], strip_lengths[0]
        arrays = b""
    else:
        off_value = arrays_at
        len_value = arrays_at + 4 * n_off
        arrays = (struct.pack(f"{e}{n_off}I", *strip_offsets)
                  + struct.pack(f"{e}{n_len}I", *strip_lengths))

    entries += [
        (273, offsets_type, n_off, off_value),
        (279, lengths_type, n_len, len_value),
    ]
    header = (b"MM" if big_endian else b"II") + struct.pack(e + "HI", 42, 8)
    data = header + build_ifd(entries, big_endian=big_endian) + arrays
    return data.ljust(size, b"\x00")
