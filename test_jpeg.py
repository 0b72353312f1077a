"""
Tests for the JPEG segment extractor.

Every case positions the reader right after FF D8, the way the scanner does.
"""
import io
import logging

import pytest

from jpgrecover import jpeg
from jpgrecover.jpeg import recover_jpeg
from jpgrecover.stream_reader import StreamReader
from sample_images import build_jpeg, segment


def _reader_after_soi(data: bytes) -> StreamReader:
    assert data[:2] == b"\xFF\xD8"
    fd = io.BytesIO(data)
    fd.seek(2)
    return StreamReader(fd)


def test_minimal_scenario(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    scan = b"\x10\x20\x30\x40\x50"
    data = bytes.fromhex("FFD8 FFE0 0004 ABCD FFDA 0002") + scan + b"\xFF\xD9"
    prefix = str(tmp_path / "out")

    index = recover_jpeg(_reader_after_soi(data + b"trailing"), 0, prefix)

    assert index == 1
    assert (tmp_path / "out00000.jpg").read_bytes() == data
    assert "saved successfully as" in caplog.text
    assert "out00000.jpg" in caplog.text


def test_full_jpeg_is_byte_identical(tmp_path):
    data = build_jpeg()
    reader = _reader_after_soi(data + b"\x00" * 32)

    index = recover_jpeg(reader, 7, str(tmp_path / "img"))

    assert index == 8
    assert (tmp_path / "img00007.jpg").read_bytes() == data
    # The stream is left just past the EOI.
    assert reader.tell() == len(data)


def test_pillow_encoded_jpeg_is_byte_identical(tmp_path):
    Image = pytest.importorskip("PIL.Image")
    img = Image.new("RGB", (64, 48))
    img.putdata([(x * 4, y * 5, (x * y) % 256) for y in range(48) for x in range(64)])
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=90)
    data = buf.getvalue()

    index = recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "p"))

    assert index == 1
    assert (tmp_path / "p00000.jpg").read_bytes() == data


def test_no_marker_after_soi_creates_nothing(tmp_path):
    data = b"\xFF\xD8\x00\xE0\x00\x10" + b"\x00" * 32

    index = recover_jpeg(_reader_after_soi(data), 3, str(tmp_path / "x"))

    assert index == 3
    assert list(tmp_path.iterdir()) == []


def test_first_marker_must_be_app0_or_app1(tmp_path):
    data = build_jpeg(first_marker=0xC4)

    index = recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "x"))

    assert index == 0
    assert list(tmp_path.iterdir()) == []


def test_app1_first_marker_is_accepted(tmp_path):
    data = build_jpeg(first_marker=0xE1)
    assert recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "x")) == 1


def test_first_marker_policy_can_be_disabled(tmp_path):
    data = build_jpeg(first_marker=0xC4)

    index = recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "x"),
                         require_app_marker=False)

    assert index == 1
    assert (tmp_path / "x00000.jpg").read_bytes() == data


def test_invalid_marker_mid_file_fails(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    data = (b"\xFF\xD8" + segment(0xE0, b"JFIF\x00")
            + b"\x00\xDB\x00\x04\x01\x02")

    index = recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "x"))

    assert index == 0
    assert "invalid marker" in caplog.text
    # The output file was opened and is closed with what was copied so far.
    assert (tmp_path / "x00000.jpg").read_bytes() == data[:2] + segment(0xE0, b"JFIF\x00")


def test_segment_length_below_two_fails(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    data = b"\xFF\xD8\xFF\xE0\x00\x01" + b"\x00" * 16

    index = recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "x"))

    assert index == 0
    assert "invalid segment length" in caplog.text


# Cut inside: the length field, the APP0 body, the DQT body, the SOS body,
# the scan data, and right before the D9 of the EOI.
@pytest.mark.parametrize("keep", [5, 10, 40, 95, 250, 300])
def test_truncated_jpeg_keeps_partial_file(tmp_path, caplog, keep):
    caplog.set_level(logging.INFO)
    data = build_jpeg()
    assert len(data) == 301
    truncated = data[:keep]

    index = recover_jpeg(_reader_after_soi(truncated), 0, str(tmp_path / "t"))

    assert index == 0
    assert "premature EOF" in caplog.text
    assert (tmp_path / "t00000.jpg").read_bytes() == truncated


def test_eof_right_after_soi(tmp_path, caplog):
    caplog.set_level(logging.INFO)

    index = recover_jpeg(_reader_after_soi(b"\xFF\xD8\xFF"), 0, str(tmp_path / "t"))

    assert index == 0
    assert list(tmp_path.iterdir()) == []


def test_scan_data_cap_exceeded(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    scan = b"\x11" * 300
    data = build_jpeg(scan_data=scan)
    sos_end = len(data) - len(scan) - 2
    reader = _reader_after_soi(data)

    index = recover_jpeg(reader, 4, str(tmp_path / "c"), max_scan_size=100)

    assert index == 4
    assert "Refusing to dump" in caplog.text
    # max_scan_size + 1 bytes of scan data were consumed and written.
    assert reader.tell() == sos_end + 101
    assert (tmp_path / "c00004.jpg").read_bytes() == data[:sos_end + 101]


def test_eoi_exactly_at_cap_succeeds(tmp_path):
    scan = b"\x22" * 98
    data = build_jpeg(scan_data=scan)   # 98 + FF D9 = 100 bytes of scan data

    assert recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "c"),
                        max_scan_size=100) == 1


def test_eoi_one_past_cap_fails(tmp_path):
    scan = b"\x22" * 98
    data = build_jpeg(scan_data=scan)
    reader = _reader_after_soi(data)

    assert recover_jpeg(reader, 0, str(tmp_path / "c"), max_scan_size=99) == 0
    assert reader.tell() == len(data)


@pytest.mark.parametrize("chunk", [1, 2, 3, 4, 5, 64])
def test_eoi_split_across_copy_blocks(tmp_path, monkeypatch, chunk):
    monkeypatch.setattr(jpeg, "SCAN_COPY_CHUNK", chunk)
    data = build_jpeg(scan_data=b"\x01\x02\x03\xFF\x00\x04\x05")
    reader = _reader_after_soi(data + b"\xAA\xBB")

    index = recover_jpeg(reader, 0, str(tmp_path / "s"))

    assert index == 1
    assert (tmp_path / "s00000.jpg").read_bytes() == data
    assert reader.tell() == len(data)


def test_eoi_inside_sos_header_is_not_the_end(tmp_path):
    # The EOI search starts with the first byte after the SOS segment body.
    data = (b"\xFF\xD8" + segment(0xE0, b"JFIF\x00")
            + segment(0xDA, b"\x01\xFF") + b"\xD9\x33\x44\xFF\xD9")

    assert recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "s")) == 1
    assert (tmp_path / "s00000.jpg").read_bytes() == data


def test_existing_output_is_overwritten(tmp_path):
    target = tmp_path / "o00000.jpg"
    target.write_bytes(b"old content that is longer than the new file" * 100)
    data = build_jpeg()

    assert recover_jpeg(_reader_after_soi(data), 0, str(tmp_path / "o")) == 1
    assert target.read_bytes() == data


def test_prefix_with_subdirectory(tmp_path):
    data = build_jpeg()

    assert recover_jpeg(_reader_after_soi(data), 0,
                        str(tmp_path / "sub" / "dir" / "r")) == 1
    assert (tmp_path / "sub" / "dir" / "r00000.jpg").read_bytes() == data
