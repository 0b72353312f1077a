"""
Stream Scanner: top-level carving driver.

HOW IT WORKS
────────────
1.  Wrap the already-open input in a StreamReader (mmap when possible).
2.  Slide a 2-byte big-endian window over the stream. Blocks are searched
    with one compiled regex instead of a Python-level per-byte loop, but the
    observable behaviour is that of the rolling window: the window's low
    byte carries across blocks and across extractor calls, and bytes an
    extractor consumed never enter the window.
3.  FF D8 → JPEG extractor. "II" / "MM" → TIFF/CR2 extractor.
4.  Each extractor returns the recovery index: unchanged on failure,
    incremented on success. A rejected TIFF candidate rewinds the stream to
    just after its byte-order mark, so JPEG thumbnails embedded in it are
    still found; a rejected JPEG candidate does not rewind.
"""

import os
import time
import logging
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

from .jpeg import recover_jpeg, MAX_SCAN_DATA_SIZE
from .tiff import recover_tiff
from .signatures import (
    SignatureInfo,
    START_SIGNATURES,
    SIGNATURE_PATTERN,
    DEFAULT_PREFIX,
    output_filename,
)
from .stream_reader import StreamReader

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
#  Data Classes
# ─────────────────────────────────────────────────────────────

@dataclass
class RecoveredFile:
    """A file carved out of the input stream."""
    index: int                      # Recovery index used in the file name
    signature: SignatureInfo
    offset: int                     # Stream offset of the start signature
    size: int                       # Bytes written to disk
    recovered_path: str
    timestamp: float = 0.0

    @property
    def extension(self) -> str:
        return self.signature.extension

    @property
    def description(self) -> str:
        return self.signature.description

    @property
    def size_human(self) -> str:
        return _human_size(self.size)


@dataclass
class ScanProgress:
    total_bytes: int = 0             # 0 when the input size is unknown
    scanned_bytes: int = 0
    candidates: int = 0              # Start signatures handed to an extractor
    files_found: int = 0
    elapsed_time: float = 0.0
    is_scanning: bool = False
    using_mmap: bool = False

    @property
    def progress_percent(self) -> float:
        if self.total_bytes == 0:
            return 0.0
        return min(100.0, (self.scanned_bytes / self.total_bytes) * 100)

    @property
    def speed_mbps(self) -> float:
        if self.elapsed_time <= 0:
            return 0.0
        return (self.scanned_bytes / (1024 * 1024)) / self.elapsed_time


# ─────────────────────────────────────────────────────────────
#  Scanner
# ─────────────────────────────────────────────────────────────

class StreamScanner:
    """
    Signature-driven carver for JPEG and TIFF/CR2 images.

    Usage:
        scanner = StreamScanner(prefix="out/img_")
        with open("card.img", "rb") as fd:
            results = scanner.scan(fd)
    """

    SCAN_CHUNK = 1024 * 1024        # Search 1 MB at a time

    def __init__(
        self,
        prefix: str = DEFAULT_PREFIX,
        require_app_marker: bool = True,
    ):
        self.prefix = prefix
        self.require_app_marker = require_app_marker
        self.progress = ScanProgress()
        self._on_progress: Optional[Callable] = None
        self._on_file_found: Optional[Callable] = None
        self._max_scan_size = MAX_SCAN_DATA_SIZE
        self._use_mmap = True
        self._results: list[RecoveredFile] = []
        self._recovery_log: list[dict] = []
        self._started = 0.0

    def set_progress_callback(self, cb):
        self._on_progress = cb

    def set_file_found_callback(self, cb):
        self._on_file_found = cb

    def set_max_scan_size(self, size: int):
        """Cap on JPEG entropy-coded data, in bytes."""
        if size <= 0:
            raise ValueError(f"scan size cap must be positive, got {size}")
        self._max_scan_size = size

    def set_use_mmap(self, enabled: bool):
        self._use_mmap = enabled

    def get_recovery_log(self) -> list[dict]:
        return list(self._recovery_log)

    # ── Scanning ─────────────────────────────────────────────

    def scan(self, fd: BinaryIO) -> list[RecoveredFile]:
        """
        Carve every recognizable image from `fd`, starting at its current
        position, until the end of the stream.

        Raises OutputFileError if an output file cannot be created.
        """
        self.progress = ScanProgress(is_scanning=True)
        self._results = []
        self._recovery_log = []
        self._started = time.time()

        with StreamReader(fd, use_mmap=self._use_mmap) as reader:
            self.progress.total_bytes = reader.size
            self.progress.using_mmap = reader.is_mmap
            try:
                self._scan_stream(reader)
            finally:
                self.progress.is_scanning = False
                self.progress.elapsed_time = time.time() - self._started
                self._notify_progress()

        logger.info(
            "Scan finished: %d file(s) recovered from %s in %.1fs.",
            len(self._results), _human_size(self.progress.scanned_bytes),
            self.progress.elapsed_time,
        )
        return list(self._results)

    def _scan_stream(self, reader: StreamReader):
        index = 0
        window = 0      # last two bytes seen, big-endian
        while True:
            block_pos = reader.tell()
            block = reader.read(self.SCAN_CHUNK)
            if not block:
                break

            hit = self._find_signature(window, block)
            if hit is None:
                # Only the low byte reaches into the next block.
                window = block[-1]
                self._update_progress(block_pos + len(block))
                continue

            end, sig = hit
            window = sig.value
            reader.seek(block_pos + end)
            index = self._dispatch(reader, sig, index)
            self._update_progress(reader.tell())

    @staticmethod
    def _find_signature(window: int, block: bytes):
        """
        Locate the first start signature completed inside `block`.

        Returns (end, sig), `end` being the block offset just past the
        signature, or None.
        """
        sig = START_SIGNATURES.get(((window & 0xFF) << 8) | block[0])
        if sig is not None:
            return 1, sig
        m = SIGNATURE_PATTERN.search(block)
        if m is None:
            return None
        return m.end(), START_SIGNATURES[int.from_bytes(m.group(), "big")]

    def _dispatch(self, reader: StreamReader, sig: SignatureInfo, index: int) -> int:
        offset = reader.tell() - 2
        self.progress.candidates += 1
        logger.debug("%s signature at offset 0x%X", sig.description, offset)

        if sig.kind == "jpeg":
            new_index = recover_jpeg(
                reader, index, self.prefix,
                require_app_marker=self.require_app_marker,
                max_scan_size=self._max_scan_size,
            )
        else:
            resume = reader.tell()
            new_index = recover_tiff(reader, index, sig.big_endian, self.prefix)
            if new_index == index:
                # Thumbnails inside a rejected candidate must still be found.
                reader.seek(resume)

        if new_index != index:
            self._record(sig, index, offset)
        return new_index

    def _record(self, sig: SignatureInfo, index: int, offset: int):
        path = output_filename(self.prefix, index, sig.extension)
        rf = RecoveredFile(
            index=index,
            signature=sig,
            offset=offset,
            size=os.path.getsize(path),
            recovered_path=path,
            timestamp=time.time(),
        )
        self._results.append(rf)
        self._log_recovery(rf)
        self.progress.files_found += 1
        if self._on_file_found:
            self._on_file_found(rf)

    # ─── Logging ──────────────────────────────────────────────

    def _log_recovery(self, rf: RecoveredFile):
        self._recovery_log.append({
            "file_number": rf.index,
            "type": rf.description,
            "extension": rf.extension,
            "offset": rf.offset,
            "offset_hex": f"0x{rf.offset:X}",
            "size": rf.size,
            "size_human": rf.size_human,
            "saved_to": rf.recovered_path,
            "timestamp": time.strftime(
                "%Y-%m-%d %H:%M:%S", time.localtime(rf.timestamp)),
        })

    def _update_progress(self, position: int):
        self.progress.scanned_bytes = position
        self.progress.elapsed_time = time.time() - self._started
        self._notify_progress()

    def _notify_progress(self):
        if self._on_progress:
            self._on_progress(self.progress)


def _human_size(nbytes: int) -> str:
    s = float(nbytes)
    for unit in ("B", "KB", "MB", "GB"):
        if s < 1024:
            return f"{s:.1f} {unit}"
        s /= 1024
    return f"{s:.1f} TB"
