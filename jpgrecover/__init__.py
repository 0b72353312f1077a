# jpgrecover: JPEG & TIFF/CR2 carving from raw byte streams.
# Pure-Python recovery of images from disk images and memory card dumps
# whose directory structure is damaged or gone.
#
# Architecture (bottom → top):
#   stream_reader  - mmap-backed cursor + 16/32-bit endian-aware reads
#   signatures     - start signatures (FF D8, II, MM) + output naming
#   materialize    - output file creation + bounded-chunk byte copy
#   jpeg           - JPEG segment walker (SOI .. SOS .. EOI)
#   tiff           - TIFF/CR2 IFD walker, file extent from strip metadata
#   scanner        - Rolling-window driver, recovery index, recovery log

from .materialize import OutputFileError
from .scanner import StreamScanner, RecoveredFile, ScanProgress

__version__ = "1.1.0"

__all__ = ["StreamScanner", "RecoveredFile", "ScanProgress", "OutputFileError"]
