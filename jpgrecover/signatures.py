"""
Start Signature Database: the 2-byte windows the scanner reacts to.

  • JPEG       FF D8  (Start-Of-Image)            → <prefix>NNNNN.jpg
  • TIFF / CR2 49 49  ("II", little-endian mark)   → <prefix>NNNNN.cr2
  • TIFF / CR2 4D 4D  ("MM", big-endian mark)      → <prefix>NNNNN.cr2

Exported for the scanner:
  • START_SIGNATURES   : dict mapping 16-bit window value → SignatureInfo
  • SIGNATURE_PATTERN  : compiled regex matching any start signature
  • output_filename()  : the <prefix><00000-padded index>.<ext> naming scheme
"""

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_PREFIX = "recovered"
MAX_PREFIX_LENGTH = 256


@dataclass(frozen=True)
class SignatureInfo:
    """Describes one recoverable start signature."""
    kind: str                   # "jpeg" or "tiff", selects the extractor
    extension: str              # output file extension without dot
    description: str
    header: bytes               # the 2 signature bytes, in stream order
    big_endian: Optional[bool] = None   # TIFF byte order; None for JPEG

    @property
    def value(self) -> int:
        """The signature as the scanner's 16-bit big-endian window."""
        return (self.header[0] << 8) | self.header[1]


# Canon raw files are TIFF containers; every TIFF candidate is saved as .cr2
TIFF_EXTENSION = "cr2"

# ── JPEG ──
SIG_JPEG = SignatureInfo(
    kind="jpeg", extension="jpg", description="JPEG Image",
    header=b"\xFF\xD8",
)

# ── TIFF / CR2 (little-endian) ──
SIG_TIFF_LE = SignatureInfo(
    kind="tiff", extension=TIFF_EXTENSION, description="TIFF/CR2 Image (LE)",
    header=b"II", big_endian=False,
)

# ── TIFF / CR2 (big-endian) ──
SIG_TIFF_BE = SignatureInfo(
    kind="tiff", extension=TIFF_EXTENSION, description="TIFF/CR2 Image (BE)",
    header=b"MM", big_endian=True,
)

ALL_SIGNATURES = [SIG_JPEG, SIG_TIFF_LE, SIG_TIFF_BE]

START_SIGNATURES = {sig.value: sig for sig in ALL_SIGNATURES}

SIGNATURE_PATTERN = re.compile(
    b"|".join(re.escape(sig.header) for sig in ALL_SIGNATURES)
)


def output_filename(prefix: str, index: int, extension: str) -> str:
    """`recovered` + 7 + `jpg` → `recovered00007.jpg`."""
    return f"{prefix}{index:05d}.{extension}"
