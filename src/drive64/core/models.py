"""
drive64 Models - Pure data classes with no USB dependencies.

These models are passed between the protocol engine, the Drive64 facade
and the CLI.
"""

import sys
from dataclasses import dataclass, field
from typing import Any, Optional

from ..constants import CIC_RESTRICTED_VARIANT, DEV_MAGIC

# =============================================================================
# Run context
# =============================================================================


@dataclass
class SessionContext:
    """Per-run settings threaded through every engine call.

    verbosity: -1 = quiet (no progress), 0 = progress only, 1+ = chattier.
    """
    verbosity: int = 0
    progress_stream: Any = field(default=None, repr=False)

    @property
    def quiet(self) -> bool:
        return self.verbosity < 0

    @property
    def stream(self):
        return self.progress_stream if self.progress_stream is not None else sys.stdout


# =============================================================================
# Handshake result
# =============================================================================


@dataclass
class VersionInfo:
    """Decoded GETVER response plus the hardware version from enumeration."""
    variant: str = ""
    hw_version: int = 0
    magic: int = DEV_MAGIC
    raw_response: bytes = field(default=b"", repr=False)

    @property
    def is_valid(self) -> bool:
        return self.magic == DEV_MAGIC and len(self.variant) == 3

    @property
    def packed(self) -> int:
        """Variant bytes packed as ``b0<<24 | b1<<16 | b2<<8`` (0 if invalid)."""
        if not self.is_valid:
            return 0
        b0, b1, b2 = self.variant.encode("latin-1")
        return (b0 << 24) | (b1 << 16) | (b2 << 8)

    @property
    def supports_cic(self) -> bool:
        return not self.variant.startswith(CIC_RESTRICTED_VARIANT)

    def describe(self) -> str:
        return f"HW{self.hw_version} rev {self.variant}"


# =============================================================================
# Transfer result
# =============================================================================


@dataclass
class TransferResult:
    """Outcome of one upload or download call."""
    transferred: int = 0
    offset: int = 0        # offset after the last chunk
    chunk_size: int = 0
    chunks: int = 0


# =============================================================================
# Device listing
# =============================================================================


@dataclass
class FtdiDeviceInfo:
    """One FTDI-vendor USB device, as reported by find_ftdi_devices()."""
    index: int
    vid: int
    pid: int
    manufacturer: str = ""
    description: str = ""
    serial: str = ""
    error: Optional[str] = None

    def describe(self) -> str:
        if self.error:
            return f"Device {self.index}: [{self.vid:04x}:{self.pid:04x}] {self.error}"
        return (f'Device {self.index}: "{self.description}", '
                f'manuf "{self.manufacturer}", serial "{self.serial}"')
