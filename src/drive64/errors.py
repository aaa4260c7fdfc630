"""
Exception hierarchy for drive64.

Every error carries the opcode being attempted (when there is one) and
the number of bulk bytes moved before the failure, so a caller can
resume from the last known offset.
"""

from typing import Optional

from .constants import command_name


class Drive64Error(Exception):
    """Base class for all drive64 errors."""

    def __init__(self, message: str = "", opcode: Optional[int] = None,
                 transferred: int = 0):
        super().__init__(message)
        self.opcode = opcode
        self.transferred = transferred

    def __str__(self) -> str:
        msg = super().__str__()
        if self.opcode is not None:
            msg = f"{msg} [{command_name(self.opcode)}]"
        if self.transferred:
            msg = f"{msg} (after {self.transferred} bytes)"
        return msg


class FrameTooLarge(Drive64Error, ValueError):
    """More parameters than the 32-byte command frame holds."""


TooManyParameters = FrameTooLarge


class AddressOutOfRange(Drive64Error, ValueError):
    """Transfer would run past the 32-bit address space of a bank."""


class DeviceNotFound(Drive64Error):
    """No 64drive on the USB bus."""


class DeviceSetupError(Drive64Error):
    """An FTDI configuration request (reset, bitmode, latency, purge) failed."""


class LinkError(Drive64Error):
    """Raw USB I/O reported no progress."""


class LinkWriteFailure(LinkError):
    pass


class LinkReadFailure(LinkError):
    pass


class RetryExhausted(LinkError):
    """A link operation failed on every attempt."""

    def __init__(self, message: str = "", attempts: int = 0,
                 opcode: Optional[int] = None, transferred: int = 0):
        super().__init__(message, opcode=opcode, transferred=transferred)
        self.attempts = attempts


class ProtocolMismatch(Drive64Error):
    """GETVER response did not carry the device magic."""

    def __init__(self, magic: int, expected: int):
        super().__init__(
            f"incorrect magic 0x{magic:08X}, expected 0x{expected:08X}")
        self.magic = magic
        self.expected = expected


class CommunicationFailure(Drive64Error):
    """The version handshake never succeeded."""


class CapabilityUnsupported(Drive64Error):
    """Operation not available on this hardware revision."""
