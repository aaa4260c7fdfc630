"""
Command frame codec.

Frame layout (what the 64drive firmware parses)::

    [opcode, 'C', 'M', 'D', p0 (u32 BE), p1 (u32 BE), ...]

Length is ``4 + 4 * len(params)``.  The firmware-side buffer is 32 bytes,
so at most 7 parameters fit.
"""

import logging
import struct
from typing import Tuple

from .constants import (
    COMMAND_BUFFER_SIZE,
    COMMAND_HEADER_SIZE,
    COMMAND_TAG,
    MAX_COMMAND_PARAMS,
    command_name,
)
from .device_base import DeviceSession
from .errors import FrameTooLarge, LinkReadFailure, LinkWriteFailure

log = logging.getLogger(__name__)


class CommandFrame:
    """Fixed-capacity command frame.

    The parameter count is checked on construction, before any buffer is
    built or any I/O happens.
    """

    __slots__ = ("opcode", "params")

    def __init__(self, opcode: int, *params: int):
        if len(params) > MAX_COMMAND_PARAMS:
            raise FrameTooLarge(
                f"{len(params)} parameters do not fit a "
                f"{COMMAND_BUFFER_SIZE}-byte frame (max {MAX_COMMAND_PARAMS})",
                opcode=opcode,
            )
        if not 0 <= opcode <= 0xFF:
            raise ValueError(f"opcode out of range: {opcode!r}")
        for p in params:
            if not 0 <= p <= 0xFFFFFFFF:
                raise ValueError(f"parameter out of u32 range: {p!r}")
        self.opcode = opcode
        self.params: Tuple[int, ...] = tuple(params)

    def __len__(self) -> int:
        return COMMAND_HEADER_SIZE + 4 * len(self.params)

    def __bytes__(self) -> bytes:
        return (bytes([self.opcode]) + COMMAND_TAG
                + struct.pack(f">{len(self.params)}I", *self.params))

    def __repr__(self) -> str:
        args = ", ".join(f"0x{p:08X}" for p in self.params)
        return f"CommandFrame({command_name(self.opcode)}, [{args}])"


def encode_command(opcode: int, *params: int) -> bytes:
    """Encode *opcode* and up to 7 u32 parameters into a command frame."""
    return bytes(CommandFrame(opcode, *params))


def send_command(session: DeviceSession, opcode: int, *params: int,
                 response_size: int = 0) -> bytes:
    """Write one command frame and optionally read a fixed-size response.

    Returns the response (``b""`` when *response_size* is 0).

    Raises:
        FrameTooLarge: too many parameters, nothing was sent.
        LinkWriteFailure: the frame write made no progress.
        LinkReadFailure: the response read came back empty.
    """
    frame = encode_command(opcode, *params)
    log.debug("Sending command %s (%s)", command_name(opcode), frame.hex())

    written = session.write(frame)
    if written <= 0:
        raise LinkWriteFailure("command write failed", opcode=opcode)

    if response_size <= 0:
        return b""

    resp = session.read(response_size)
    if not resp:
        raise LinkReadFailure("command response read failed", opcode=opcode)
    return resp
