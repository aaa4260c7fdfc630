"""
GETVER handshake.

Protocol:
  1. Send GETVER (no parameters).
  2. Read 64 bytes.  Word 1 (big-endian) must be 0x55444556 ("UDEV").
  3. Bytes 0..2 are the hardware variant code, e.g. ``"B2\\x00"``.

A wrong magic or an empty read is not fatal by itself: the exchange is
retried (4 attempts in total, FIFOs purged in between).  Only when every
attempt fails does the handshake raise CommunicationFailure, at which
point the link needs a physical reset.
"""

import logging
import struct
from typing import Optional

from .command import send_command
from .constants import (
    CMD_GETVER,
    DEV_MAGIC,
    HANDSHAKE_MAX_ATTEMPTS,
    VARIANT_LENGTH,
    VERSION_RESPONSE_SIZE,
)
from .core.models import SessionContext, VersionInfo
from .device_base import DeviceSession
from .errors import CommunicationFailure, LinkError, ProtocolMismatch, RetryExhausted
from .retry import BoundedRetry

log = logging.getLogger(__name__)

POWER_CYCLE_HINT = "Unplug USB cable, turn off N64, then try again."


def parse_version_response(resp: bytes, hw_version: int = 0) -> VersionInfo:
    """Decode a GETVER response.

    Raises:
        ProtocolMismatch: short response or wrong magic.
    """
    if len(resp) < 8:
        raise ProtocolMismatch(0, DEV_MAGIC)
    magic = struct.unpack_from(">I", resp, 4)[0]
    if magic != DEV_MAGIC:
        raise ProtocolMismatch(magic, DEV_MAGIC)
    return VersionInfo(
        variant=resp[:VARIANT_LENGTH].decode("latin-1"),
        hw_version=hw_version,
        magic=magic,
        raw_response=bytes(resp),
    )


def get_version(session: DeviceSession, hw_version: Optional[int] = None,
                ctx: Optional[SessionContext] = None) -> VersionInfo:
    """Query the device version, retrying until the magic checks out.

    Args:
        session: open device link.
        hw_version: 1 or 2 from USB enumeration; defaults to
            ``session.hw_version``.  Not derived from the response.
        ctx: run context (only verbosity is consulted).

    Raises:
        CommunicationFailure: no valid response after 4 attempts.
    """
    ctx = ctx or SessionContext()
    if hw_version is None:
        hw_version = session.hw_version

    def attempt() -> Optional[VersionInfo]:
        try:
            resp = send_command(session, CMD_GETVER,
                                response_size=VERSION_RESPONSE_SIZE)
            return parse_version_response(resp, hw_version)
        except ProtocolMismatch as e:
            if ctx.verbosity > 0:
                log.warning("GETVER: %s", e)
            else:
                log.debug("GETVER: %s", e)
        except LinkError as e:
            log.warning("GETVER: %s", e)
        return None

    policy = BoundedRetry(HANDSHAKE_MAX_ATTEMPTS, recover=session.purge_buffers,
                          name="version handshake")
    try:
        info = policy.run(attempt, accept=lambda r: r is not None)
    except RetryExhausted as e:
        raise CommunicationFailure(
            f"Communication failure.\n{POWER_CYCLE_HINT}", opcode=CMD_GETVER,
        ) from e

    log.info("Device version: %s (magic 0x%08X)", info.describe(), info.magic)
    return info
