"""
Chunked bank upload / download.

Protocol per chunk::

    LOADRAM(offset, n | bank << 24)  then  bulk write of n bytes
    DUMPRAM(offset, n | bank << 24)  then  bulk read of n bytes

There is no acknowledgement frame between the command and its payload;
the next command may only go out once the payload has fully moved.

Chunk size is picked once per call from the total size (4, 16 or 32
units of 128 KiB) and pushed down to the session so the FTDI layer
chunks its own bulk transfers the same way.  A bulk transfer that makes
no progress is retried up to 5 times with a 10 ms sleep and a FIFO purge
before each retry.  Offsets advance by the bytes actually moved, so a
short transfer just continues from where it stopped.
"""

import io
import logging
from typing import BinaryIO, Optional

from .command import send_command
from .constants import (
    ADDRESS_LIMIT,
    BANK_SHIFT,
    CHUNK_SIZE_MASK,
    CHUNK_UNIT,
    CMD_DUMPRAM,
    CMD_LOADRAM,
    DEFAULT_DOWNLOAD_SIZE,
    MIB,
    TRANSFER_MAX_ATTEMPTS,
    TRANSFER_RETRY_DELAY_S,
    Bank,
)
from .core.models import SessionContext, TransferResult
from .device_base import DeviceSession
from .errors import AddressOutOfRange, Drive64Error
from .retry import BoundedRetry

log = logging.getLogger(__name__)


# =========================================================================
# Chunk sizing
# =========================================================================

def chunk_units(size: int) -> int:
    """Number of 128 KiB units per chunk for a transfer of *size* bytes."""
    if size > 16 * MIB:
        return 32
    if size > 2 * MIB:
        return 16
    return 4


def compute_chunk_size(size: int) -> int:
    """Chunk size in bytes, clamped to *size*."""
    return min(chunk_units(size) * CHUNK_UNIT, size)


def pack_size_bank(size: int, bank: int) -> int:
    """Second LOADRAM/DUMPRAM parameter: low 24 bits size, high 8 bits bank."""
    return (size & CHUNK_SIZE_MASK) | ((int(bank) & 0xFF) << BANK_SHIFT)


# =========================================================================
# Progress
# =========================================================================

class ProgressPrinter:
    """Prints ``\\r * Uploading...  42%`` lines unless the context is quiet."""

    def __init__(self, label: str, total: int, ctx: SessionContext):
        self.label = label
        self.total = total
        self.enabled = not ctx.quiet
        self.stream = ctx.stream

    def update(self, done: int) -> None:
        if not self.enabled or self.total <= 0:
            return
        self.stream.write(f"\r * {self.label}... {done * 100 // self.total:3d}%")
        self.stream.flush()

    def finish(self) -> None:
        if not self.enabled:
            return
        self.stream.write(f"\r * {self.label}... Done.\n")
        self.stream.flush()

    def abort(self) -> None:
        if self.enabled:
            self.stream.write("\n")
            self.stream.flush()


# =========================================================================
# Helpers
# =========================================================================

def _remaining_length(source: BinaryIO) -> int:
    """Bytes from the current position to EOF; position is restored."""
    cur = source.tell()
    end = source.seek(0, io.SEEK_END)
    source.seek(cur, io.SEEK_SET)
    return end - cur


def _is_seekable(source) -> bool:
    try:
        return source.seekable()
    except (AttributeError, ValueError, OSError):
        return False


def _read_exact(source: BinaryIO, size: int) -> bytes:
    """Read *size* bytes, looping over short reads; may return less at EOF."""
    buf = bytearray()
    while len(buf) < size:
        data = source.read(size - len(buf))
        if not data:
            break
        buf += data
    return bytes(buf)


def _bank_name(bank: int) -> str:
    try:
        return Bank(bank).name
    except ValueError:
        return str(bank)


def _check_range(offset: int, size: int, opcode: int) -> None:
    if offset < 0 or offset + size > ADDRESS_LIMIT:
        raise AddressOutOfRange(
            f"offset 0x{offset:X} + {size} bytes exceeds the 32-bit address space",
            opcode=opcode)


def _bulk_retry(session: DeviceSession, name: str) -> BoundedRetry:
    return BoundedRetry(TRANSFER_MAX_ATTEMPTS, delay_s=TRANSFER_RETRY_DELAY_S,
                        recover=session.purge_buffers, name=name)


# =========================================================================
# Upload
# =========================================================================

def upload(session: DeviceSession, source: BinaryIO, size: Optional[int] = None,
           offset: int = 0, bank: int = Bank.CARTROM,
           ctx: Optional[SessionContext] = None) -> TransferResult:
    """Upload *size* bytes from *source* to *bank* at *offset*.

    Reads from the current position of *source*.  With no size (or a
    negative one) the rest of the stream is uploaded.

    Raises:
        RetryExhausted: a chunk failed 5 times; ``e.transferred`` holds
            the bytes written by earlier chunks.
        LinkWriteFailure: a LOADRAM frame could not be written.
        AddressOutOfRange: *offset* + *size* does not fit 32 bits.
    """
    ctx = ctx or SessionContext()

    if size is None or size < 0:
        if not _is_seekable(source):
            # pipes (stdin) have no length; buffer them first
            source = io.BytesIO(source.read())
        size = _remaining_length(source)

    _check_range(offset, size, CMD_LOADRAM)
    chunk_size = compute_chunk_size(size)
    log.debug("Chunk size: %d => %d", chunk_units(size), chunk_size)
    result = TransferResult(offset=offset, chunk_size=chunk_size)
    if size == 0:
        log.info("Nothing to upload")
        return result

    session.set_write_chunksize(chunk_size)
    log.info("Uploading %d Kbytes to offset 0x%06X (bank %s)",
             size // 1024, offset, _bank_name(bank))

    progress = ProgressPrinter("Uploading", size, ctx)
    retry = _bulk_retry(session, "bulk write")
    pending = b""

    while result.transferred < size:
        want = min(chunk_size, size - result.transferred)
        if len(pending) < want:
            data = _read_exact(source, want - len(pending))
            if len(pending) + len(data) < want:
                log.warning("Source ended %d bytes early, padding with zeros",
                            want - len(pending) - len(data))
                data = data.ljust(want - len(pending), b"\x00")
            pending += data
        block = pending[:want]

        try:
            send_command(session, CMD_LOADRAM, result.offset,
                         pack_size_bank(len(block), bank))
            sent = retry.run(lambda: session.write(block),
                             accept=lambda n: n > 0)
        except Drive64Error as e:
            progress.abort()
            e.opcode = CMD_LOADRAM
            e.transferred = result.transferred
            log.error("Upload write failed after %d bytes", result.transferred)
            raise

        sent = min(sent, len(block))
        pending = pending[sent:]
        result.offset += sent
        result.transferred += sent
        result.chunks += 1
        progress.update(result.transferred)

    progress.finish()
    return result


# =========================================================================
# Download
# =========================================================================

def download(session: DeviceSession, sink: BinaryIO, size: Optional[int] = None,
             offset: int = 0, bank: int = Bank.CARTROM,
             ctx: Optional[SessionContext] = None) -> TransferResult:
    """Download *size* bytes from *bank* at *offset* into *sink*.

    The protocol has no bank-size query, so with no size (or a negative
    one) 256 MiB are read.

    Raises:
        RetryExhausted: a chunk failed 5 times; ``e.transferred`` holds
            the bytes already written to *sink*.
        LinkWriteFailure: a DUMPRAM frame could not be written.
        AddressOutOfRange: *offset* + *size* does not fit 32 bits.
    """
    ctx = ctx or SessionContext()

    if size is None or size < 0:
        size = DEFAULT_DOWNLOAD_SIZE

    _check_range(offset, size, CMD_DUMPRAM)
    chunk_size = compute_chunk_size(size)
    log.debug("Chunk size: %d => %d", chunk_units(size), chunk_size)
    result = TransferResult(offset=offset, chunk_size=chunk_size)
    if size == 0:
        log.info("Nothing to download")
        return result

    session.set_read_chunksize(chunk_size)
    log.info("Downloading %d Kbytes from offset 0x%06X (bank %s)",
             size // 1024, offset, _bank_name(bank))

    progress = ProgressPrinter("Downloading", size, ctx)
    retry = _bulk_retry(session, "bulk read")

    while result.transferred < size:
        want = min(chunk_size, size - result.transferred)
        try:
            send_command(session, CMD_DUMPRAM, result.offset,
                         pack_size_bank(want, bank))
            data = retry.run(lambda: session.read(want))
        except Drive64Error as e:
            progress.abort()
            e.opcode = CMD_DUMPRAM
            e.transferred = result.transferred
            log.error("Download read failed after %d bytes", result.transferred)
            raise

        # a misbehaving link may hand back more than asked for
        data = data[:want]
        sink.write(data)
        result.offset += len(data)
        result.transferred += len(data)
        result.chunks += 1
        progress.update(result.transferred)

    progress.finish()
    return result
