"""
Tests for transfer -- chunked upload/download.

Tests cover:
- Chunk unit thresholds, clamping, monotonicity
- Size/bank packing in the LOADRAM/DUMPRAM parameter
- Offset and total invariants, partial transfers
- Per-chunk retry (5 attempts, purge between) and partial-progress errors
- Progress output and quiet mode
"""

import io
import os
from unittest.mock import patch

import pytest

from conftest import FakeDrive
from drive64.constants import (
    CHUNK_UNIT,
    CMD_DUMPRAM,
    CMD_LOADRAM,
    DEFAULT_DOWNLOAD_SIZE,
    MIB,
    Bank,
)
from drive64.core.models import SessionContext
from drive64.errors import AddressOutOfRange, RetryExhausted
from drive64.transfer import (
    chunk_units,
    compute_chunk_size,
    download,
    pack_size_bank,
    upload,
)

QUIET = SessionContext(verbosity=-1)


class _Pipe(io.RawIOBase):
    """Readable, non-seekable stream (like stdin on a pipe)."""

    def __init__(self, data: bytes):
        self._buf = io.BytesIO(data)

    def readable(self):
        return True

    def seekable(self):
        return False

    def read(self, size=-1):
        return self._buf.read(size)


# =========================================================================
# Chunk sizing
# =========================================================================

class TestChunkSizing:

    def test_thresholds(self):
        assert chunk_units(2 * MIB) == 4
        assert chunk_units(2 * MIB + 1) == 16
        assert chunk_units(16 * MIB) == 16
        assert chunk_units(16 * MIB + 1) == 32

    def test_one_mib(self):
        assert compute_chunk_size(MIB) == 524288

    def test_clamps_to_size(self):
        assert compute_chunk_size(100) == 100
        assert compute_chunk_size(0) == 0

    def test_monotone_and_unit_multiple(self):
        sizes = sorted({1, 100, 4096, CHUNK_UNIT, 4 * CHUNK_UNIT - 1, MIB,
                        2 * MIB, 2 * MIB + 1, 5 * MIB, 16 * MIB, 16 * MIB + 1,
                        64 * MIB, DEFAULT_DOWNLOAD_SIZE})
        prev = 0
        for size in sizes:
            chunk = compute_chunk_size(size)
            assert chunk >= prev
            if chunk != size:
                assert chunk % CHUNK_UNIT == 0
            prev = chunk

    def test_largest_chunk_fits_24_bits(self):
        assert compute_chunk_size(DEFAULT_DOWNLOAD_SIZE) <= 0xFFFFFF

    def test_pack_size_bank(self):
        assert pack_size_bank(524288, Bank.CARTROM) == 0x01080000
        assert pack_size_bank(2048, Bank.EEPROM16) == 0x06000800
        assert pack_size_bank(0x1000005, Bank.SRAM256) == 0x02000005


# =========================================================================
# Upload
# =========================================================================

class TestUpload:

    def test_one_mib_in_two_chunks(self, fake_drive):
        data = os.urandom(MIB)
        result = upload(fake_drive, io.BytesIO(data), size=MIB, ctx=QUIET)

        assert fake_drive.write_chunksize == 524288
        assert fake_drive.frames_for(CMD_LOADRAM) == [
            (0, 0x01080000),
            (524288, 0x01080000),
        ]
        assert result.transferred == MIB
        assert result.offset == MIB
        assert result.chunks == 2
        assert sum(fake_drive.payload_sizes) == MIB
        assert bytes(fake_drive.banks[Bank.CARTROM]) == data

    def test_small_upload_single_chunk(self, fake_drive):
        result = upload(fake_drive, io.BytesIO(b"x" * 100), ctx=QUIET)
        assert result.chunk_size == 100
        assert result.chunks == 1
        assert fake_drive.frames_for(CMD_LOADRAM) == [(0, 100 | (1 << 24))]

    def test_offset_and_bank(self, fake_drive):
        result = upload(fake_drive, io.BytesIO(b"\xAA" * 2048), offset=0x100,
                        bank=Bank.EEPROM16, ctx=QUIET)
        assert fake_drive.frames_for(CMD_LOADRAM) == [(0x100, 0x06000800)]
        assert result.offset == 0x100 + 2048
        assert bytes(fake_drive.banks[Bank.EEPROM16][0x100:]) == b"\xAA" * 2048

    def test_size_from_current_position(self, fake_drive):
        src = io.BytesIO(b"HEADER" + b"payload")
        src.seek(6)
        result = upload(fake_drive, src, ctx=QUIET)
        assert result.transferred == 7
        assert bytes(fake_drive.banks[Bank.CARTROM]) == b"payload"

    def test_negative_size_means_whole_stream(self, fake_drive):
        result = upload(fake_drive, io.BytesIO(b"abcd"), size=-1, ctx=QUIET)
        assert result.transferred == 4

    def test_explicit_size_limits_upload(self, fake_drive):
        upload(fake_drive, io.BytesIO(b"abcdefgh"), size=3, ctx=QUIET)
        assert bytes(fake_drive.banks[Bank.CARTROM]) == b"abc"

    def test_non_seekable_source(self, fake_drive):
        result = upload(fake_drive, _Pipe(b"from a pipe"), ctx=QUIET)
        assert result.transferred == 11
        assert bytes(fake_drive.banks[Bank.CARTROM]) == b"from a pipe"

    def test_short_source_is_padded(self, fake_drive):
        result = upload(fake_drive, io.BytesIO(b"abc"), size=8, ctx=QUIET)
        assert result.transferred == 8
        assert bytes(fake_drive.banks[Bank.CARTROM]) == b"abc" + b"\x00" * 5

    def test_empty_upload_sends_nothing(self, fake_drive):
        result = upload(fake_drive, io.BytesIO(b""), ctx=QUIET)
        assert result.transferred == 0
        assert fake_drive.frames == []

    def test_partial_writes_continue(self, fake_drive):
        data = bytes(range(256)) * 16
        fake_drive.max_payload = 1000
        result = upload(fake_drive, io.BytesIO(data), ctx=QUIET)

        offsets = [p[0] for p in fake_drive.frames_for(CMD_LOADRAM)]
        assert offsets == [0, 1000, 2000, 3000, 4000]
        sizes = [p[1] & 0xFFFFFF for p in fake_drive.frames_for(CMD_LOADRAM)]
        assert sizes == [4096, 3096, 2096, 1096, 96]
        assert result.offset == 4096
        assert bytes(fake_drive.banks[Bank.CARTROM]) == data

    def test_transient_failure_retried(self, fake_drive, no_sleep):
        fake_drive.fail_payloads = 2
        result = upload(fake_drive, io.BytesIO(b"z" * 512), ctx=QUIET)
        assert result.transferred == 512
        assert fake_drive.payload_attempts == 3
        assert fake_drive.purges == 2
        assert no_sleep == [0.010, 0.010]
        # the command is not re-sent for a retry
        assert len(fake_drive.frames_for(CMD_LOADRAM)) == 1

    def test_exhausted_reports_prior_progress(self, fake_drive, no_sleep):
        fake_drive.fail_start = 1
        fake_drive.fail_payloads = 100
        with pytest.raises(RetryExhausted) as exc:
            upload(fake_drive, io.BytesIO(bytes(MIB)), ctx=QUIET)

        assert exc.value.transferred == 524288
        assert exc.value.opcode == CMD_LOADRAM
        assert exc.value.attempts == 5
        # 1 good chunk + 5 failed attempts on the second
        assert fake_drive.payload_attempts == 6
        assert fake_drive.purges == 4
        assert "after 524288 bytes" in str(exc.value)

    def test_first_chunk_failure_reports_zero(self, fake_drive, no_sleep):
        fake_drive.fail_payloads = 5
        with pytest.raises(RetryExhausted) as exc:
            upload(fake_drive, io.BytesIO(b"q" * 10), ctx=QUIET)
        assert exc.value.transferred == 0

    def test_offset_past_address_space(self, fake_drive):
        with pytest.raises(AddressOutOfRange) as exc:
            upload(fake_drive, io.BytesIO(b"x" * MIB), offset=0xFFFF0000, ctx=QUIET)
        assert exc.value.opcode == CMD_LOADRAM
        assert isinstance(exc.value, ValueError)
        assert fake_drive.frames == []


# =========================================================================
# Download
# =========================================================================

class TestDownload:

    def test_one_mib_in_two_chunks(self, fake_drive):
        data = os.urandom(MIB)
        fake_drive.banks[Bank.CARTROM][:] = data
        sink = io.BytesIO()
        result = download(fake_drive, sink, size=MIB, ctx=QUIET)

        assert fake_drive.read_chunksize == 524288
        assert fake_drive.frames_for(CMD_DUMPRAM) == [
            (0, 0x01080000),
            (524288, 0x01080000),
        ]
        assert sink.getvalue() == data
        assert result.offset == MIB
        assert result.chunks == 2

    def test_small_download(self, fake_drive):
        fake_drive.banks[Bank.EEPROM16][:] = b"E" * 100
        sink = io.BytesIO()
        result = download(fake_drive, sink, size=100, offset=0, bank=Bank.EEPROM16, ctx=QUIET)
        assert result.chunks == 1
        assert fake_drive.frames_for(CMD_DUMPRAM) == [(0, 0x06000064)]
        assert sink.getvalue() == b"E" * 100

    def test_default_size_constant(self):
        assert DEFAULT_DOWNLOAD_SIZE == 256 * MIB

    def test_default_size_used_when_unspecified(self, fake_drive):
        sink = io.BytesIO()
        with patch("drive64.transfer.DEFAULT_DOWNLOAD_SIZE", 4096):
            result = download(fake_drive, sink, ctx=QUIET)
        assert result.transferred == 4096
        assert len(sink.getvalue()) == 4096

    def test_offset_past_address_space(self, fake_drive):
        with pytest.raises(AddressOutOfRange):
            download(fake_drive, io.BytesIO(), size=2, offset=0xFFFFFFFF, ctx=QUIET)
        assert fake_drive.frames == []

    def test_partial_reads_continue(self, fake_drive):
        data = os.urandom(3000)
        fake_drive.banks[Bank.CARTROM][:] = data
        fake_drive.max_payload = 1024
        sink = io.BytesIO()
        result = download(fake_drive, sink, size=3000, offset=0, ctx=QUIET)
        assert [p[0] for p in fake_drive.frames_for(CMD_DUMPRAM)] == [0, 1024, 2048]
        assert sink.getvalue() == data
        assert result.offset == 3000

    def test_exhausted_reports_prior_progress(self, fake_drive, no_sleep):
        fake_drive.fail_start = 1
        fake_drive.fail_payloads = 100
        sink = io.BytesIO()
        with pytest.raises(RetryExhausted) as exc:
            download(fake_drive, sink, size=MIB, ctx=QUIET)
        assert exc.value.transferred == 524288
        assert exc.value.opcode == CMD_DUMPRAM
        assert len(sink.getvalue()) == 524288
        assert fake_drive.payload_attempts == 6


# =========================================================================
# Progress
# =========================================================================

class TestProgress:

    def test_progress_lines(self):
        out = io.StringIO()
        upload(FakeDrive(), io.BytesIO(bytes(MIB)), ctx=SessionContext(progress_stream=out))
        text = out.getvalue()
        assert "\r * Uploading...  50%" in text
        assert "\r * Uploading... 100%" in text
        assert text.endswith("\r * Uploading... Done.\n")

    def test_download_label(self):
        out = io.StringIO()
        download(FakeDrive(), io.BytesIO(), size=10, ctx=SessionContext(progress_stream=out))
        assert "Downloading... Done." in out.getvalue()

    def test_quiet_prints_nothing(self):
        out = io.StringIO()
        upload(FakeDrive(), io.BytesIO(b"abc"),
               ctx=SessionContext(verbosity=-1, progress_stream=out))
        assert out.getvalue() == ""
