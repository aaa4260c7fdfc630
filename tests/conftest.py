"""Shared fixtures: an in-memory 64drive that speaks the command protocol."""

import struct
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import pytest

from drive64.constants import (
    CMD_DUMPRAM,
    CMD_GETVER,
    CMD_LOADRAM,
    COMMAND_TAG,
    DEV_MAGIC,
    VERSION_RESPONSE_SIZE,
)
from drive64.device_base import DeviceSession


class FakeDrive(DeviceSession):
    """DeviceSession that decodes frames and emulates bank memory.

    Failure injection:
      fail_start     successful payload transfers before failures begin
      fail_payloads  payload transfers that then report no progress
      max_payload    cap on bytes moved by one payload transfer
      bad_magic      GETVER responses carrying the wrong magic
      empty_version  GETVER responses that never arrive
    """

    def __init__(self, hw_version: int = 2, variant: bytes = b"B20"):
        self.hw_version = hw_version
        self.variant = variant
        self.banks: Dict[int, bytearray] = defaultdict(bytearray)
        self.frames: List[Tuple[int, Tuple[int, ...]]] = []
        self.raw_frames: List[bytes] = []
        self.payload_sizes: List[int] = []
        self.payload_attempts = 0
        self.purges = 0
        self.write_chunksize: Optional[int] = None
        self.read_chunksize: Optional[int] = None
        self.fail_start = 0
        self.fail_payloads = 0
        self.max_payload: Optional[int] = None
        self.bad_magic = 0
        self.empty_version = 0
        self.opened = 0
        self.closed = 0
        self._is_open = True
        self._pending: Optional[Tuple[int, int, int, int]] = None
        self._response = b""

    # -- helpers for tests --------------------------------------------------

    def opcodes(self) -> List[int]:
        return [op for op, _ in self.frames]

    def frames_for(self, opcode: int) -> List[Tuple[int, ...]]:
        return [params for op, params in self.frames if op == opcode]

    def _payload_fails(self) -> bool:
        self.payload_attempts += 1
        if len(self.payload_sizes) >= self.fail_start and self.fail_payloads > 0:
            self.fail_payloads -= 1
            return True
        return False

    def _payload_len(self, size: int, wanted: int) -> int:
        n = min(size, wanted)
        if self.max_payload is not None:
            n = min(n, self.max_payload)
        return n

    def _version_response(self) -> bytes:
        magic = DEV_MAGIC
        if self.bad_magic > 0:
            self.bad_magic -= 1
            magic = 0xDEADBEEF
        resp = self.variant + b"\x00" + struct.pack(">I", magic)
        return resp.ljust(VERSION_RESPONSE_SIZE, b"\x00")

    # -- DeviceSession ----------------------------------------------------

    def open(self) -> None:
        self.opened += 1
        self._is_open = True

    def close(self) -> None:
        self.closed += 1
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def set_write_chunksize(self, size: int) -> None:
        self.write_chunksize = size

    def set_read_chunksize(self, size: int) -> None:
        self.read_chunksize = size

    def purge_buffers(self) -> None:
        self.purges += 1
        self._response = b""

    def write(self, data: bytes) -> int:
        data = bytes(data)
        if self._pending is not None and self._pending[0] == CMD_LOADRAM:
            if self._payload_fails():
                return 0
            _, offset, size, bank = self._pending
            n = self._payload_len(size, len(data))
            mem = self.banks[bank]
            if len(mem) < offset + n:
                mem.extend(b"\x00" * (offset + n - len(mem)))
            mem[offset:offset + n] = data[:n]
            self.payload_sizes.append(n)
            self._pending = None
            return n

        assert data[1:4] == COMMAND_TAG, f"not a command frame: {data[:8].hex()}"
        count = (len(data) - 4) // 4
        params = struct.unpack(f">{count}I", data[4:])
        self.frames.append((data[0], params))
        self.raw_frames.append(data)
        if data[0] in (CMD_LOADRAM, CMD_DUMPRAM):
            self._pending = (data[0], params[0], params[1] & 0xFFFFFF, params[1] >> 24)
        elif data[0] == CMD_GETVER:
            if self.empty_version > 0:
                self.empty_version -= 1
                self._response = b""
            else:
                self._response = self._version_response()
        return len(data)

    def read(self, size: int) -> bytes:
        if self._pending is not None and self._pending[0] == CMD_DUMPRAM:
            if self._payload_fails():
                return b""
            _, offset, want, bank = self._pending
            n = self._payload_len(want, size)
            mem = self.banks[bank]
            data = bytes(mem[offset:offset + n]).ljust(n, b"\x00")
            self.payload_sizes.append(n)
            self._pending = None
            return data
        resp, self._response = self._response[:size], self._response[size:]
        return resp


@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip the 10 ms retry delays."""
    calls = []
    monkeypatch.setattr("drive64.retry.time.sleep", calls.append)
    return calls
