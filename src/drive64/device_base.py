"""
Base class for the raw link to a 64drive.

DeviceSession is the byte-level interface the protocol engine borrows
for the duration of one call.  ``FtdiSession`` implements it over pyusb;
tests inject a mock or a small in-memory fake.

Return conventions follow libftdi: ``write()`` returns the number of
bytes accepted and ``read()`` the bytes received.  A link failure is
reported as 0 / ``b""`` rather than raised, so the engine decides whether
to retry.
"""

from abc import ABC, abstractmethod


class DeviceSession(ABC):
    """Abstract 64drive link, mockable for testing."""

    hw_version: int = 0

    @abstractmethod
    def open(self) -> None:
        """Find the device, reset it and configure the FIFO mode."""

    @abstractmethod
    def close(self) -> None:
        """Release the USB handle."""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write raw bytes.  Returns bytes written (0 on link failure)."""

    @abstractmethod
    def read(self, size: int) -> bytes:
        """Read up to *size* raw bytes.  Returns ``b""`` on link failure."""

    @abstractmethod
    def set_write_chunksize(self, size: int) -> None:
        """Match the internal bulk write chunking to the engine's chunk."""

    @abstractmethod
    def set_read_chunksize(self, size: int) -> None:
        """Match the internal bulk read chunking to the engine's chunk."""

    @abstractmethod
    def purge_buffers(self) -> None:
        """Drop anything pending in the RX and TX FIFOs."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently open."""

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()
