"""
Drive64 - session-level facade over the protocol engine.

Owns the device session and the VersionInfo learned by the handshake,
and threads one SessionContext through every call::

    with Drive64(ctx=SessionContext(verbosity=1)) as drive:
        print(drive.version_info.describe())
        with open("game.z64", "rb") as f:
            drive.upload(f)
        drive.set_cic(Cic.CIC_6102)

Setup (open, reset, FIFO mode, handshake) runs once, on first use.
One operation at a time: the wire protocol cannot interleave commands.
"""

import logging
from typing import BinaryIO, Optional

from . import cic, handshake, transfer
from .constants import Bank
from .core.models import SessionContext, TransferResult, VersionInfo
from .device_base import DeviceSession

log = logging.getLogger(__name__)


def open_session(read_timeout_ms: Optional[int] = None,
                 write_timeout_ms: Optional[int] = None,
                 latency_ms: Optional[int] = None) -> DeviceSession:
    """Open the first 64drive found on the bus.

    Raises:
        DeviceNotFound: no 64drive attached.
        DeviceSetupError: the FTDI bridge rejected a setup request.
    """
    from .device_ftdi import FtdiSession

    kwargs = {}
    if read_timeout_ms is not None:
        kwargs['read_timeout_ms'] = read_timeout_ms
    if write_timeout_ms is not None:
        kwargs['write_timeout_ms'] = write_timeout_ms
    if latency_ms is not None:
        kwargs['latency_ms'] = latency_ms
    session = FtdiSession(**kwargs)
    session.open()
    return session


class Drive64:
    """A 64drive plus the state learned from it."""

    def __init__(self, session: Optional[DeviceSession] = None,
                 ctx: Optional[SessionContext] = None, **session_kwargs):
        self.session = session
        self.ctx = ctx or SessionContext()
        self.version_info: Optional[VersionInfo] = None
        self._session_kwargs = session_kwargs
        self._is_setup = False

    def open(self) -> 'Drive64':
        """Acquire the session and run the handshake (once)."""
        if self._is_setup:
            return self
        if self.session is None:
            self.session = open_session(**self._session_kwargs)
        elif not self.session.is_open:
            self.session.open()
        log.info("Found 64drive version %d", self.session.hw_version)
        self.version_info = handshake.get_version(self.session, ctx=self.ctx)
        self._is_setup = True
        return self

    def close(self) -> None:
        if self.session is not None:
            self.session.close()
        self._is_setup = False

    def get_version(self) -> VersionInfo:
        """Re-run the handshake and refresh ``version_info``."""
        self.open()
        assert self.session is not None
        self.version_info = handshake.get_version(self.session, ctx=self.ctx)
        return self.version_info

    def upload(self, source: BinaryIO, size: Optional[int] = None,
               offset: int = 0, bank: int = Bank.CARTROM) -> TransferResult:
        self.open()
        assert self.session is not None
        return transfer.upload(self.session, source, size=size, offset=offset,
                               bank=bank, ctx=self.ctx)

    def download(self, sink: BinaryIO, size: Optional[int] = None,
                 offset: int = 0, bank: int = Bank.CARTROM) -> TransferResult:
        self.open()
        assert self.session is not None
        return transfer.download(self.session, sink, size=size, offset=offset,
                                 bank=bank, ctx=self.ctx)

    def set_cic(self, cic_id: int) -> int:
        self.open()
        assert self.session is not None
        return cic.set_cic(self.session, self.version_info, cic_id)

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()
