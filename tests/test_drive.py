"""Tests for drive -- Drive64 facade and open_session."""

import io
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeDrive
from drive64.constants import CMD_GETVER, CMD_LOADRAM, CMD_SETCIC, Bank, Cic
from drive64.core.models import SessionContext
from drive64.drive import Drive64, open_session
from drive64.errors import CapabilityUnsupported


class TestDrive64:

    def test_open_runs_handshake_once(self):
        fake = FakeDrive()
        drive = Drive64(session=fake)
        drive.open()
        drive.open()
        assert fake.opcodes() == [CMD_GETVER]
        assert drive.version_info.variant == "B20"

    def test_reopens_closed_session(self):
        fake = FakeDrive()
        fake.close()
        Drive64(session=fake).open()
        assert fake.opened == 1

    def test_get_version_refreshes(self):
        fake = FakeDrive()
        drive = Drive64(session=fake).open()
        info = drive.get_version()
        assert info.describe() == "HW2 rev B20"
        assert fake.opcodes() == [CMD_GETVER, CMD_GETVER]

    def test_upload_uses_context(self):
        fake = FakeDrive()
        out = io.StringIO()
        drive = Drive64(session=fake, ctx=SessionContext(progress_stream=out))
        result = drive.upload(io.BytesIO(b"rom!"), bank=Bank.CARTROM)
        assert result.transferred == 4
        assert CMD_LOADRAM in fake.opcodes()
        assert "Uploading... Done." in out.getvalue()

    def test_download(self):
        fake = FakeDrive()
        fake.banks[Bank.SRAM256][:] = b"save"
        sink = io.BytesIO()
        drive = Drive64(session=fake, ctx=SessionContext(verbosity=-1))
        drive.download(sink, size=4, bank=Bank.SRAM256)
        assert sink.getvalue() == b"save"

    def test_set_cic_uses_version_info(self):
        fake = FakeDrive()
        Drive64(session=fake).set_cic(Cic.CIC_7101)
        assert fake.frames_for(CMD_SETCIC) == [(0x80000002,)]

    def test_set_cic_old_hardware(self):
        fake = FakeDrive(hw_version=1, variant=b"A10")
        with pytest.raises(CapabilityUnsupported):
            Drive64(session=fake).set_cic(Cic.CIC_6102)
        assert fake.frames_for(CMD_SETCIC) == []

    def test_context_manager_closes(self):
        fake = FakeDrive()
        with Drive64(session=fake) as drive:
            assert drive.version_info is not None
        assert fake.closed == 1


class TestOpenSession:

    def test_passes_settings(self):
        with patch("drive64.device_ftdi.FtdiSession") as cls:
            session = open_session(read_timeout_ms=100, latency_ms=2)
        cls.assert_called_once_with(read_timeout_ms=100, latency_ms=2)
        session.open.assert_called_once_with()

    def test_drive_acquires_session_lazily(self):
        fake = FakeDrive()
        with patch("drive64.drive.open_session", MagicMock(return_value=fake)) as opener:
            drive = Drive64(write_timeout_ms=10)
            opener.assert_not_called()
            drive.open()
        opener.assert_called_once_with(write_timeout_ms=10)
        assert drive.session is fake
