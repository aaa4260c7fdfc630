"""
FTDI USB link to the 64drive, over pyusb.

The 64drive talks through an FTDI bridge:
  HW2 - FT232H  (0403:6014) in synchronous FIFO mode
  HW1 - FT2232H (0403:6010, interface A) in plain FIFO mode

This module speaks the FTDI vendor requests directly (the same ones
libftdi sends) so the only native dependency is libusb:

  SIO_RESET            (0x00)  reset / purge RX / purge TX
  SIO_SET_LATENCY      (0x09)  latency timer in ms
  SIO_SET_BITMODE      (0x0B)  value = mode << 8 | pin mask

Every bulk IN packet from an FTDI chip starts with two modem-status
bytes; ``read()`` strips them so callers see only payload.

Linux dependencies:
  pyusb:  ``pip install pyusb``  (needs libusb1 - ``apt install libusb-1.0-0``)
  The ftdi_sio kernel driver is detached on open.
"""

import logging
from typing import Any, List, Optional

import usb.core
import usb.util

from .constants import FTDI_VID, KNOWN_DEVICES, KnownDevice
from .core.models import FtdiDeviceInfo
from .device_base import DeviceSession
from .errors import DeviceNotFound, DeviceSetupError

log = logging.getLogger(__name__)

# =========================================================================
# FTDI constants (from libftdi ftdi.h)
# =========================================================================

FTDI_DEVICE_OUT_REQTYPE = 0x40  # vendor | host-to-device | device

SIO_RESET_REQUEST = 0x00
SIO_SET_LATENCY_TIMER_REQUEST = 0x09
SIO_SET_BITMODE_REQUEST = 0x0B

SIO_RESET_SIO = 0
SIO_RESET_PURGE_RX = 1
SIO_RESET_PURGE_TX = 2

BITMODE_RESET = 0x00
BITMODE_SYNCFF = 0x40

# Interface A
FTDI_INTERFACE = 0
FTDI_INDEX = 1
EP_IN = 0x81
EP_OUT = 0x02

MODEM_STATUS_SIZE = 2
DEFAULT_PACKET_SIZE = 512
DEFAULT_CHUNKSIZE = 4096

DEFAULT_READ_TIMEOUT_MS = 5000
DEFAULT_WRITE_TIMEOUT_MS = 5000
DEFAULT_LATENCY_MS = 255


def _usb_string(dev: Any, index: int, strict: bool = False) -> str:
    if not index:
        return ""
    try:
        return usb.util.get_string(dev, index) or ""
    except (usb.core.USBError, ValueError, NotImplementedError):
        if strict:
            raise
        return ""


class FtdiSession(DeviceSession):
    """64drive link over an FTDI FIFO, using pyusb.

    ``open()`` probes the known 64drive ids (HW2 first), claims interface
    A and runs the one-time setup: reset, bitmode (HW2 only), latency
    timer, purge.
    """

    def __init__(self, read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS,
                 write_timeout_ms: int = DEFAULT_WRITE_TIMEOUT_MS,
                 latency_ms: int = DEFAULT_LATENCY_MS,
                 devices: tuple = KNOWN_DEVICES):
        self.read_timeout_ms = read_timeout_ms
        self.write_timeout_ms = write_timeout_ms
        self.latency_ms = latency_ms
        self._candidates = devices
        self._device = None
        self._is_open = False
        self.hw_version = 0
        self.known: Optional[KnownDevice] = None
        self.packet_size = DEFAULT_PACKET_SIZE
        self.write_chunksize = DEFAULT_CHUNKSIZE
        self.read_chunksize = DEFAULT_CHUNKSIZE
        self._rx_buffer = bytearray()

    # -- open / setup -----------------------------------------------------

    def _find(self) -> Any:
        for known in self._candidates:
            def _match(dev, descr=known.description):
                return _usb_string(dev, dev.iProduct) == descr

            dev = usb.core.find(idVendor=known.vid, idProduct=known.pid,  # type: ignore[union-attr]
                                custom_match=_match)
            if dev is not None:
                self.known = known
                self.hw_version = known.hw_version
                log.info("Found %s [%04x:%04x], HW%d",
                         known.description, known.vid, known.pid, known.hw_version)
                return dev
        raise DeviceNotFound("64drive device not found.")

    def open(self) -> None:
        """Find the 64drive, claim interface A and configure the FIFO."""
        dev = self._find()

        try:
            if dev.is_kernel_driver_active(FTDI_INTERFACE):
                dev.detach_kernel_driver(FTDI_INTERFACE)
                log.debug("Detached kernel driver from interface %d", FTDI_INTERFACE)
        except (usb.core.USBError, NotImplementedError) as e:
            log.debug("Kernel driver detach: %s", e)

        dev.set_configuration()
        usb.util.claim_interface(dev, FTDI_INTERFACE)
        self._device = dev
        self._is_open = True
        try:
            self._detect_packet_size()
            self.setup()
        except Exception:
            self.close()
            raise

    def _detect_packet_size(self) -> None:
        try:
            cfg = self._device.get_active_configuration()  # type: ignore[union-attr]
            intf = cfg[(FTDI_INTERFACE, 0)]
            for ep in intf:
                if ep.bEndpointAddress == EP_IN and ep.wMaxPacketSize:
                    self.packet_size = ep.wMaxPacketSize
            log.debug("IN packet size: %d", self.packet_size)
        except (usb.core.USBError, KeyError, IndexError) as e:
            log.debug("Packet size detection failed: %s", e)

    def _control(self, request: int, value: int, what: str) -> None:
        if self._device is None:
            raise DeviceSetupError(f"{what}: device not open")
        try:
            self._device.ctrl_transfer(FTDI_DEVICE_OUT_REQTYPE, request, value,
                                       FTDI_INDEX, None, self.write_timeout_ms)
        except usb.core.USBError as e:
            raise DeviceSetupError(f"{what} failed: {e}") from e

    def reset(self) -> None:
        log.debug("Resetting device")
        self._control(SIO_RESET_REQUEST, SIO_RESET_SIO, "ftdi_usb_reset")
        self._rx_buffer.clear()

    def set_bitmode(self, mode: int, mask: int = 0xFF) -> None:
        self._control(SIO_SET_BITMODE_REQUEST, (mode << 8) | mask,
                      f"set_bitmode(0x{mode:02X})")

    def set_latency_timer(self, latency_ms: int) -> None:
        if not 1 <= latency_ms <= 255:
            raise ValueError(f"latency out of range: {latency_ms}")
        self._control(SIO_SET_LATENCY_TIMER_REQUEST, latency_ms, "set_latency_timer")

    def setup(self) -> None:
        """Reset, select the FIFO mode, set latency and purge."""
        self.reset()
        if self.hw_version == 2:
            log.debug("Setting synchronous mode")
            self.set_bitmode(BITMODE_RESET)
            self.set_bitmode(BITMODE_SYNCFF)
        self.set_latency_timer(self.latency_ms)
        log.debug("Purging buffers")
        self._purge()

    def close(self) -> None:
        """Release interface A and the USB handle."""
        if self._device is not None:
            try:
                usb.util.release_interface(self._device, FTDI_INTERFACE)
            except usb.core.USBError as e:
                log.debug("release_interface: %s", e)
            usb.util.dispose_resources(self._device)
            self._device = None
            log.info("64drive closed")
        self._is_open = False
        self._rx_buffer.clear()

    # -- link primitives --------------------------------------------------

    def _purge(self) -> None:
        self._control(SIO_RESET_REQUEST, SIO_RESET_PURGE_RX, "purge RX")
        self._control(SIO_RESET_REQUEST, SIO_RESET_PURGE_TX, "purge TX")
        self._rx_buffer.clear()

    def purge_buffers(self) -> None:
        """Purge both FIFOs; failures are logged, the next attempt decides."""
        try:
            self._purge()
        except DeviceSetupError as e:
            log.warning("%s", e)

    def set_write_chunksize(self, size: int) -> None:
        self.write_chunksize = max(1, size)
        log.debug("Write chunk size: %d", self.write_chunksize)

    def set_read_chunksize(self, size: int) -> None:
        self.read_chunksize = max(1, size)
        log.debug("Read chunk size: %d", self.read_chunksize)

    def write(self, data: bytes) -> int:
        """Bulk write in ``write_chunksize`` pieces.  Returns bytes written."""
        if not self._is_open or self._device is None:
            raise RuntimeError("Session not open")
        view = memoryview(data)
        written = 0
        while written < len(view):
            piece = view[written:written + self.write_chunksize]
            try:
                n = self._device.write(EP_OUT, piece, timeout=self.write_timeout_ms)
            except usb.core.USBError as e:
                log.debug("Bulk write failed after %d bytes: %s", written, e)
                break
            if n <= 0:
                break
            written += n
        return written

    def _strip_status(self, raw: bytes) -> bytes:
        """Drop the 2 modem-status bytes at the start of every packet."""
        payload = bytearray()
        for pos in range(0, len(raw), self.packet_size):
            payload += raw[pos + MODEM_STATUS_SIZE:pos + self.packet_size]
        return bytes(payload)

    def read(self, size: int) -> bytes:
        """Bulk read up to *size* payload bytes.  Returns ``b""`` on failure."""
        if not self._is_open or self._device is None:
            raise RuntimeError("Session not open")

        # whole packets, so the status-byte stripping lines up
        packets = max(1, -(-self.read_chunksize // (self.packet_size - MODEM_STATUS_SIZE)))
        request = packets * self.packet_size

        while len(self._rx_buffer) < size:
            try:
                raw = bytes(self._device.read(EP_IN, request, timeout=self.read_timeout_ms))
            except usb.core.USBError as e:
                log.debug("Bulk read failed after %d bytes: %s", len(self._rx_buffer), e)
                break
            payload = self._strip_status(raw)
            if not payload:
                break
            self._rx_buffer += payload

        data = bytes(self._rx_buffer[:size])
        del self._rx_buffer[:size]
        return data

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def device(self) -> Any:
        """Raw pyusb device handle (for diagnostics)."""
        return self._device


# =========================================================================
# Device listing
# =========================================================================

def find_ftdi_devices() -> List[FtdiDeviceInfo]:
    """List every FTDI-vendor USB device with its descriptor strings."""
    devices = []
    found = usb.core.find(find_all=True, idVendor=FTDI_VID)  # type: ignore[union-attr]
    for index, dev in enumerate(found or []):
        info = FtdiDeviceInfo(index=index, vid=dev.idVendor, pid=dev.idProduct)
        try:
            info.manufacturer = _usb_string(dev, dev.iManufacturer, strict=True)
            info.description = _usb_string(dev, dev.iProduct, strict=True)
            info.serial = _usb_string(dev, dev.iSerialNumber, strict=True)
        except (usb.core.USBError, ValueError, NotImplementedError) as e:
            info.error = f"reading descriptor strings failed: {e}"
        devices.append(info)
    return devices
