"""
Protocol constants for the 64drive USB cartridge programmer.

Opcodes, the GETVER magic, USB ids and the bank / CIC / save-type tables.
Numeric values match the 64drive firmware; the name tables are what the
CLI accepts on the command line.
"""

from enum import IntEnum
from typing import Dict, NamedTuple, Optional, Tuple

# =========================================================================
# Command opcodes
# =========================================================================

CMD_LOADRAM = 0x20
CMD_DUMPRAM = 0x30
CMD_SETSAVE = 0x70        # reserved, save emulation not implemented
CMD_SETCIC = 0x72
CMD_GETVER = 0x80
CMD_UPGRADE = 0x84        # reserved, firmware upgrade not implemented
CMD_UPGREPORT = 0x85      # reserved
CMD_STD_ENTER = 0x88      # reserved
CMD_STD_LEAVE = 0x89      # reserved
CMD_PI_RD_32 = 0x90       # reserved
CMD_PI_WR_32 = 0x91       # reserved
CMD_PI_RD_BURST = 0x92    # reserved
CMD_PI_WR_BURST = 0x93    # reserved
CMD_PI_WR_BL = 0x94       # reserved
CMD_PI_WR_BL_LONG = 0x95  # reserved
CMD_SI_OP = 0x98          # reserved

COMMAND_NAMES: Dict[int, str] = {
    CMD_LOADRAM: "LOADRAM",
    CMD_DUMPRAM: "DUMPRAM",
    CMD_SETSAVE: "SETSAVE",
    CMD_SETCIC: "SETCIC",
    CMD_GETVER: "GETVER",
    CMD_UPGRADE: "UPGRADE",
    CMD_UPGREPORT: "UPGREPORT",
    CMD_STD_ENTER: "STD_ENTER",
    CMD_STD_LEAVE: "STD_LEAVE",
    CMD_PI_RD_32: "PI_RD_32",
    CMD_PI_WR_32: "PI_WR_32",
    CMD_PI_RD_BURST: "PI_RD_BURST",
    CMD_PI_WR_BURST: "PI_WR_BURST",
    CMD_PI_WR_BL: "PI_WR_BL",
    CMD_PI_WR_BL_LONG: "PI_WR_BL_LONG",
    CMD_SI_OP: "SI_OP",
}


def command_name(opcode: int) -> str:
    """Human-readable opcode name, e.g. ``'GETVER'`` or ``'0x42'``."""
    return COMMAND_NAMES.get(opcode, f"0x{opcode:02X}")


# Command frame: opcode + 'CMD' tag + up to 7 big-endian u32 params
COMMAND_TAG = b"CMD"
COMMAND_HEADER_SIZE = 4
COMMAND_BUFFER_SIZE = 32
MAX_COMMAND_PARAMS = (COMMAND_BUFFER_SIZE - COMMAND_HEADER_SIZE) // 4  # 7

# GETVER response
DEV_MAGIC = 0x55444556  # "UDEV"
VERSION_RESPONSE_SIZE = 64
VARIANT_LENGTH = 3

# Variant letter of the first hardware revision (no CIC select)
CIC_RESTRICTED_VARIANT = "A"
CIC_APPLY_FLAG = 1 << 31

# =========================================================================
# USB identification
# =========================================================================

FTDI_VID = 0x0403


class KnownDevice(NamedTuple):
    vid: int
    pid: int
    hw_version: int
    description: str


# Probed in order; HW2 first
KNOWN_DEVICES: Tuple[KnownDevice, ...] = (
    KnownDevice(FTDI_VID, 0x6014, 2, "64drive USB device"),
    KnownDevice(FTDI_VID, 0x6010, 1, "64drive USB device A"),
)

# =========================================================================
# Transfer sizing
# =========================================================================

KIB = 1024
MIB = 1024 * KIB

CHUNK_UNIT = 128 * KIB
CHUNK_SIZE_MASK = 0xFFFFFF
BANK_SHIFT = 24

# Offsets travel as a full u32 command parameter
ADDRESS_LIMIT = 1 << 32

# No "bank size" query exists; downloads without an explicit size read this much
DEFAULT_DOWNLOAD_SIZE = 256 * MIB

TRANSFER_MAX_ATTEMPTS = 5
TRANSFER_RETRY_DELAY_S = 0.010
HANDSHAKE_MAX_ATTEMPTS = 4

# =========================================================================
# Banks, CIC modes, save types
# =========================================================================


class Bank(IntEnum):
    """Addressable memory region on the cartridge."""
    INVALID = 0
    CARTROM = 1
    SRAM256 = 2
    SRAM768 = 3
    FLASHRAM1M = 4
    FLASHPKM1M = 5   # Pokemon Stadium 2 flash
    EEPROM16 = 6


BANK_NAMES: Dict[str, Bank] = {
    "rom": Bank.CARTROM,
    "sram256": Bank.SRAM256,
    "sram768": Bank.SRAM768,
    "flash": Bank.FLASHRAM1M,
    "pokemon": Bank.FLASHPKM1M,
    "eeprom": Bank.EEPROM16,
}


class Cic(IntEnum):
    """Boot chip the cartridge emulates."""
    CIC_6101 = 0
    CIC_6102 = 1
    CIC_7101 = 2
    CIC_7102 = 3
    CIC_X103 = 4
    CIC_X105 = 5
    CIC_X106 = 6
    CIC_5101 = 7


class CicType(NamedTuple):
    number: int
    cic: Cic
    description: str


CIC_TYPES: Tuple[CicType, ...] = (
    CicType(6101, Cic.CIC_6101, "Star Fox"),
    CicType(6102, Cic.CIC_6102, "most NTSC games"),
    CicType(7101, Cic.CIC_7101, "most PAL games"),
    CicType(7102, Cic.CIC_7102, "Lylat Wars"),
    CicType(103, Cic.CIC_X103, "covers 6103 and 7103"),
    CicType(105, Cic.CIC_X105, "covers 6105 and 7105"),
    CicType(106, Cic.CIC_X106, "covers 6106 and 7106"),
    CicType(5101, Cic.CIC_5101, "Aleck64"),
)


class SaveType(IntEnum):
    """Save emulation types (SETSAVE is reserved, listed for reference)."""
    INVALID = 0
    EEP4K = 1
    EEP16K = 2
    SRAM256K = 3
    FLASHRAM1M = 4
    SRAM768K = 5
    FLASHPKM1M = 6


def lookup_bank(name: str) -> Optional[Bank]:
    """Resolve a bank name (``'rom'``) or numeric id (``'1'``).

    Returns None for unknown names and out-of-range ids.
    """
    bank = BANK_NAMES.get(name.lower())
    if bank is not None:
        return bank
    try:
        value = int(name, 0)
    except ValueError:
        return None
    if Bank.CARTROM <= value <= Bank.EEPROM16:
        return Bank(value)
    return None


def lookup_cic(value: int) -> Optional[CicType]:
    """Resolve a CIC by chip number (6102) or by table index (1).

    The table index form is accepted for compatibility with the Windows
    tool, where ``3`` means 7102.
    """
    for index, entry in enumerate(CIC_TYPES):
        if entry.number == value or value == index:
            return entry
    return None
