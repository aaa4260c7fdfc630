"""
drive64 - 64drive USB tool for Linux

Host-side protocol engine and CLI for the 64drive N64 cartridge
programmer: upload/download ROM and save banks, select the CIC boot
chip, query the hardware revision.

Usage:
    # As a library
    from drive64 import Drive64, Bank
    with Drive64() as drive:
        with open("game.z64", "rb") as f:
            drive.upload(f, bank=Bank.CARTROM)

    # Command line
    drive64 -l game.z64 -c 6102
    drive64 -b eeprom -d game.eep
"""

from drive64.__version__ import __version__
from drive64.cic import set_cic
from drive64.command import CommandFrame, encode_command, send_command
from drive64.constants import Bank, Cic, SaveType
from drive64.core.models import SessionContext, TransferResult, VersionInfo
from drive64.device_base import DeviceSession
from drive64.drive import Drive64, open_session
from drive64.errors import (
    AddressOutOfRange,
    CapabilityUnsupported,
    CommunicationFailure,
    DeviceNotFound,
    Drive64Error,
    FrameTooLarge,
    LinkReadFailure,
    LinkWriteFailure,
    ProtocolMismatch,
    RetryExhausted,
    TooManyParameters,
)
from drive64.handshake import get_version
from drive64.retry import BoundedRetry
from drive64.transfer import compute_chunk_size, download, upload

__all__ = [
    "__version__",
    # Session
    "Drive64",
    "DeviceSession",
    "SessionContext",
    "open_session",
    # Protocol engine
    "CommandFrame",
    "encode_command",
    "send_command",
    "get_version",
    "upload",
    "download",
    "compute_chunk_size",
    "set_cic",
    "BoundedRetry",
    # Models and tables
    "Bank",
    "Cic",
    "SaveType",
    "TransferResult",
    "VersionInfo",
    # Errors
    "Drive64Error",
    "FrameTooLarge",
    "TooManyParameters",
    "LinkReadFailure",
    "LinkWriteFailure",
    "RetryExhausted",
    "ProtocolMismatch",
    "CommunicationFailure",
    "CapabilityUnsupported",
    "DeviceNotFound",
    "AddressOutOfRange",
]
