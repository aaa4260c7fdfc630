"""
CIC boot-chip selection.

SETCIC takes one parameter: bit 31 set ("apply now") OR'd with the CIC
id.  The first hardware revision (variant ``A..``) has a fixed CIC and
must not be sent this command.
"""

import logging
from typing import Optional

from .command import CommandFrame, send_command
from .constants import CIC_APPLY_FLAG, CMD_SETCIC, Cic
from .core.models import VersionInfo
from .device_base import DeviceSession
from .errors import CapabilityUnsupported, Drive64Error

log = logging.getLogger(__name__)


def cic_parameter(cic: int) -> int:
    """SETCIC parameter for *cic*, e.g. ``Cic.CIC_6102`` -> ``0x80000001``."""
    return CIC_APPLY_FLAG | int(cic)


def set_cic(session: DeviceSession, version_info: Optional[VersionInfo],
            cic: int) -> int:
    """Select the CIC mode.  Returns the number of frame bytes sent.

    Raises:
        Drive64Error: the handshake has not been run yet.
        CapabilityUnsupported: this hardware revision cannot change CIC.
    """
    if version_info is None:
        raise Drive64Error("version handshake required before setting CIC",
                           opcode=CMD_SETCIC)
    if not version_info.supports_cic:
        raise CapabilityUnsupported(
            "This device does not support changing CIC mode.", opcode=CMD_SETCIC)

    try:
        name = Cic(cic).name
    except ValueError:
        name = str(cic)
    log.info("Selecting CIC mode #%d (%s)", int(cic), name)

    param = cic_parameter(cic)
    send_command(session, CMD_SETCIC, param)
    return len(CommandFrame(CMD_SETCIC, param))
