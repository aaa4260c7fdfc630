#!/usr/bin/env python3
"""
drive64 - Command Line Interface

Options are processed in the order given, so::

    drive64 -l file.rom -b eeprom -l file.sav

uploads file.rom to ROM and file.sav to EEPROM.  ``-b`` applies to every
following transfer; ``-o`` and ``-z`` apply to the next one only.
"""

import argparse
import logging
import sys
from typing import Callable, List, Optional, Tuple

from .__version__ import __version__
from .conf import Settings, load_settings
from .constants import ADDRESS_LIMIT, CIC_TYPES, lookup_bank, lookup_cic
from .core.models import SessionContext
from .drive import Drive64
from .errors import Drive64Error

log = logging.getLogger(__name__)

Op = Tuple[str, object]


class _Ordered(argparse.Action):
    """Record each option in ``namespace.ops`` in command-line order."""

    def __call__(self, parser, namespace, values, option_string=None):
        ops = getattr(namespace, 'ops', None)
        if ops is None:
            ops = []
            namespace.ops = ops
        ops.append((self.dest, values))


def _bank_arg(value: str):
    bank = lookup_bank(value)
    if bank is None:
        raise argparse.ArgumentTypeError(f"Invalid bank: {value}")
    return bank


def _cic_arg(value: str):
    try:
        entry = lookup_cic(int(value, 10))
    except ValueError:
        entry = None
    if entry is None:
        raise argparse.ArgumentTypeError(f"Invalid CIC: {value}")
    return entry


def _int_arg(value: str) -> int:
    try:
        n = int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number: {value}")
    if n < 0:
        raise argparse.ArgumentTypeError(f"Must not be negative: {value}")
    return n


def _offset_arg(value: str) -> int:
    n = _int_arg(value)
    if n >= ADDRESS_LIMIT:
        raise argparse.ArgumentTypeError(f"Offset does not fit 32 bits: {value}")
    return n


def _epilog() -> str:
    cics = "\n".join(f"  {c.number:4d} ({c.description})" for c in CIC_TYPES)
    return f"""
CIC is one of:
{cics}
  CIC must be set correctly for the game to work.

BANK is one of: rom, sram256, sram768, flash, pokemon, eeprom
 -"pokemon" is special-case flash for Pokemon Stadium 2
 -"sram768" is only used by Dezaemon 3D

FILE is a file path, or "-" for stdin (for upload)/stdout (for download).

-b sets the bank for ALL following up/downloads (until another -b).
-o and -z set the offset and size for ONLY THE NEXT up/download.

Args are processed in the order given, so eg:
  drive64 -l file.rom -b eeprom -l file.sav
will upload file.rom to ROM and file.sav to EEPROM.
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drive64",
        description="64drive USB tool for Linux",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=_epilog(),
    )
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    parser.add_argument("-b", "--bank", dest="bank", action=_Ordered, type=_bank_arg,
                        metavar="BANK", help="up/download to specified bank (default: rom)")
    parser.add_argument("-c", "--cic", dest="cic", action=_Ordered, type=_cic_arg,
                        metavar="CIC", help="set CIC type (HW2 RevB only)")
    parser.add_argument("-d", "--dump", dest="dump", action=_Ordered,
                        metavar="FILE", help="download file from cartridge")
    parser.add_argument("-i", "--info", dest="info", action=_Ordered, nargs=0,
                        help="show device info (version)")
    parser.add_argument("-l", "--load", dest="load", action=_Ordered,
                        metavar="FILE", help="upload file to cartridge")
    parser.add_argument("-L", "--list-devices", dest="list_devices", action=_Ordered,
                        nargs=0, help="list FTDI devices")
    parser.add_argument("-o", "--offset", dest="offset", action=_Ordered, type=_offset_arg,
                        metavar="OFFSET",
                        help="upload to/download from specified offset (default: 0)")
    parser.add_argument("-q", "--quiet", dest="quiet", action=_Ordered, nargs=0,
                        help="be quiet (no progress indicators)")
    parser.add_argument("-v", "--verbose", dest="verbose", action=_Ordered, nargs=0,
                        help="be verbose (repeat for more verbosity)")
    parser.add_argument("-z", "--size", dest="size", action=_Ordered, type=_int_arg,
                        metavar="SIZE",
                        help="up/download specified size (default: entire file)")
    parser.set_defaults(ops=None)
    return parser


def setup_logging(verbose: int) -> None:
    """Map -v count to log level (0=WARNING, 1=INFO, 2+=DEBUG)."""
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
        logging.getLogger('usb').setLevel(logging.INFO)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='%(message)s')


def list_devices() -> int:
    """Print every FTDI device on the bus."""
    from .device_ftdi import find_ftdi_devices

    devices = find_ftdi_devices()
    print(f" * Found {len(devices)} devices")
    for dev in devices:
        print(f" * {dev.describe()}")
    return 0


def run(ops: List[Op], settings: Optional[Settings] = None,
        drive_factory: Optional[Callable[[SessionContext], Drive64]] = None) -> int:
    """Execute parsed options in order.  Returns the process exit status."""
    settings = settings or Settings()
    ctx = SessionContext()
    if drive_factory is None:
        def drive_factory(c: SessionContext) -> Drive64:
            return Drive64(ctx=c,
                           read_timeout_ms=settings.read_timeout_ms,
                           write_timeout_ms=settings.write_timeout_ms,
                           latency_ms=settings.latency_timer)

    drive: Optional[Drive64] = None
    bank = settings.default_bank
    size: Optional[int] = None
    offset = 0
    status = 0

    def get_drive() -> Drive64:
        nonlocal drive
        if drive is None:
            drive = drive_factory(ctx)
        return drive.open()

    try:
        for name, value in ops:
            if name == 'bank':
                bank = value
            elif name == 'offset':
                offset = value
            elif name == 'size':
                size = value
            elif name == 'quiet':
                ctx.verbosity = -1
            elif name == 'verbose':
                ctx.verbosity += 1
            elif name == 'list_devices':
                list_devices()
            elif name == 'info':
                info = get_drive().get_version()
                print(f"Device version: {info.describe()}")
            elif name == 'cic':
                d = get_drive()
                if ctx.verbosity > 0:
                    print(f" * Selecting CIC mode #{int(value.cic)}")
                d.set_cic(value.cic)
            elif name in ('load', 'dump'):
                if not _transfer(get_drive(), ctx, name, value, size, offset, bank):
                    status = 1
                size = None
                offset = 0
    except Drive64Error as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    finally:
        if drive is not None:
            drive.close()
    return status


def _transfer(drive: Drive64, ctx: SessionContext, name: str, path: str,
              size: Optional[int], offset: int, bank) -> bool:
    """Run one -l / -d.  Returns False if the file could not be opened."""
    if path == '-':
        ctx.verbosity = -1
        stream = sys.stdin.buffer if name == 'load' else sys.stdout.buffer
        if name == 'load':
            drive.upload(stream, size=size, offset=offset, bank=bank)
        else:
            drive.download(stream, size=size, offset=offset, bank=bank)
            stream.flush()
        return True

    mode = 'rb' if name == 'load' else 'wb'
    try:
        f = open(path, mode)
    except OSError as e:
        print(f'Failed opening "{path}": {e.strerror}', file=sys.stderr)
        return False
    with f:
        if name == 'load':
            result = drive.upload(f, size=size, offset=offset, bank=bank)
        else:
            result = drive.download(f, size=size, offset=offset, bank=bank)
    log.info("%s: %d bytes in %d chunks, ended at offset 0x%06X",
             path, result.transferred, result.chunks, result.offset)
    return True


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)
    ops = args.ops or []
    setup_logging(sum(1 for name, _ in ops if name == 'verbose'))
    return run(ops, load_settings())


if __name__ == "__main__":
    sys.exit(main())
