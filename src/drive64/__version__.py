"""drive64 version information."""

__version__ = "1.0.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 1.0.0 - Initial release: upload/download to all banks, CIC select, version
#         handshake, device listing, pyusb FTDI backend
