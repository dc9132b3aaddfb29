"""relacon version information."""

__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 0.1.0 - Initial release: pyusb and hidapi transports, ADU208/ADU218/Relacon
#         support, relacon command line tool, JSON config
