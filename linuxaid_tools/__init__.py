# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""The top level :mod:`linuxaid_tools` module."""

# External dependencies.
from verboselogs import VerboseLogger

# Public identifiers that require documentation.
__all__ = (
    'LinuxAidError',
    '__version__',
    'logger',
)

# Semi-standard module versioning.
__version__ = '1.4.0'
"""The global version number of the `linuxaid-tools` package (a string)."""

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class LinuxAidError(Exception):

    """Base class for custom exceptions raised by :mod:`linuxaid_tools`."""
