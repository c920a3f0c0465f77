# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""Query the local security exporter about pending package updates."""

# External dependencies.
import requests
from property_manager import PropertyManager, key_property, mutable_property
from verboselogs import VerboseLogger

# Modules included in our package.
from linuxaid_tools import LinuxAidError

DEFAULT_EXPORTER_URL = 'http://127.254.254.254:63396'
"""The address where the security exporter listens (a string)."""

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class SecurityExporter(PropertyManager):

    """Python API for the security exporter that runs on managed hosts."""

    @mutable_property
    def url(self):
        """The base URL of the security exporter (a string)."""
        return DEFAULT_EXPORTER_URL

    @mutable_property
    def timeout(self):
        """The request timeout in seconds (a number, defaults to 10)."""
        return 10

    @mutable_property(cached=True, repr=False)
    def session(self):
        """A :class:`requests.Session` object."""
        return requests.Session()

    def count_package_updates(self):
        """
        Find out how many packages still have updates available.

        :returns: A :class:`PackageUpdates` object.
        :raises: :exc:`SecurityExporterError` when the exporter can't be
                 reached or responds with an error.
        """
        url = self.url.rstrip('/') + '/total_number_of_packages_with_update'
        try:
            response = self.session.get(url, timeout=self.timeout)
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise SecurityExporterError("Failed to query security exporter at %s! (%s)" % (url, e))
        if not isinstance(data, dict):
            raise SecurityExporterError("Security exporter returned unexpected response! (%r)" % data)
        if response.status_code >= 400:
            raise SecurityExporterError("Security exporter reported an error! (error=%s, output=%s)" % (
                data.get('error'), data.get('output'),
            ))
        try:
            # A missing or null count means there's nothing to update.
            total = int(data.get('total_number_of_packages_with_update') or 0)
        except (TypeError, ValueError) as e:
            raise SecurityExporterError("Security exporter returned an invalid package count! (%s)" % e)
        return PackageUpdates(total=total, has_kernel_update=data.get('has_kernel_update') is True)


class PackageUpdates(PropertyManager):

    """The number of packages with pending updates, according to the security exporter."""

    @key_property
    def total(self):
        """The number of packages with pending updates (an integer)."""

    @key_property
    def has_kernel_update(self):
        """:data:`True` if a kernel update is pending, :data:`False` otherwise."""


class SecurityExporterError(LinuxAidError):

    """Raised when the security exporter can't be queried."""
