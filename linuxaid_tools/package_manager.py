# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""
Upgrade system packages and detect when a newer kernel is installed.

Three families of Linux distributions are supported:

- Debian and Ubuntu (``apt-get``),
- SUSE Linux Enterprise Server (``zypper``),
- CentOS and Red Hat Enterprise Linux (``yum``).

The package manager is always run non-interactively. Refreshing the
repositories is best-effort (failures are logged) but a failing upgrade
raises :exc:`UpgradeError`. Nothing is rolled back.
"""

# Standard library modules.
import glob
import os
import re

# External dependencies.
import psutil
from executor import ExternalCommandFailed
from executor.contexts import LocalContext
from humanfriendly import Timer, compact, format_size
from property_manager import PropertyManager, key_property, mutable_property, required_property
from verboselogs import VerboseLogger

# Modules included in our package.
from linuxaid_tools import LinuxAidError
from linuxaid_tools.config import get_distribution_family

BOOT_DIRECTORY = '/boot'
"""The directory where kernel images are installed (a string)."""

KERNEL_IMAGE_PREFIX = 'vmlinuz-'
"""The filename prefix of kernel images (a string)."""

MINIMUM_FREE_SPACE = {
    '/': 100 * 1000 * 1000,
    '/boot': 10 * 1000 * 1000,
}
"""A dictionary that maps mount points to the number of bytes that must be available before rebooting."""

CA_CERTIFICATE_COMMANDS = {
    'debian': (
        ['dpkg-query', '-W', 'ca-certificates', 'openssl'],
        ['apt-get', 'install', '--yes', 'ca-certificates', 'openssl'],
    ),
    'suse': (
        ['rpm', '-q', 'ca-certificates', 'openssl', 'ca-certificates-cacert', 'ca-certificates-mozilla'],
        ['zypper', 'install', '-y', 'ca-certificates', 'openssl', 'ca-certificates-cacert', 'ca-certificates-mozilla'],
    ),
    'redhat': (
        ['rpm', '-q', 'ca-certificates', 'openssl'],
        ['yum', 'install', '-y', 'ca-certificates', 'openssl'],
    ),
}
"""A dictionary that maps distribution families to commands that check for and install CA certificates."""

# Compiled regular expression pattern to split version strings
# into alternating runs of digits and non-digits.
VERSION_TOKENIZATION_PATTERN = re.compile(r'(\d+)')

# Public identifiers that require documentation.
__all__ = (
    'BOOT_DIRECTORY',
    'CA_CERTIFICATE_COMMANDS',
    'DiskSpaceError',
    'KERNEL_IMAGE_PREFIX',
    'KernelState',
    'MINIMUM_FREE_SPACE',
    'PackageManager',
    'UpgradeError',
    'logger',
    'should_reboot',
    'version_sort_key',
)

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class PackageManager(PropertyManager):

    """Python API to upgrade system packages and compare installed and running kernels."""

    @mutable_property(cached=True, repr=False)
    def context(self):
        """An execution context created by :mod:`executor.contexts`."""
        return LocalContext()

    @required_property
    def distribution(self):
        """The distribution ID from ``/etc/os-release`` (a string like ``ubuntu``)."""

    @mutable_property
    def boot_directory(self):
        """The directory where kernel images are installed (a string, defaults to :data:`BOOT_DIRECTORY`)."""
        return BOOT_DIRECTORY

    @property
    def family(self):
        """The distribution family (one of the strings ``debian``, ``suse`` or ``redhat``, or :data:`None`)."""
        return get_distribution_family(self.distribution)

    @property
    def environment(self):
        """
        Environment variables for package manager commands (a dictionary).

        Combines the environment of :attr:`context` with variables that
        prevent the package manager from prompting the operator.
        """
        environment = dict(self.context.options.get('environment') or {})
        if self.family == 'debian':
            environment['DEBIAN_FRONTEND'] = 'noninteractive'
        return environment

    def upgrade_packages(self):
        """
        Upgrade the installed system packages.

        :raises: :exc:`UpgradeError` when the package manager reports an error.

        Unknown distributions are logged and skipped, normally they are
        rejected earlier by
        :func:`~linuxaid_tools.config.require_supported_distribution()`.
        """
        timer = Timer()
        if self.family == 'debian':
            logger.info("Upgrading system packages using apt-get ..")
            self.refresh_repositories('apt-get', 'update')
            self.execute_upgrade('apt-get', '--with-new-pkgs', 'upgrade', '--yes')
            logger.info("Removing 'auto-removable' system packages ..")
            command = self.context.execute('apt-get', 'autoremove', '--yes', check=False, environment=self.environment)
            if not command.succeeded:
                logger.warning("Failed to remove 'auto-removable' system packages!")
        elif self.family == 'suse':
            logger.info("Upgrading system packages using zypper ..")
            self.refresh_repositories('zypper', 'refresh')
            self.execute_upgrade('zypper', 'update', '-y')
        elif self.family == 'redhat':
            logger.info("Upgrading system packages using yum ..")
            self.refresh_repositories('yum', 'repolist')
            self.execute_upgrade('yum', 'update', '-y')
        else:
            logger.warning("Don't know how to upgrade packages on unknown distribution! (%s)", self.distribution)
            return
        logger.info("Finished upgrading system packages in %s.", timer)

    def refresh_repositories(self, *command):
        """
        Refresh the package repositories (best-effort).

        :param command: The command to run (one or more strings).
        :returns: :data:`True` if the command succeeded, :data:`False` otherwise.
        """
        logger.verbose("Refreshing package repositories ..")
        if self.context.execute(*command, check=False, environment=self.environment).succeeded:
            return True
        logger.warning("Failed to refresh package repositories! (command: %s)", ' '.join(command))
        return False

    def execute_upgrade(self, *command):
        """
        Run the command that upgrades system packages.

        :param command: The command to run (one or more strings).
        :raises: :exc:`UpgradeError` when the command exits with a nonzero status.
        """
        try:
            self.context.execute(*command, environment=self.environment)
        except ExternalCommandFailed as e:
            logger.error("Failed to upgrade system packages! (exit_status=%i)", e.returncode)
            raise UpgradeError(
                "Failed to upgrade system packages! (%s reported exit status %i)" % (' '.join(command), e.returncode),
                returncode=e.returncode,
            )

    def ensure_ca_certificates(self):
        """
        Make sure the CA certificates needed to talk to the control plane are installed.

        :raises: :exc:`UpgradeError` when the packages can't be installed.
        """
        if self.family not in CA_CERTIFICATE_COMMANDS:
            logger.warning("Not checking CA certificates on unknown distribution! (%s)", self.distribution)
            return
        check_command, install_command = CA_CERTIFICATE_COMMANDS[self.family]
        if self.context.execute(*check_command, check=False, silent=True).succeeded:
            logger.verbose("CA certificates are installed.")
            return
        logger.info("Installing CA certificates ..")
        try:
            self.context.execute(*install_command, environment=self.environment)
        except ExternalCommandFailed as e:
            raise UpgradeError("Failed to install CA certificates! (exit status %i)" % e.returncode,
                               returncode=e.returncode)

    @property
    def installed_kernel(self):
        """
        The version of the newest kernel image in :attr:`boot_directory` (a string).

        Kernel images are sorted like ``sort --version-sort`` so that
        ``vmlinuz-10`` sorts after ``vmlinuz-9``. An empty string means no
        kernel image was found (for example inside a container).
        """
        pattern = os.path.join(self.boot_directory, KERNEL_IMAGE_PREFIX + '*')
        versions = [os.path.basename(fn)[len(KERNEL_IMAGE_PREFIX):] for fn in glob.glob(pattern)]
        versions = [v for v in versions if v]
        if not versions:
            return ''
        return max(versions, key=version_sort_key)

    @property
    def running_kernel(self):
        """The output of ``uname --kernel-release`` (a string, empty on failure)."""
        try:
            return self.context.capture('uname', '--kernel-release').strip()
        except ExternalCommandFailed as e:
            logger.error("Failed to determine running kernel! (exit_status=%i)", e.returncode)
            return ''

    def detect_kernel_change(self):
        """
        Compare the newest installed kernel with the running kernel.

        :returns: A :class:`KernelState` object.
        """
        installed_version = self.installed_kernel
        if not installed_version:
            logger.warning("Looks like no kernel is installed on this host (skipping kernel check).")
            return KernelState(installed_version='', running_version='')
        state = KernelState(installed_version=installed_version, running_version=self.running_kernel)
        logger.verbose("Newest installed kernel is %s, running kernel is %s.",
                       state.installed_version, state.running_version or 'unknown')
        return state

    def check_disk_space(self):
        """
        Make sure there's enough disk space available to reboot safely.

        :raises: :exc:`DiskSpaceError` when ``/`` or ``/boot`` has less free
                 space than configured in :data:`MINIMUM_FREE_SPACE`.
        """
        for partition in psutil.disk_partitions(all=False):
            minimum = MINIMUM_FREE_SPACE.get(partition.mountpoint)
            if minimum is not None:
                usage = psutil.disk_usage(partition.mountpoint)
                logger.verbose("Found %s of free space on %s.", format_size(usage.free), partition.mountpoint)
                if usage.free <= minimum:
                    raise DiskSpaceError(compact(
                        "Only {free} of free space left on {mountpoint}!"
                        " (at least {minimum} is required)",
                        free=format_size(usage.free),
                        mountpoint=partition.mountpoint,
                        minimum=format_size(minimum),
                    ))

    def reboot(self):
        """
        Reboot the system immediately.

        :returns: :data:`True` if the reboot command succeeded, :data:`False` otherwise.
        """
        logger.notice("Rebooting %s ..", self.context)
        if self.context.execute('reboot', '--force', check=False).succeeded:
            return True
        logger.error("Failed to reboot %s!", self.context)
        return False


class KernelState(PropertyManager):

    """Comparison between the newest installed kernel and the running kernel."""

    @key_property
    def installed_version(self):
        """The version of the newest installed kernel (a string, empty when no kernel is installed)."""

    @key_property
    def running_version(self):
        """The version of the running kernel (a string)."""

    @property
    def kernel_present(self):
        """:data:`True` if a kernel image was found, :data:`False` otherwise."""
        return bool(self.installed_version)

    @property
    def kernel_changed(self):
        """:data:`True` if the newest installed kernel isn't running, :data:`False` otherwise."""
        return bool(self.installed_version and self.running_version and
                    self.installed_version != self.running_version)


def should_reboot(state, reboot_requested):
    """
    Decide whether the system should be rebooted.

    :param state: A :class:`KernelState` object.
    :param reboot_requested: :data:`True` if the operator allows rebooting,
                             :data:`False` otherwise.
    :returns: :data:`True` when both kernel versions are known, they differ
              and `reboot_requested` is :data:`True`.
    """
    return bool(reboot_requested) and state.kernel_changed


def version_sort_key(version):
    """
    Get a key to sort version strings like ``sort --version-sort``.

    :param version: A version string (e.g. ``5.10.0-8-amd64``).
    :returns: A tuple that compares runs of digits numerically.

    >>> from linuxaid_tools.package_manager import version_sort_key
    >>> sorted(['10', '9', '5.9.0', '5.10.0'], key=version_sort_key)
    ['5.9.0', '5.10.0', '9', '10']
    """
    return tuple(
        (1, int(token), '') if token.isdigit() else (0, 0, token)
        for token in VERSION_TOKENIZATION_PATTERN.split(version) if token
    )


class UpgradeError(LinuxAidError):

    """
    Raised when the package manager fails to upgrade the system.

    The system may be partially upgraded when this is raised.
    """

    def __init__(self, text, returncode=None):
        """
        Initialize an :class:`UpgradeError` object.

        :param text: The error message (a string).
        :param returncode: The exit status of the package manager (an integer or :data:`None`).
        """
        super(UpgradeError, self).__init__(text)
        self.returncode = returncode


class DiskSpaceError(LinuxAidError):

    """Raised by :func:`PackageManager.check_disk_space()` when a reboot would be unsafe."""
