# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""
Configuration shared by the `linuxaid-tools` programs.

The :class:`OrchestratorContext` class collects everything the programs need
to know about the host they're running on (the certificate name, the location
of the host certificate and private key, the control plane URL and a few
behavioral switches). It's constructed once by the command line interface and
passed to each component, so there's no module level state.

Option values are taken from (in order of precedence) the command line, the
environment and the ``[linuxaid-cli]`` section of the configuration files
found by :class:`update_dotdee.ConfigLoader` (for example
``/etc/linuxaid-cli.ini`` or ``~/.linuxaid-cli.ini``).
"""

# Standard library modules.
import os

# External dependencies.
from cryptography import x509
from cryptography.x509.oid import NameOID
from dotenv import dotenv_values
from humanfriendly import coerce_boolean, parse_timespan
from property_manager import PropertyManager, mutable_property
from update_dotdee import ConfigLoader
from verboselogs import VerboseLogger

# Modules included in our package.
from linuxaid_tools import LinuxAidError

CONFIG_SECTION = 'linuxaid-cli'
"""The name of the configuration file section with our options (a string)."""

DEFAULT_API_URL = 'https://api.obmondo.com/api'
"""The default base URL of the control plane API (a string)."""

OS_RELEASE_FILE = '/etc/os-release'
"""The file that identifies the Linux distribution (a string)."""

PUPPET_CERT_ENV = 'PUPPETCERT'
"""The environment variable with the pathname of the host certificate (a string)."""

PUPPET_PRIVKEY_ENV = 'PUPPETPRIVKEY'
"""The environment variable with the pathname of the host private key (a string)."""

PUPPET_CERTS_DIRECTORY = '/etc/puppetlabs/puppet/ssl/certs'
"""The directory where the agent stores host certificates (a string)."""

PUPPET_PRIVATE_KEYS_DIRECTORY = '/etc/puppetlabs/puppet/ssl/private_keys'
"""The directory where the agent stores host private keys (a string)."""

SUPPORTED_DISTRIBUTIONS = {
    'ubuntu': 'debian',
    'debian': 'debian',
    'sles': 'suse',
    'centos': 'redhat',
    'rhel': 'redhat',
}
"""A dictionary that maps distribution IDs (from ``/etc/os-release``) to distribution families."""

# Public identifiers that require documentation.
__all__ = (
    'CONFIG_SECTION',
    'DEFAULT_API_URL',
    'OS_RELEASE_FILE',
    'OrchestratorContext',
    'PUPPET_CERTS_DIRECTORY',
    'PUPPET_CERT_ENV',
    'PUPPET_PRIVATE_KEYS_DIRECTORY',
    'PUPPET_PRIVKEY_ENV',
    'PreconditionError',
    'SUPPORTED_DISTRIBUTIONS',
    'find_certname_from_private_keys',
    'get_common_name',
    'get_customer_id',
    'get_distribution_family',
    'load_os_release',
    'logger',
    'require_agent_environment',
    'require_os_identity',
    'require_root',
    'require_supported_distribution',
)

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class OrchestratorContext(PropertyManager):

    """Host identity and options shared by the components of `linuxaid-tools`."""

    @mutable_property(cached=True)
    def config(self):
        """
        A dictionary with the options in the ``[linuxaid-cli]`` configuration section.

        When the section doesn't exist this is an empty dictionary.
        """
        if CONFIG_SECTION in self.config_loader.section_names:
            return self.config_loader.get_options(CONFIG_SECTION)
        return {}

    @mutable_property(cached=True)
    def config_loader(self):
        """A :class:`~update_dotdee.ConfigLoader` object."""
        return ConfigLoader(program_name='linuxaid-cli')

    @mutable_property(cached=True)
    def environment(self):
        """A mapping with environment variables (defaults to :data:`os.environ`)."""
        return os.environ

    @mutable_property(cached=True)
    def api_url(self):
        """The base URL of the control plane API (a string)."""
        value = self.environment.get('LINUXAID_API_URL') or self.config.get('api-url') or DEFAULT_API_URL
        return value.rstrip('/')

    @mutable_property(cached=True)
    def api_timeout(self):
        """The timeout for control plane requests in seconds (a number, defaults to 15)."""
        return parse_timespan(self.config.get('api-timeout', '15s'))

    @mutable_property(cached=True)
    def configured_certname(self):
        """
        The certificate name given by the operator (a string or :data:`None`).

        This comes from the ``--certname`` command line option, the
        ``$CERTNAME`` environment variable or the ``certname`` option in the
        configuration file. It's only used as a last resort, refer to
        :attr:`certname` for details.
        """
        return self.environment.get('CERTNAME') or self.config.get('certname')

    @mutable_property(cached=True)
    def certname(self):
        """
        The certificate name that identifies this host to the control plane (a string).

        The certificate name is discovered as follows (the first match wins):

        1. When ``$PUPPETCERT`` is set the common name of that certificate is used.
        2. The name of the first ``*.pem`` file in :attr:`private_keys_directory`.
        3. The value of :attr:`configured_certname`.

        An empty string means the certificate name couldn't be found.
        """
        if self.environment.get(PUPPET_CERT_ENV):
            return get_common_name(self.environment[PUPPET_CERT_ENV])
        certname = find_certname_from_private_keys(self.private_keys_directory)
        if certname:
            return certname
        if not self.configured_certname:
            logger.error("Failed to find certificate name!")
        return self.configured_certname or ''

    @property
    def customer_id(self):
        """The customer ID encoded in :attr:`certname` (a string)."""
        return get_customer_id(self.certname)

    @mutable_property(cached=True)
    def cert_path(self):
        """The pathname of the host certificate used for mutual TLS (a string)."""
        return (self.environment.get(PUPPET_CERT_ENV) or
                os.path.join(self.certs_directory, '%s.pem' % self.certname))

    @mutable_property(cached=True)
    def key_path(self):
        """The pathname of the host private key used for mutual TLS (a string)."""
        return (self.environment.get(PUPPET_PRIVKEY_ENV) or
                os.path.join(self.private_keys_directory, '%s.pem' % self.certname))

    @mutable_property
    def certs_directory(self):
        """The directory with host certificates (a string)."""
        return PUPPET_CERTS_DIRECTORY

    @mutable_property
    def private_keys_directory(self):
        """The directory with host private keys (a string)."""
        return PUPPET_PRIVATE_KEYS_DIRECTORY

    @property
    def distribution(self):
        """The distribution ID from ``/etc/os-release`` (a string, e.g. ``ubuntu``)."""
        return self.environment.get('ID', '')

    @mutable_property(cached=True)
    def reboot(self):
        """
        :data:`True` when a kernel update may trigger a reboot, :data:`False` otherwise.

        Defaults to :data:`True`, can be changed using the ``$LINUXAID_REBOOT``
        environment variable or the ``reboot`` configuration option.
        """
        return coerce_boolean(self.environment.get('LINUXAID_REBOOT', self.config.get('reboot', 'true')))

    @mutable_property(cached=True)
    def skip_agent(self):
        """:data:`True` to leave the configuration agent alone, :data:`False` otherwise (the default)."""
        return coerce_boolean(self.environment.get('LINUXAID_SKIP_AGENT', self.config.get('skip-agent', 'false')))


def load_os_release(filename=OS_RELEASE_FILE, environment=None):
    """
    Load the distribution identity into the environment.

    :param filename: The pathname of the ``os-release`` file (a string).
    :param environment: The mapping to update (defaults to :data:`os.environ`).
    :raises: :exc:`PreconditionError` when the file doesn't exist.

    Variables that are already set in the environment are left alone.
    """
    if not os.path.isfile(filename):
        raise PreconditionError("Failed to load distribution identity! (%s doesn't exist)" % filename)
    logger.verbose("Loading distribution identity from %s ..", filename)
    if environment is None:
        environment = os.environ
    for name, value in dotenv_values(filename).items():
        if value is not None:
            environment.setdefault(name, value)


def get_common_name(cert_path):
    """
    Get the subject common name of a PEM encoded certificate.

    :param cert_path: The pathname of the certificate (a string).
    :returns: The common name (a string, empty when it can't be determined).
    """
    try:
        with open(cert_path, 'rb') as handle:
            certificate = x509.load_pem_x509_certificate(handle.read())
    except (OSError, ValueError) as e:
        logger.error("Failed to load host certificate %s! (%s)", cert_path, e)
        return ''
    attributes = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attributes[0].value if attributes else ''


def find_certname_from_private_keys(directory):
    """
    Find the certificate name based on the private key of the host.

    :param directory: The directory that holds the private keys (a string).
    :returns: The name of the first ``*.pem`` file without the extension (a
              string) or :data:`None` when no private key was found.
    """
    try:
        entries = sorted(os.listdir(directory))
    except OSError as e:
        logger.verbose("Failed to list private key directory %s! (%s)", directory, e)
        return None
    for entry in entries:
        if entry.endswith('.pem') and os.path.isfile(os.path.join(directory, entry)):
            return entry[:-len('.pem')]
    logger.verbose("No private keys found in %s.", directory)
    return None


def get_customer_id(certname):
    """
    Get the customer ID from a certificate name.

    :param certname: A certificate name like ``web01.customerid`` (a string).
    :returns: The second dot separated component (a string, empty if there is none).

    >>> from linuxaid_tools.config import get_customer_id
    >>> get_customer_id('web01.customerid')
    'customerid'
    """
    parts = (certname or '').split('.')
    return parts[1] if len(parts) >= 2 else ''


def get_distribution_family(distribution):
    """
    Map a distribution ID to a distribution family.

    :param distribution: A distribution ID like ``ubuntu`` or ``rhel`` (a string).
    :returns: One of the strings ``debian``, ``suse`` or ``redhat``, or
              :data:`None` for unsupported distributions.
    """
    return SUPPORTED_DISTRIBUTIONS.get((distribution or '').lower())


def require_root():
    """Raise :exc:`PreconditionError` unless we're running with superuser privileges."""
    if os.getuid() != 0:
        raise PreconditionError("This program needs to be run as root!")


def require_agent_environment(environment):
    """Raise :exc:`PreconditionError` unless the host certificate and private key are configured."""
    for name in PUPPET_CERT_ENV, PUPPET_PRIVKEY_ENV:
        if not environment.get(name):
            raise PreconditionError("The $%s environment variable is not set!" % name)


def require_os_identity(environment):
    """Raise :exc:`PreconditionError` unless the distribution identity was loaded."""
    for name in 'ID', 'NAME':
        if not environment.get(name):
            raise PreconditionError("The $%s environment variable is not set!" % name)


def require_supported_distribution(distribution):
    """Raise :exc:`PreconditionError` when `distribution` isn't supported."""
    if not get_distribution_family(distribution):
        raise PreconditionError("Unsupported distribution! (%s)" % (distribution or 'unknown'))


class PreconditionError(LinuxAidError):

    """
    Raised when the host isn't in a state that allows maintenance to start.

    For example when we're not running as root, when the distribution isn't
    supported or when the host certificate isn't configured. Nothing has been
    changed on the host when this is raised.
    """
