# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""
Client for the Obmondo control plane API.

All requests are authenticated using mutual TLS, based on the certificate and
private key of the configuration agent on the host (see
:class:`~linuxaid_tools.config.OrchestratorContext`).

The API wraps its responses in an envelope like this:

.. code-block:: json

   {"status": 200, "success": true, "data": {...},
    "message": "...", "resolution": "...", "error_text": "..."}

Only the ``data`` member is used.
"""

# Standard library modules.
import datetime
import json
import os
import zoneinfo

# External dependencies.
import requests
import yaml
from property_manager import PropertyManager, key_property, mutable_property, required_property
from verboselogs import VerboseLogger

# Modules included in our package.
from linuxaid_tools import LinuxAidError

LAST_RUN_REPORT_FILE = '/opt/puppetlabs/puppet/cache/state/last_run_report.yaml'
"""The summary of the most recent configuration agent run (a string)."""

CLOSE_WINDOW_COMMENT = "server has been updated"
"""The comment sent along when the service window is closed (a string)."""

CLOSE_WINDOW_STATUSES = {
    202: "closed for this host",
    204: "closed for this host and the service window was closed automatically",
    208: "already reported as closed",
}
"""A dictionary that maps the HTTP status codes that mean success to a description."""

# Public identifiers that require documentation.
__all__ = (
    'CLOSE_WINDOW_COMMENT',
    'CLOSE_WINDOW_STATUSES',
    'ControlPlaneClient',
    'LAST_RUN_REPORT_FILE',
    'NetworkError',
    'ProtocolError',
    'ServiceWindow',
    'TransientAPIError',
    'WindowCloseError',
    'logger',
)

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class ControlPlaneClient(PropertyManager):

    """Python API for the Obmondo control plane."""

    @required_property(repr=False)
    def settings(self):
        """An :class:`~linuxaid_tools.config.OrchestratorContext` object."""

    @mutable_property(cached=True, repr=False)
    def session(self):
        """
        A :class:`requests.Session` object.

        The session is configured with the host certificate and private key
        so that every request is authenticated.
        """
        session = requests.Session()
        session.cert = (self.settings.cert_path, self.settings.key_path)
        session.headers['Content-Type'] = 'application/json'
        return session

    @mutable_property
    def last_run_report_file(self):
        """The pathname of the agent's last run report (a string)."""
        return LAST_RUN_REPORT_FILE

    def request(self, method, path, data=None):
        """
        Send a request to the control plane.

        :param method: The HTTP method (a string).
        :param path: The path of the URL, relative to
                     :attr:`~linuxaid_tools.config.OrchestratorContext.api_url`.
        :param data: The request body (a string or :data:`None`).
        :returns: A :class:`requests.Response` object.
        :raises: :exc:`NetworkError` when the request can't be completed.
        """
        url = self.settings.api_url + path
        logger.verbose("Sending %s request to %s ..", method, url)
        try:
            return self.session.request(method, url, data=data, timeout=self.settings.api_timeout)
        except requests.RequestException as e:
            raise NetworkError("Failed to send %s request to %s! (error=%s)" % (method, url, e))

    def fetch_service_window(self):
        """
        Find out whether a service window is active for this host.

        :returns: A :class:`ServiceWindow` object.
        :raises: :exc:`NetworkError` on transport failures or
                 :exc:`ProtocolError` when the response isn't a 200 OK with a
                 valid JSON body.
        """
        response = self.request('GET', '/window/now')
        if response.status_code != 200:
            raise ProtocolError(
                "Failed to get service window status! (status_code=%i)" % response.status_code,
                status_code=response.status_code,
                body=response.text,
            )
        try:
            envelope = response.json()
            window = ServiceWindow.from_json(envelope['data'])
        except (ValueError, KeyError, TypeError) as e:
            raise ProtocolError(
                "Failed to parse service window status! (error=%s)" % e,
                status_code=response.status_code,
                body=response.text,
            )
        logger.verbose("Got service window status: %s", window)
        return window

    def close_service_window(self, window_type, timezone):
        """
        Report that this host has been updated during the current service window.

        :param window_type: The window type reported by :func:`fetch_service_window()` (a string).
        :param timezone: The time zone reported by :func:`fetch_service_window()` (a string).
        :raises: :exc:`NetworkError` on transport failures,
                 :exc:`ProtocolError` when the time zone is unknown or
                 :exc:`WindowCloseError` when the control plane responds
                 with an unexpected status code.

        Closing the same window again is not an error (the control plane
        responds with 208 Already Reported).
        """
        today = get_current_date(timezone)
        path = '/window/close/customer/%s/certname/%s/date/%s/type/%s' % (
            self.settings.customer_id, self.settings.certname, today, window_type,
        )
        response = self.request('PUT', path, data=json.dumps(dict(comments=CLOSE_WINDOW_COMMENT)))
        if response.status_code not in CLOSE_WINDOW_STATUSES:
            logger.error("Failed to close service window! (status_code=%i, body=%s)",
                         response.status_code, response.text)
            raise WindowCloseError(
                "Failed to close service window! (status_code=%i)" % response.status_code,
                status_code=response.status_code,
                body=response.text,
            )
        logger.info("Service window %s (status_code=%i).",
                    CLOSE_WINDOW_STATUSES[response.status_code],
                    response.status_code)

    def ping(self):
        """
        Let the control plane know this host is alive.

        :returns: :data:`True` if the request succeeded, :data:`False` otherwise.

        Failures are logged but never raised.
        """
        try:
            self.request('PUT', '/servers/ping')
            return True
        except TransientAPIError as e:
            logger.warning("Failed to ping control plane! (%s)", e)
            return False

    def report_agent_run(self):
        """
        Send the summary of the most recent configuration agent run to the control plane.

        :returns: :data:`True` if the control plane accepted the report,
                  :data:`False` otherwise.

        Failures are logged but never raised.
        """
        try:
            report = self.read_last_run_report()
            response = self.request('PUT', '/servers/puppet_last_run_report', data=json.dumps(report))
        except (OSError, ValueError, yaml.YAMLError, TransientAPIError) as e:
            logger.warning("Failed to report configuration agent run! (%s)", e)
            return False
        if response.status_code != 204:
            logger.warning("Control plane didn't accept agent run report! (status_code=%i, body=%s)",
                           response.status_code, response.text)
            return False
        logger.verbose("Reported configuration agent run to control plane.")
        return True

    def read_last_run_report(self):
        """
        Read the summary of the most recent configuration agent run.

        :returns: A dictionary with the keys ``time``, ``status``,
                  ``transaction_completed`` and
                  ``is_last_run_yaml_file_not_present``.
        :raises: :exc:`~exceptions.OSError` when the report can't be read,
                 :exc:`~exceptions.ValueError` when it isn't valid UTF-8 or
                 doesn't contain a mapping and :exc:`yaml.YAMLError` when
                 it isn't valid YAML.
        """
        report = dict(time='', status='', transaction_completed=False, is_last_run_yaml_file_not_present=True)
        if os.path.isfile(self.last_run_report_file):
            with open(self.last_run_report_file, encoding='utf-8') as handle:
                # The report contains Ruby object tags which safe_load() refuses.
                contents = yaml.load(handle, Loader=IgnoreTagsLoader) or {}
            if not isinstance(contents, dict):
                raise ValueError("Expected a mapping in %s, got %s instead!" % (
                    self.last_run_report_file, type(contents).__name__,
                ))
            report['time'] = str(contents.get('time', ''))
            report['status'] = str(contents.get('status') or '')
            report['transaction_completed'] = bool(contents.get('transaction_completed', False))
            report['is_last_run_yaml_file_not_present'] = False
        return report


class ServiceWindow(PropertyManager):

    """Permission from the control plane to perform disruptive maintenance."""

    @key_property
    def is_open(self):
        """:data:`True` if the service window is currently open, :data:`False` otherwise."""

    @key_property
    def window_type(self):
        """The type of service window (a string like ``automatic`` or ``manual``)."""

    @key_property
    def timezone(self):
        """The IANA time zone of the service window (a string)."""

    @classmethod
    def from_json(cls, data):
        """
        Create a :class:`ServiceWindow` object from the ``data`` member of an API response.

        :param data: A dictionary with the keys ``is_window_open``,
                     ``window_type`` and ``timezone``.
        :returns: A :class:`ServiceWindow` object.
        :raises: :exc:`ProtocolError` when ``is_window_open`` isn't a boolean.
        """
        is_open = data['is_window_open']
        if not isinstance(is_open, bool):
            raise ProtocolError("Control plane reported invalid window status! (is_window_open=%r)" % is_open)
        return cls(
            is_open=is_open,
            window_type=data.get('window_type') or '',
            timezone=data.get('timezone') or 'UTC',
        )


class IgnoreTagsLoader(yaml.SafeLoader):

    """YAML loader that treats application specific tags as plain mappings."""


def construct_untagged(loader, suffix, node):
    """Construct a plain Python object for a YAML node with an unknown tag."""
    if isinstance(node, yaml.MappingNode):
        return loader.construct_mapping(node, deep=True)
    elif isinstance(node, yaml.SequenceNode):
        return loader.construct_sequence(node, deep=True)
    return loader.construct_scalar(node)


IgnoreTagsLoader.add_multi_constructor('!', construct_untagged)


def get_current_date(timezone):
    """
    Get the current date in a given time zone.

    :param timezone: An IANA time zone name (a string).
    :returns: The date formatted as ``YYYY-MM-DD`` (a string).
    :raises: :exc:`ProtocolError` when the time zone is unknown.
    """
    try:
        location = zoneinfo.ZoneInfo(timezone)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
        raise ProtocolError("Control plane reported unknown time zone %r! (%s)" % (timezone, e))
    return datetime.datetime.now(location).strftime('%Y-%m-%d')


class TransientAPIError(LinuxAidError):

    """
    Base class for failures to talk to the control plane.

    These are never retried within the same run, the next scheduled run of
    the program is the retry mechanism.
    """

    def __init__(self, text, status_code=None, body=None):
        """
        Initialize a :class:`TransientAPIError` object.

        :param text: The error message (a string).
        :param status_code: The HTTP status code of the response (an integer or :data:`None`).
        :param body: The body of the response (a string or :data:`None`).
        """
        super(TransientAPIError, self).__init__(text)
        self.status_code = status_code
        self.body = body


class NetworkError(TransientAPIError):

    """Raised when a request to the control plane can't be completed."""


class ProtocolError(TransientAPIError):

    """Raised when the control plane responds in an unexpected way."""


class WindowCloseError(ProtocolError):

    """
    Raised when the control plane refuses to close the service window.

    The response body is included in the message because it's the only
    thing an operator has to go on.
    """

    def __str__(self):
        """Include the response body in the error message."""
        text = super(WindowCloseError, self).__str__()
        if self.body:
            text = "%s Response body: %s" % (text, self.body.strip())
        return text
