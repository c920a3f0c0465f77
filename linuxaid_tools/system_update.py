# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""
Usage: linuxaid-system-update [OPTIONS]

Upgrade the system packages of this host when the Obmondo control plane
reports an open service window, close the service window afterwards and
reboot the host when a newer kernel was installed.

The configuration agent is disabled while packages are being upgraded and
enabled again afterwards, also when the upgrade fails. When the agent was
disabled by someone else (the agent's disabled lock file exists) this
program does nothing.

Exit codes:

  0  Nothing to do, the update completed or the agent refused the update.
  1  The host doesn't meet the requirements (not root, unsupported
     distribution, missing host certificate).
  2  The update failed (control plane error, package manager error,
     failed to close the service window, not enough disk space).

Supported options:

  -c, --certname=NAME

    The certificate name of this host. Only used when the certificate name
    can't be determined from the host certificate or private key.

  -r, --reboot

    Reboot when a newer kernel was installed (this is the default).

  -n, --no-reboot

    Don't reboot, even when a newer kernel was installed.

  -s, --skip-agent

    Don't wait for, run, disable or enable the configuration agent.

  -V, --version

    Show the version number and exit.

  -v, --verbose

    Increase logging verbosity (can be repeated).

  -q, --quiet

    Decrease logging verbosity (can be repeated).

  -h, --help

    Show this message and exit.
"""

# Standard library modules.
import getopt
import sys

# External dependencies.
import coloredlogs
from executor.contexts import LocalContext
from humanfriendly import Timer, pluralize
from humanfriendly.terminal import output, usage, warning
from property_manager import PropertyManager, mutable_property, required_property
from verboselogs import VerboseLogger

# Modules included in our package.
from linuxaid_tools import __version__
from linuxaid_tools.agent import AGENT_PATH, AgentController, AgentControlError, AgentError
from linuxaid_tools.config import (
    OS_RELEASE_FILE,
    OrchestratorContext,
    PreconditionError,
    load_os_release,
    require_agent_environment,
    require_os_identity,
    require_root,
    require_supported_distribution,
)
from linuxaid_tools.control_plane import ControlPlaneClient, TransientAPIError
from linuxaid_tools.package_manager import DiskSpaceError, PackageManager, UpgradeError, should_reboot
from linuxaid_tools.security_exporter import SecurityExporter, SecurityExporterError

AGENT_DISABLE_REASON = "puppet has been disabled by the linuxaid-system-update script."
"""The reason given when the configuration agent is disabled (a string)."""

AGENT_WAIT_TIMEOUT = 600
"""The number of seconds to wait for a running configuration agent (an integer)."""

EXIT_SUCCESS = 0
"""Exit code for "nothing to do" and "completed" (an integer)."""

EXIT_PRECONDITION_FAILED = 1
"""Exit code when the host doesn't meet the requirements (an integer)."""

EXIT_FAILURE = 2
"""Exit code when the update failed (an integer)."""

EXIT_UNEXPECTED = 3
"""Exit code when an unexpected exception occurred (an integer)."""

# The states of the update workflow, in order.
INIT = 'init'
PRECHECK = 'precheck'
AWAIT_WINDOW = 'await-window'
AWAIT_AGENT_IDLE = 'await-agent-idle'
RUN_AGENT_DRY_RUN = 'run-agent-dry-run'
DISABLE_AGENT = 'disable-agent'
UPGRADE = 'upgrade'
CLOSE_WINDOW = 'close-window'
KERNEL_CHECK = 'kernel-check'
REBOOT = 'reboot'
DONE = 'done'

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


def main():
    """Command line interface for ``linuxaid-system-update``."""
    # Initialize logging to the terminal and system log.
    coloredlogs.install(syslog=True)
    # Parse the command line arguments.
    settings_opts = {}
    try:
        options, arguments = getopt.gnu_getopt(sys.argv[1:], 'c:rnsVvqh', [
            'certname=', 'reboot', 'no-reboot', 'skip-agent',
            'version', 'verbose', 'quiet', 'help',
        ])
        for option, value in options:
            if option in ('-c', '--certname'):
                settings_opts['configured_certname'] = value
            elif option in ('-r', '--reboot'):
                settings_opts['reboot'] = True
            elif option in ('-n', '--no-reboot'):
                settings_opts['reboot'] = False
            elif option in ('-s', '--skip-agent'):
                settings_opts['skip_agent'] = True
            elif option in ('-V', '--version'):
                output("linuxaid-system-update %s", __version__)
                sys.exit(0)
            elif option in ('-v', '--verbose'):
                coloredlogs.increase_verbosity()
            elif option in ('-q', '--quiet'):
                coloredlogs.decrease_verbosity()
            elif option in ('-h', '--help'):
                usage(__doc__)
                sys.exit(0)
            else:
                raise Exception("Unhandled option!")
        if arguments:
            raise Exception("no positional arguments allowed")
    except Exception as e:
        warning("Failed to parse command line arguments! (%s)", e)
        sys.exit(1)
    # Update the system.
    try:
        orchestrator = UpdateOrchestrator(settings=OrchestratorContext(**settings_opts))
        exit_code = orchestrator.run()
    except Exception:
        logger.exception("Aborting due to unexpected exception!")
        sys.exit(EXIT_UNEXPECTED)
    sys.exit(exit_code)


class UpdateOrchestrator(PropertyManager):

    """
    Upgrade the system packages during a service window.

    The workflow moves through the following states (see :attr:`state`):

    1. ``precheck``: Load the distribution identity and check that we're
       running as root on a supported distribution with a host certificate.
       When the agent was disabled by someone else we stop here.
    2. ``await-window``: Ask the control plane whether a service window is
       open. When it isn't we stop here.
    3. ``await-agent-idle``: Wait for a running configuration agent to finish.
    4. ``run-agent-dry-run``: Run the agent in noop mode. When it fails or
       reports failed resources the update is aborted.
    5. ``disable-agent``: Disable the agent while packages are upgraded.
    6. ``upgrade``: Upgrade the system packages.
    7. ``close-window``: Tell the control plane this host was updated.
    8. ``kernel-check``: Compare the newest installed kernel with the running
       kernel and reboot (``reboot``) when they differ, otherwise ``done``.

    Once the service window is known to be open the agent is enabled again on
    every way out of :func:`run()`, exactly once. When rebooting this happens
    before the reboot so the agent resumes normal operation on boot.
    """

    @required_property(repr=False)
    def settings(self):
        """An :class:`~linuxaid_tools.config.OrchestratorContext` object."""

    @mutable_property(cached=True, repr=False)
    def context(self):
        """
        The command execution context shared by :attr:`agent` and :attr:`packages`.

        Defaults to a :class:`~executor.contexts.LocalContext` object whose
        ``$PATH`` includes the configuration agent.
        """
        return LocalContext(environment=dict(PATH=AGENT_PATH))

    @mutable_property(cached=True)
    def agent(self):
        """An :class:`~linuxaid_tools.agent.AgentController` object."""
        return AgentController(context=self.context)

    @mutable_property(cached=True)
    def packages(self):
        """A :class:`~linuxaid_tools.package_manager.PackageManager` object."""
        return PackageManager(context=self.context, distribution=self.settings.distribution)

    @mutable_property(cached=True)
    def control_plane(self):
        """A :class:`~linuxaid_tools.control_plane.ControlPlaneClient` object."""
        return ControlPlaneClient(settings=self.settings)

    @mutable_property(cached=True)
    def security_exporter(self):
        """A :class:`~linuxaid_tools.security_exporter.SecurityExporter` object."""
        return SecurityExporter()

    @mutable_property
    def os_release_file(self):
        """The pathname of the file that identifies the distribution (a string)."""
        return OS_RELEASE_FILE

    @mutable_property
    def agent_wait_timeout(self):
        """The number of seconds to wait for a running agent (a number, defaults to 600)."""
        return AGENT_WAIT_TIMEOUT

    @mutable_property
    def state(self):
        """The current state of the workflow (a string)."""
        return INIT

    @mutable_property
    def cleaned_up(self):
        """:data:`True` once :func:`cleanup()` has run, :data:`False` before."""
        return False

    def run(self):
        """
        Run the update workflow.

        :returns: The exit code for the process (one of :data:`EXIT_SUCCESS`,
                  :data:`EXIT_PRECONDITION_FAILED` or :data:`EXIT_FAILURE`).

        Unexpected exceptions are propagated after cleaning up.
        """
        timer = Timer()
        logger.info("Starting system update ..")
        try:
            self.precheck()
        except PreconditionError as e:
            logger.error("%s", e)
            return EXIT_PRECONDITION_FAILED
        if self.agent.is_disabled:
            logger.notice("Configuration agent has been disabled (%s exists), exiting.",
                          self.agent.disabled_lock_file)
            return EXIT_SUCCESS
        self.transition(AWAIT_WINDOW)
        try:
            window = self.control_plane.fetch_service_window()
        except TransientAPIError as e:
            logger.error("Unable to get service window status! (%s)", e)
            return EXIT_FAILURE
        if not window.is_open:
            # Exit cleanly, the systemd timer invokes us frequently.
            logger.notice("Service window is inactive, exiting.")
            return EXIT_SUCCESS
        logger.info("Service window is active (type=%s, timezone=%s), going ahead.",
                    window.window_type, window.timezone)
        try:
            exit_code = self.perform_maintenance(window)
        except AgentControlError as e:
            logger.error("Aborting system update! (%s)", e)
            return EXIT_FAILURE
        except AgentError as e:
            logger.warning("Aborting system update! (%s)", e)
            return EXIT_SUCCESS
        except (DiskSpaceError, TransientAPIError, UpgradeError) as e:
            logger.error("Aborting system update! (%s)", e)
            return EXIT_FAILURE
        finally:
            self.cleanup()
        logger.info("Finished system update in %s.", timer)
        return exit_code

    def precheck(self):
        """
        Make sure the host meets the requirements of the update workflow.

        :raises: :exc:`~linuxaid_tools.config.PreconditionError` when a
                 requirement isn't met.
        """
        self.transition(PRECHECK)
        load_os_release(self.os_release_file, self.settings.environment)
        require_root()
        require_agent_environment(self.settings.environment)
        require_os_identity(self.settings.environment)
        require_supported_distribution(self.settings.distribution)
        if not self.settings.certname:
            raise PreconditionError("Failed to determine the certificate name of this host!")
        logger.verbose("Host %s runs %s.", self.settings.certname, self.settings.environment.get('NAME'))

    def perform_maintenance(self, window):
        """
        Upgrade packages, close the service window and reboot when needed.

        :param window: The open :class:`~linuxaid_tools.control_plane.ServiceWindow`.
        :returns: :data:`EXIT_SUCCESS` or :data:`EXIT_FAILURE` (when the
                  reboot command failed).
        :raises: :exc:`~linuxaid_tools.agent.AgentError`,
                 :exc:`~linuxaid_tools.package_manager.UpgradeError`,
                 :exc:`~linuxaid_tools.control_plane.TransientAPIError` or
                 :exc:`~linuxaid_tools.package_manager.DiskSpaceError`.
        """
        self.packages.ensure_ca_certificates()
        if self.settings.skip_agent:
            logger.notice("Not touching the configuration agent (as requested).")
        else:
            self.transition(AWAIT_AGENT_IDLE)
            self.agent.wait_until_idle(timeout=self.agent_wait_timeout)
            self.transition(RUN_AGENT_DRY_RUN)
            outcome = self.agent.run(noop=True)
            if not outcome.should_continue:
                raise AgentError("Configuration agent dry run reported %s (exit_code=%i)." % (
                    outcome.classification, outcome.exit_code,
                ))
            logger.info("Configuration agent dry run succeeded, continuing.")
            self.transition(DISABLE_AGENT)
            if not self.agent.disable(AGENT_DISABLE_REASON):
                raise AgentControlError("Failed to disable configuration agent!")
        self.transition(UPGRADE)
        self.packages.upgrade_packages()
        self.report_pending_updates()
        self.transition(CLOSE_WINDOW)
        self.control_plane.close_service_window(window.window_type, window.timezone)
        self.transition(KERNEL_CHECK)
        kernel = self.packages.detect_kernel_change()
        if not should_reboot(kernel, self.settings.reboot):
            if kernel.kernel_changed:
                logger.notice("Newer kernel %s is installed but rebooting is disabled.", kernel.installed_version)
            self.transition(DONE)
            return EXIT_SUCCESS
        self.packages.check_disk_space()
        self.transition(REBOOT)
        logger.info("Newer kernel %s is installed (running %s), going ahead with reboot.",
                    kernel.installed_version, kernel.running_version)
        # The agent should resume normal operation when the host comes back up.
        self.cleanup()
        if not self.packages.reboot():
            return EXIT_FAILURE
        return EXIT_SUCCESS

    def report_pending_updates(self):
        """Log the number of packages that still have updates available (best-effort)."""
        try:
            updates = self.security_exporter.count_package_updates()
        except SecurityExporterError as e:
            logger.warning("%s", e)
            return
        logger.info("Security exporter reports %s with pending updates%s.",
                    pluralize(updates.total, "package"),
                    " (including the kernel)" if updates.has_kernel_update else "")

    def cleanup(self):
        """
        Enable the configuration agent (at most once).

        Failures are logged, this method never raises an exception.
        """
        if self.cleaned_up or self.settings.skip_agent:
            return
        self.cleaned_up = True
        try:
            if not self.agent.enable():
                logger.error("Unable to enable configuration agent, it needs to be enabled manually!")
        except Exception:
            logger.exception("Unexpected exception while enabling configuration agent!")
        logger.info("Ending system update.")

    def transition(self, state):
        """Move the workflow to the given state (a string)."""
        logger.verbose("Entering %s state ..", state)
        self.state = state
