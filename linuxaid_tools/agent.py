# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""
Control the configuration management agent (Puppet / OpenVox).

The agent is run with ``--detailed-exitcodes`` which gives its exit code the
following meaning:

===  ==========================================================
 0   The run succeeded without changes.
 1   The run failed or wasn't attempted because another run was
     already in progress.
 2   The run succeeded and some resources were changed.
 4   The run succeeded but some resources failed.
 6   The run succeeded, included changes and some resources failed.
===  ==========================================================

The exit code is captured as data and classified by
:func:`classify_exit_code()`, running the agent never raises an exception
because of a nonzero exit code.
"""

# Standard library modules.
import os

# External dependencies.
from executor import ExternalCommandFailed
from executor.contexts import LocalContext
from humanfriendly import Timer, format_timespan
from property_manager import PropertyManager, key_property, mutable_property
from verboselogs import VerboseLogger

# Modules included in our package.
from linuxaid_tools import LinuxAidError

AGENT_PATH = '/sbin:/usr/sbin:/bin:/usr/bin:/opt/puppetlabs/puppet/bin'
"""The ``$PATH`` used to run commands, it includes the agent's ``bin`` directory (a string)."""

AGENT_RUNNING_LOCK_FILE = '/opt/puppetlabs/puppet/cache/state/agent_catalog_run.lock'
"""The file that exists while the agent is running (a string)."""

AGENT_DISABLED_LOCK_FILE = '/opt/puppetlabs/puppet/cache/state/agent_disabled.lock'
"""The file that exists while the agent is administratively disabled (a string)."""

CONTINUE = 'continue'
"""Classification of agent runs that succeeded (a string)."""

ABORT_RUN_FAILED = 'abort-run-failed'
"""Classification of agent runs that failed or weren't attempted (a string)."""

ABORT_PENDING_CHANGES = 'abort-pending-changes'
"""Classification of agent runs that completed with failed resources (a string)."""

ABORT_UNCLASSIFIED = 'abort-unclassified'
"""Classification of agent runs with an undocumented exit code (a string)."""

EXIT_CODE_CLASSIFICATION = {
    0: CONTINUE,
    1: ABORT_RUN_FAILED,
    2: CONTINUE,
    4: ABORT_PENDING_CHANGES,
    6: ABORT_PENDING_CHANGES,
}
"""A dictionary that maps documented agent exit codes to their classification."""

# Public identifiers that require documentation.
__all__ = (
    'ABORT_PENDING_CHANGES',
    'ABORT_RUN_FAILED',
    'ABORT_UNCLASSIFIED',
    'AGENT_DISABLED_LOCK_FILE',
    'AGENT_PATH',
    'AGENT_RUNNING_LOCK_FILE',
    'AgentControlError',
    'AgentController',
    'AgentError',
    'AgentRunOutcome',
    'CONTINUE',
    'EXIT_CODE_CLASSIFICATION',
    'classify_exit_code',
    'logger',
)

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class AgentController(PropertyManager):

    """Python API to enable, disable, run and wait for the configuration agent."""

    @mutable_property(cached=True, repr=False)
    def context(self):
        """
        An execution context created by :mod:`executor.contexts`.

        Defaults to a :class:`~executor.contexts.LocalContext` object whose
        ``$PATH`` includes :data:`AGENT_PATH`.
        """
        return LocalContext(environment=dict(PATH=AGENT_PATH))

    @mutable_property
    def program(self):
        """The name of the agent program (a string, defaults to ``puppet``)."""
        return 'puppet'

    @mutable_property
    def running_lock_file(self):
        """The pathname of the lock file that exists while the agent is running (a string)."""
        return AGENT_RUNNING_LOCK_FILE

    @mutable_property
    def disabled_lock_file(self):
        """The pathname of the lock file that exists while the agent is disabled (a string)."""
        return AGENT_DISABLED_LOCK_FILE

    @mutable_property
    def poll_interval(self):
        """The number of seconds between checks in :func:`wait_until_idle()` (a number, defaults to 5)."""
        return 5

    @property
    def is_running(self):
        """
        :data:`True` if the agent is running, :data:`False` otherwise.

        Filesystem errors other than a missing lock file are logged and
        treated as "not running", waiting forever would be worse than racing
        with the agent.
        """
        try:
            os.stat(self.running_lock_file)
            return True
        except FileNotFoundError:
            logger.debug("Agent lock file %s doesn't exist.", self.running_lock_file)
            return False
        except OSError as e:
            logger.warning("Failed to check agent lock file %s! (error=%s)", self.running_lock_file, e)
            return False

    @property
    def is_disabled(self):
        """:data:`True` if the agent was disabled by an operator or another program, :data:`False` otherwise."""
        return os.path.exists(self.disabled_lock_file)

    def wait_until_idle(self, timeout=600):
        """
        Wait for a running agent to finish.

        :param timeout: The maximum number of seconds to wait (a number).
        :returns: :data:`True` when the agent isn't running, :data:`False`
                  when the timeout expired while the agent was still running.

        When the timeout expires a warning is logged and the caller decides
        what to do next.
        """
        timer = Timer()
        if self.is_running:
            logger.info("Waiting for running configuration agent to finish ..")
        while self.is_running:
            iteration_timer = Timer()
            if timer.elapsed_time >= timeout:
                logger.warning("Configuration agent is still running after %s, no longer waiting!",
                               format_timespan(timeout))
                return False
            iteration_timer.sleep(self.poll_interval)
        logger.verbose("Configuration agent is idle (waited %s).", timer)
        return True

    def run(self, noop=True):
        """
        Run the configuration agent.

        :param noop: :data:`True` to perform a dry run, :data:`False` to enforce changes.
        :returns: An :class:`AgentRunOutcome` object.
        """
        timer = Timer()
        logger.info("Running configuration agent in %s mode ..", 'noop' if noop else 'enforcing')
        try:
            self.context.execute(
                self.program, 'agent', '--test',
                '--noop' if noop else '--no-noop',
                '--detailed-exitcodes',
            )
            exit_code = 0
        except ExternalCommandFailed as e:
            exit_code = e.returncode
        outcome = AgentRunOutcome(exit_code=exit_code)
        logger.info("Configuration agent finished in %s (exit_code=%i, outcome=%s).",
                    timer, outcome.exit_code, outcome.classification)
        return outcome

    def disable(self, reason):
        """
        Prevent the configuration agent from running unattended.

        :param reason: A human readable message that's stored by the agent
                       so operators can see who disabled it and why (a string).
        :returns: :data:`True` if the agent was disabled, :data:`False` otherwise.
        """
        logger.info("Disabling configuration agent ..")
        if self.context.execute(self.program, 'agent', '--disable', reason, check=False).succeeded:
            logger.verbose("Disabled configuration agent (reason: %s).", reason)
            return True
        logger.error("Failed to disable configuration agent!")
        return False

    def enable(self):
        """
        Allow the configuration agent to run again.

        :returns: :data:`True` if the agent was enabled, :data:`False` otherwise.

        The agent treats enabling an agent that wasn't disabled as a no-op.
        """
        logger.info("Enabling configuration agent ..")
        if self.context.execute(self.program, 'agent', '--enable', check=False).succeeded:
            logger.verbose("Enabled configuration agent.")
            return True
        logger.error("Failed to enable configuration agent!")
        return False


class AgentRunOutcome(PropertyManager):

    """The result of running the configuration agent."""

    @key_property
    def exit_code(self):
        """The exit code of the agent (an integer)."""

    @property
    def classification(self):
        """The classification of :attr:`exit_code` (see :func:`classify_exit_code()`)."""
        return classify_exit_code(self.exit_code)

    @property
    def should_continue(self):
        """:data:`True` if the run succeeded (with or without changes), :data:`False` otherwise."""
        return self.classification == CONTINUE


def classify_exit_code(exit_code):
    """
    Classify the exit code of the configuration agent.

    :param exit_code: The exit code of ``puppet agent --detailed-exitcodes`` (an integer).
    :returns: One of the strings :data:`CONTINUE`, :data:`ABORT_RUN_FAILED`,
              :data:`ABORT_PENDING_CHANGES` or :data:`ABORT_UNCLASSIFIED`.

    >>> from linuxaid_tools.agent import classify_exit_code
    >>> classify_exit_code(2)
    'continue'
    >>> classify_exit_code(6)
    'abort-pending-changes'
    >>> classify_exit_code(137)
    'abort-unclassified'
    """
    return EXIT_CODE_CLASSIFICATION.get(exit_code, ABORT_UNCLASSIFIED)


class AgentError(LinuxAidError):

    """
    Raised when the configuration agent prevents maintenance from continuing.

    This happens when a dry run doesn't classify as :data:`CONTINUE` or when
    the agent can't be disabled. The upgrade is never started in these cases.
    """


class AgentControlError(AgentError):

    """Raised when the configuration agent can't be disabled."""
