# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""
Usage: linuxaid-run-agent [OPTIONS]

Run the configuration agent once and report the result to the Obmondo
control plane. By default the agent runs in noop mode, so nothing on the
host is changed.

Supported options:

  -c, --certname=NAME

    The certificate name of this host. Only used when the certificate name
    can't be determined from the host certificate or private key.

  -a, --apply

    Enforce the configuration instead of performing a dry run.

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
from humanfriendly.terminal import usage, warning
from verboselogs import VerboseLogger

# Modules included in our package.
from linuxaid_tools.agent import ABORT_RUN_FAILED, ABORT_UNCLASSIFIED, AgentController
from linuxaid_tools.config import OrchestratorContext
from linuxaid_tools.control_plane import ControlPlaneClient

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


def main():
    """Command line interface for ``linuxaid-run-agent``."""
    # Initialize logging to the terminal and system log.
    coloredlogs.install(syslog=True)
    # Parse the command line arguments.
    settings_opts = {}
    noop = True
    try:
        options, arguments = getopt.gnu_getopt(sys.argv[1:], 'c:avqh', [
            'certname=', 'apply', 'verbose', 'quiet', 'help',
        ])
        for option, value in options:
            if option in ('-c', '--certname'):
                settings_opts['configured_certname'] = value
            elif option in ('-a', '--apply'):
                noop = False
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
    # Run the configuration agent.
    try:
        settings = OrchestratorContext(**settings_opts)
        outcome = run_agent(
            agent=AgentController(),
            control_plane=ControlPlaneClient(settings=settings),
            noop=noop,
        )
    except Exception:
        logger.exception("Aborting due to unexpected exception!")
        sys.exit(1)
    sys.exit(1 if outcome.classification in (ABORT_RUN_FAILED, ABORT_UNCLASSIFIED) else 0)


def run_agent(agent, control_plane, noop=True):
    """
    Run the configuration agent and report the result to the control plane.

    :param agent: An :class:`~linuxaid_tools.agent.AgentController` object.
    :param control_plane: A :class:`~linuxaid_tools.control_plane.ControlPlaneClient` object.
    :param noop: :data:`True` to perform a dry run, :data:`False` to enforce changes.
    :returns: An :class:`~linuxaid_tools.agent.AgentRunOutcome` object.

    Talking to the control plane is best-effort, failures are logged but
    don't affect the outcome.
    """
    control_plane.ping()
    outcome = agent.run(noop=noop)
    if outcome.should_continue:
        logger.success("Configuration agent run succeeded (exit_code=%i).", outcome.exit_code)
    elif outcome.classification == ABORT_UNCLASSIFIED:
        logger.error("Configuration agent exited with undocumented exit code %i!", outcome.exit_code)
    else:
        logger.warning("Configuration agent run reported %s (exit_code=%i).",
                       outcome.classification, outcome.exit_code)
    control_plane.report_agent_run()
    return outcome
