# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""Tests for :mod:`linuxaid_tools.agent`."""

# External dependencies.
import pytest
from executor.contexts import LocalContext

# Modules included in our package.
from linuxaid_tools.agent import (
    ABORT_PENDING_CHANGES,
    ABORT_RUN_FAILED,
    ABORT_UNCLASSIFIED,
    CONTINUE,
    AgentController,
    AgentRunOutcome,
    classify_exit_code,
)
from tests.fakes import FakeContext, create_stub_program, read_stub_log


@pytest.mark.parametrize('exit_code, expected', [
    (0, CONTINUE),
    (2, CONTINUE),
    (1, ABORT_RUN_FAILED),
    (4, ABORT_PENDING_CHANGES),
    (6, ABORT_PENDING_CHANGES),
    (3, ABORT_UNCLASSIFIED),
    (5, ABORT_UNCLASSIFIED),
    (-1, ABORT_UNCLASSIFIED),
    (137, ABORT_UNCLASSIFIED),
    (255, ABORT_UNCLASSIFIED),
])
def test_classify_exit_code(exit_code, expected):
    assert classify_exit_code(exit_code) == expected


def test_classification_is_total():
    for exit_code in range(-10, 300):
        assert classify_exit_code(exit_code) in (CONTINUE, ABORT_RUN_FAILED, ABORT_PENDING_CHANGES, ABORT_UNCLASSIFIED)


def test_outcome_should_continue():
    assert AgentRunOutcome(exit_code=0).should_continue
    assert AgentRunOutcome(exit_code=2).should_continue
    assert not AgentRunOutcome(exit_code=1).should_continue
    assert not AgentRunOutcome(exit_code=4).should_continue


def create_agent(tmp_path, **options):
    options.setdefault('context', FakeContext())
    options.setdefault('running_lock_file', str(tmp_path / 'agent_catalog_run.lock'))
    options.setdefault('disabled_lock_file', str(tmp_path / 'agent_disabled.lock'))
    return AgentController(**options)


def test_lock_files(tmp_path):
    agent = create_agent(tmp_path)
    assert not agent.is_running
    assert not agent.is_disabled
    (tmp_path / 'agent_catalog_run.lock').write_text('1234')
    (tmp_path / 'agent_disabled.lock').write_text('{"disabled_message": "maintenance"}')
    assert agent.is_running
    assert agent.is_disabled


def test_is_running_fails_open(tmp_path):
    # A lock file "inside" a regular file can't be checked (ENOTDIR).
    (tmp_path / 'state').write_text('')
    agent = create_agent(tmp_path, running_lock_file=str(tmp_path / 'state' / 'agent_catalog_run.lock'))
    assert agent.is_running is False


def test_wait_until_idle(tmp_path):
    agent = create_agent(tmp_path, poll_interval=0.01)
    assert agent.wait_until_idle(timeout=1) is True


def test_wait_until_idle_timeout(tmp_path):
    (tmp_path / 'agent_catalog_run.lock').write_text('1234')
    agent = create_agent(tmp_path, poll_interval=0.01)
    assert agent.wait_until_idle(timeout=0.05) is False


@pytest.mark.parametrize('exit_code', [0, 1, 2, 4, 6, 137])
def test_run_captures_exit_code(tmp_path, exit_code):
    context = FakeContext(results={('puppet', 'agent'): exit_code})
    agent = create_agent(tmp_path, context=context)
    outcome = agent.run(noop=True)
    assert outcome.exit_code == exit_code
    assert outcome.classification == classify_exit_code(exit_code)
    assert context.command_lines == [('puppet', 'agent', '--test', '--noop', '--detailed-exitcodes')]


def test_run_enforcing(tmp_path):
    context = FakeContext()
    agent = create_agent(tmp_path, context=context)
    agent.run(noop=False)
    assert context.command_lines == [('puppet', 'agent', '--test', '--no-noop', '--detailed-exitcodes')]


def test_disable_and_enable(tmp_path):
    context = FakeContext()
    agent = create_agent(tmp_path, context=context)
    assert agent.disable("maintenance in progress") is True
    assert agent.enable() is True
    assert context.command_lines == [
        ('puppet', 'agent', '--disable', "maintenance in progress"),
        ('puppet', 'agent', '--enable'),
    ]


def test_disable_and_enable_failures(tmp_path):
    context = FakeContext(results={('puppet', 'agent'): 1})
    agent = create_agent(tmp_path, context=context)
    assert agent.disable("maintenance in progress") is False
    assert agent.enable() is False


def test_disable_and_enable_with_real_commands(tmp_path):
    failing_agent = AgentController(context=LocalContext(), program=create_stub_program(tmp_path, 'broken-agent', 1))
    assert failing_agent.disable("maintenance in progress") is False
    assert failing_agent.enable() is False
    working_agent = AgentController(context=LocalContext(), program=create_stub_program(tmp_path, 'agent', 0))
    assert working_agent.disable("maintenance") is True
    assert working_agent.enable() is True
    assert read_stub_log(tmp_path, 'agent') == ['agent agent --disable maintenance', 'agent agent --enable']


def test_run_with_real_command(tmp_path):
    agent = AgentController(context=LocalContext(), program=create_stub_program(tmp_path, 'agent', 4))
    outcome = agent.run(noop=True)
    assert outcome.exit_code == 4
    assert outcome.classification == ABORT_PENDING_CHANGES
