# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""Tests for :mod:`linuxaid_tools.system_update`."""

# Standard library modules.
import os
import sys

# External dependencies.
import coloredlogs
import pytest

# Modules included in our package.
from linuxaid_tools import system_update
from linuxaid_tools.control_plane import ProtocolError, ServiceWindow, WindowCloseError
from linuxaid_tools.package_manager import DiskSpaceError, UpgradeError
from linuxaid_tools.security_exporter import SecurityExporter, SecurityExporterError
from linuxaid_tools.system_update import (
    DONE,
    EXIT_FAILURE,
    EXIT_PRECONDITION_FAILED,
    EXIT_SUCCESS,
    EXIT_UNEXPECTED,
    INIT,
    REBOOT,
    UpdateOrchestrator,
)
from tests.fakes import FakeAgent, FakeControlPlane, FakePackages, FakeResponse, FakeSecurityExporter, FakeSession


def create_orchestrator(settings, os_release, events, **options):
    options.setdefault('agent', FakeAgent(events))
    options.setdefault('packages', FakePackages(events))
    options.setdefault('control_plane', FakeControlPlane(events))
    options.setdefault('security_exporter', FakeSecurityExporter(events))
    return UpdateOrchestrator(settings=settings, os_release_file=os_release, **options)


def test_update_without_kernel_change(settings, os_release, events, as_root):
    orchestrator = create_orchestrator(settings, os_release, events)
    assert orchestrator.run() == EXIT_SUCCESS
    assert events == [
        'control_plane.fetch_service_window',
        'packages.ensure_ca_certificates',
        'agent.wait_until_idle',
        'agent.run(noop=True)',
        'agent.disable',
        'packages.upgrade_packages',
        'security_exporter.count_package_updates',
        'control_plane.close_service_window',
        'packages.detect_kernel_change',
        'agent.enable',
    ]
    assert orchestrator.state == DONE


def test_dry_run_pending_changes_aborts(settings, os_release, events, as_root):
    orchestrator = create_orchestrator(settings, os_release, events, agent=FakeAgent(events, dry_run_exit_code=4))
    assert orchestrator.run() == EXIT_SUCCESS
    assert 'packages.upgrade_packages' not in events
    assert 'agent.disable' not in events
    assert 'control_plane.close_service_window' not in events
    assert events.count('agent.enable') == 1


def test_reboot_after_kernel_change(settings, os_release, events, as_root):
    packages = FakePackages(events, installed_version='5.10.0', running_version='5.9.0')
    orchestrator = create_orchestrator(settings, os_release, events, packages=packages)
    assert orchestrator.run() == EXIT_SUCCESS
    assert events[-4:] == [
        'packages.detect_kernel_change',
        'packages.check_disk_space',
        'agent.enable',
        'packages.reboot',
    ]
    assert events.count('agent.enable') == 1
    assert orchestrator.state == REBOOT


def test_no_reboot_when_disabled(settings, os_release, events, as_root):
    settings.reboot = False
    packages = FakePackages(events, installed_version='5.10.0', running_version='5.9.0')
    orchestrator = create_orchestrator(settings, os_release, events, packages=packages)
    assert orchestrator.run() == EXIT_SUCCESS
    assert 'packages.reboot' not in events
    assert orchestrator.state == DONE


def test_no_reboot_without_kernel(settings, os_release, events, as_root):
    packages = FakePackages(events, installed_version='', running_version='5.9.0')
    orchestrator = create_orchestrator(settings, os_release, events, packages=packages)
    assert orchestrator.run() == EXIT_SUCCESS
    assert 'packages.reboot' not in events


def test_window_status_error_skips_cleanup(settings, os_release, events, as_root):
    control_plane = FakeControlPlane(events, fetch_error=ProtocolError("Server error", status_code=500))
    orchestrator = create_orchestrator(settings, os_release, events, control_plane=control_plane)
    assert orchestrator.run() == EXIT_FAILURE
    assert events == ['control_plane.fetch_service_window']


def test_closed_window_does_nothing(settings, os_release, events, as_root):
    control_plane = FakeControlPlane(events, window=ServiceWindow(is_open=False, window_type='', timezone='UTC'))
    orchestrator = create_orchestrator(settings, os_release, events, control_plane=control_plane)
    assert orchestrator.run() == EXIT_SUCCESS
    assert events == ['control_plane.fetch_service_window']


def test_disabled_agent_does_nothing(settings, os_release, events, as_root):
    orchestrator = create_orchestrator(settings, os_release, events, agent=FakeAgent(events, is_disabled=True))
    assert orchestrator.run() == EXIT_SUCCESS
    assert events == []


@pytest.mark.parametrize('failure, expected_exit_code', [
    ('ca-certificates', EXIT_FAILURE),
    ('dry-run-failed', EXIT_SUCCESS),
    ('dry-run-unclassified', EXIT_SUCCESS),
    ('disable', EXIT_FAILURE),
    ('upgrade', EXIT_FAILURE),
    ('close-window', EXIT_FAILURE),
    ('disk-space', EXIT_FAILURE),
    ('reboot', EXIT_FAILURE),
])
def test_cleanup_runs_once(settings, os_release, events, as_root, failure, expected_exit_code):
    agent = FakeAgent(
        events,
        dry_run_exit_code={'dry-run-failed': 1, 'dry-run-unclassified': 137}.get(failure, 0),
        disable_result=(failure != 'disable'),
    )
    packages = FakePackages(
        events,
        installed_version='5.10.0',
        running_version='5.9.0',
        ca_error=UpgradeError("Failed to install CA certificates!") if failure == 'ca-certificates' else None,
        upgrade_error=UpgradeError("apt-get failed", returncode=100) if failure == 'upgrade' else None,
        disk_space_error=DiskSpaceError("Only 1 MB left on /boot!") if failure == 'disk-space' else None,
        reboot_result=(failure != 'reboot'),
    )
    control_plane = FakeControlPlane(
        events,
        close_error=WindowCloseError("Failed!", status_code=400, body='nope') if failure == 'close-window' else None,
    )
    orchestrator = create_orchestrator(settings, os_release, events, agent=agent, packages=packages,
                                       control_plane=control_plane)
    assert orchestrator.run() == expected_exit_code
    assert events.count('agent.enable') == 1
    assert orchestrator.cleaned_up is True


def test_cleanup_on_unexpected_exception(settings, os_release, events, as_root):
    agent = FakeAgent(events, wait_error=RuntimeError("boom"))
    orchestrator = create_orchestrator(settings, os_release, events, agent=agent)
    with pytest.raises(RuntimeError):
        orchestrator.run()
    assert events.count('agent.enable') == 1


@pytest.mark.parametrize('enable_result', [False, RuntimeError("boom")])
def test_cleanup_failure_is_logged(settings, os_release, events, as_root, enable_result):
    agent = FakeAgent(events, enable_result=enable_result)
    orchestrator = create_orchestrator(settings, os_release, events, agent=agent)
    assert orchestrator.run() == EXIT_SUCCESS
    assert events.count('agent.enable') == 1


def test_cleanup_is_idempotent(settings, os_release, events):
    orchestrator = create_orchestrator(settings, os_release, events)
    orchestrator.cleanup()
    orchestrator.cleanup()
    assert events == ['agent.enable']


def test_skip_agent(settings, os_release, events, as_root):
    settings.skip_agent = True
    packages = FakePackages(events, installed_version='5.10.0', running_version='5.9.0')
    orchestrator = create_orchestrator(settings, os_release, events, packages=packages)
    assert orchestrator.run() == EXIT_SUCCESS
    assert not [event for event in events if event.startswith('agent.')]
    assert 'packages.upgrade_packages' in events
    assert 'packages.reboot' in events


def test_security_exporter_is_best_effort(settings, os_release, events, as_root):
    exporter = FakeSecurityExporter(events, error=SecurityExporterError("unreachable"))
    orchestrator = create_orchestrator(settings, os_release, events, security_exporter=exporter)
    assert orchestrator.run() == EXIT_SUCCESS
    assert 'control_plane.close_service_window' in events


def test_not_root(settings, os_release, events, monkeypatch):
    monkeypatch.setattr(os, 'getuid', lambda: 1000)
    orchestrator = create_orchestrator(settings, os_release, events)
    assert orchestrator.run() == EXIT_PRECONDITION_FAILED
    assert events == []


def test_unsupported_distribution(settings, tmp_path, events, as_root):
    os_release = tmp_path / 'os-release'
    os_release.write_text('NAME="Arch Linux"\nID=arch\n')
    orchestrator = create_orchestrator(settings, str(os_release), events)
    assert orchestrator.run() == EXIT_PRECONDITION_FAILED
    assert events == []


def test_missing_os_release(settings, tmp_path, events, as_root):
    orchestrator = create_orchestrator(settings, str(tmp_path / 'missing'), events)
    assert orchestrator.run() == EXIT_PRECONDITION_FAILED


def test_missing_private_key(settings, os_release, events, as_root):
    del settings.environment['PUPPETPRIVKEY']
    orchestrator = create_orchestrator(settings, os_release, events)
    assert orchestrator.run() == EXIT_PRECONDITION_FAILED
    assert events == []


def test_missing_certname(settings, os_release, events, as_root):
    settings.certname = ''
    orchestrator = create_orchestrator(settings, os_release, events)
    assert orchestrator.run() == EXIT_PRECONDITION_FAILED
    assert events == []


def test_initial_state(settings, os_release, events):
    assert create_orchestrator(settings, os_release, events).state == INIT


class FakeOrchestrator(object):

    """Replaces :class:`~linuxaid_tools.system_update.UpdateOrchestrator` in :func:`main()` tests."""

    instances = []
    exit_code = EXIT_SUCCESS

    def __init__(self, settings):
        self.settings = settings
        self.instances.append(self)

    def run(self):
        if isinstance(self.exit_code, Exception):
            raise self.exit_code
        return self.exit_code


@pytest.fixture
def fake_main(monkeypatch):
    """Run :func:`~linuxaid_tools.system_update.main()` without touching the host."""
    monkeypatch.setattr(coloredlogs, 'install', lambda **options: None)
    monkeypatch.setattr(system_update, 'UpdateOrchestrator', FakeOrchestrator)
    FakeOrchestrator.instances = []
    FakeOrchestrator.exit_code = EXIT_SUCCESS

    def main(*arguments):
        monkeypatch.setattr(sys, 'argv', ['linuxaid-system-update'] + list(arguments))
        with pytest.raises(SystemExit) as context:
            system_update.main()
        return context.value.code

    return main


def test_main_options(fake_main):
    FakeOrchestrator.exit_code = EXIT_FAILURE
    assert fake_main('--certname=web01.customer', '--no-reboot', '--skip-agent') == EXIT_FAILURE
    settings = FakeOrchestrator.instances[0].settings
    assert settings.configured_certname == 'web01.customer'
    assert settings.reboot is False
    assert settings.skip_agent is True


def test_main_unexpected_exception(fake_main):
    FakeOrchestrator.exit_code = RuntimeError("boom")
    assert fake_main() == EXIT_UNEXPECTED


def test_main_help(fake_main, capsys):
    assert fake_main('--help') == 0
    assert 'linuxaid-system-update' in capsys.readouterr().out
    assert FakeOrchestrator.instances == []


def test_main_invalid_arguments(fake_main):
    assert fake_main('--bogus') == 1
    assert fake_main('positional') == 1
    assert FakeOrchestrator.instances == []


@pytest.mark.parametrize('total', [None, 'unknown'])
def test_malformed_exporter_response_is_best_effort(settings, os_release, events, as_root, total):
    session = FakeSession(FakeResponse(200, dict(total_number_of_packages_with_update=total)))
    orchestrator = create_orchestrator(settings, os_release, events, security_exporter=SecurityExporter(session=session))
    assert orchestrator.run() == EXIT_SUCCESS
    assert 'control_plane.close_service_window' in events
    assert events.count('agent.enable') == 1
