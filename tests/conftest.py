# Obmondo LinuxAid system maintenance tools.
#
# Author: Obmondo ops team <ops@obmondo.com>
# Last Change: October 19, 2026
# URL: https://obmondo.com

"""Shared fixtures for the `linuxaid-tools` test suite."""

# Standard library modules.
import os

# External dependencies.
import pytest

# Modules included in our package.
from linuxaid_tools.config import OrchestratorContext


@pytest.fixture
def events():
    """A list that fake collaborators append their calls to."""
    return []


@pytest.fixture
def environment():
    """An isolated environment with a host certificate and private key configured."""
    return {
        'PATH': '/usr/bin:/bin',
        'PUPPETCERT': '/etc/puppetlabs/puppet/ssl/certs/web01.customer.pem',
        'PUPPETPRIVKEY': '/etc/puppetlabs/puppet/ssl/private_keys/web01.customer.pem',
    }


@pytest.fixture
def settings(environment):
    """An :class:`~linuxaid_tools.config.OrchestratorContext` that doesn't read configuration files."""
    return OrchestratorContext(
        environment=environment,
        config={},
        certname='web01.customer',
        api_url='https://api.example.com/api',
    )


@pytest.fixture
def os_release(tmp_path):
    """An ``os-release`` file that identifies the host as Ubuntu."""
    filename = tmp_path / 'os-release'
    filename.write_text('NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="22.04"\n')
    return str(filename)


@pytest.fixture
def as_root(monkeypatch):
    """Pretend the tests run with superuser privileges."""
    monkeypatch.setattr(os, 'getuid', lambda: 0)
