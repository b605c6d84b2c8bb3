#!/usr/bin/env python3
# conftest.py - SSTP Certificate Tool Pytest Configuration and Fixtures
# Version 1.0 - October 2026
# Shared fixtures for all test modules

import pytest
import re
import os
import sys
from unittest.mock import MagicMock, patch
from configparser import ConfigParser

# Add parent directory to path for imports
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, parent_dir)

from Tools.remoting import CommandResult

#==============================================================================
# TEST DATA
#==============================================================================

SSTP_KEY = r'HKLM\SYSTEM\CurrentControlSet\Services\SstpSvc\Parameters'
ZERO_HASH = '0' * 64
SAMPLE_HASH = '9F86D081884C7D659A2FEAA0C55AD015A3BF4F1B2B0B822CD15D6C15B0F00A08'
LEGACY_SHA1 = bytes.fromhex('A94A8FE5CCB19BA61C4C0873D391E987982FBBD3')

NOT_FOUND = 'ERROR: The system was unable to find the specified registry key or value.'
ACCESS_DENIED = 'ERROR: Access is denied.'
GERMAN_NOT_FOUND = 'FEHLER: Das System kann den angegebenen Registrierungsschlüssel oder Wert nicht finden.'

#==============================================================================
# FAKE REG.EXE RUNNER
#==============================================================================

class FakeRegistry:
    """
    Command runner emulating reg.exe, hostname.exe and the PowerShell
    Test-Path and Restart-Service commands against an in-memory registry.

    fail_on holds (operation, value name) pairs that should fail with
    "Access is denied", e.g. ('add', 'SHA256CertificateHash'). Key level
    operations use None as the name: ('query', None), ('test-path', None).

    not_found_text is the reg.exe message for a missing key or value; set it
    to a localized message to check nothing depends on the English text.
    """

    def __init__(self, host_name='VPN-01'):
        self.host_name = host_name
        self.keys = {}
        self.calls = []
        self.fail_on = set()
        self.not_found_text = NOT_FOUND
        self.fail_restart = False
        self.restarts = []
        self.closed = False

    # registry helpers ---------------------------------------------------------

    def add_key(self, path):
        self.keys.setdefault(path.lower(), {})

    def set_value(self, path, name, value_type, value):
        self.keys.setdefault(path.lower(), {})[name.lower()] = (name, value_type, value)

    def get_value(self, path, name):
        entry = self.keys.get(path.lower(), {}).get(name.lower())
        return None if entry is None else entry[2]

    def has_value(self, path, name):
        return name.lower() in self.keys.get(path.lower(), {})

    @property
    def mutating_calls(self):
        return [c for c in self.calls if c[0] == 'reg.exe' and c[1][0] in ('add', 'delete')]

    # runner interface ---------------------------------------------------------

    def run(self, executable, arguments):
        self.calls.append((executable, list(arguments)))
        if executable == 'reg.exe':
            return self._reg(list(arguments))
        if executable == 'powershell.exe':
            command = arguments[-1]
            if 'Test-Path' in command:
                return self._test_path(command)
            self.restarts.append(command)
            if self.fail_restart:
                return CommandResult(1, '', 'Restart-Service : Cannot stop service')
            return CommandResult(0)
        if executable == 'hostname.exe':
            return CommandResult(0, self.host_name)
        return CommandResult(1, '', f'{executable}: not found')

    def close(self):
        self.closed = True

    def _reg(self, args):
        operation, path = args[0], args[1]
        options = {}
        index = 2
        while index < len(args):
            flag = args[index].lower()
            if flag == '/f':
                options[flag] = True
                index += 1
            else:
                options[flag] = args[index + 1]
                index += 2

        name = options.get('/v')
        if (operation, name) in self.fail_on:
            return CommandResult(1, '', ACCESS_DENIED)

        key = self.keys.get(path.lower())

        if operation == 'query':
            if key is None:
                return CommandResult(1, '', self.not_found_text)
            entries = key.values() if name is None else [key[name.lower()]] if name.lower() in key else []
            if name is not None and not entries:
                return CommandResult(1, '', self.not_found_text)
            lines = ['', path.replace('HKLM', 'HKEY_LOCAL_MACHINE', 1)]
            for value_name, value_type, value in entries:
                lines.append(f'    {value_name}    {value_type}    {self._render(value_type, value)}')
            return CommandResult(0, '\n'.join(lines))

        if operation == 'add':
            value_type = options['/t']
            data = options.get('/d', '')
            if value_type == 'REG_DWORD':
                value = int(data)
            elif value_type == 'REG_BINARY':
                value = bytes.fromhex(data)
            else:
                value = data
            self.set_value(path, name, value_type, value)
            return CommandResult(0, 'The operation completed successfully.')

        if operation == 'delete':
            if key is None or name.lower() not in key:
                return CommandResult(1, '', self.not_found_text)
            del key[name.lower()]
            return CommandResult(0, 'The operation completed successfully.')

        return CommandResult(1, '', f'ERROR: Invalid syntax ({operation})')

    def _test_path(self, command):
        if ('test-path', None) in self.fail_on:
            return CommandResult(1, '', ACCESS_DENIED)
        match = re.search(r"Registry::((?:[^']|'')*)'", command)
        path = match.group(1).replace("''", "'").replace('HKEY_LOCAL_MACHINE', 'HKLM', 1)
        exit_code = re.search(r'else \{ exit (\d+) \}', command).group(1)
        return CommandResult(0 if path.lower() in self.keys else int(exit_code))

    @staticmethod
    def _render(value_type, value):
        if value_type == 'REG_DWORD':
            return f'0x{value:x}'
        if value_type == 'REG_BINARY':
            return value.hex().upper()
        return value


#==============================================================================
# FIXTURES - Registry
#==============================================================================

@pytest.fixture
def fake_registry():
    """Registry with an SSTP parameters key holding the default values"""
    registry = FakeRegistry()
    registry.add_key(SSTP_KEY)
    registry.set_value(SSTP_KEY, 'UseHttps', 'REG_DWORD', 1)
    registry.set_value(SSTP_KEY, 'IsHashConfiguredByAdmin', 'REG_DWORD', 0)
    registry.set_value(SSTP_KEY, 'SHA256CertificateHash', 'REG_BINARY', bytes(range(32)))
    return registry


@pytest.fixture
def legacy_registry(fake_registry):
    """Registry that still carries the legacy SHA-1 hash value"""
    fake_registry.set_value(SSTP_KEY, 'SHA1CertificateHash', 'REG_BINARY', LEGACY_SHA1)
    return fake_registry


@pytest.fixture
def empty_registry():
    """Registry without the SSTP parameters key (SSTP not installed)"""
    return FakeRegistry(host_name='WEB-01')


#==============================================================================
# FIXTURES - Mock Command Execution
#==============================================================================

@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for command execution tests"""
    with patch('subprocess.run') as mock_run:
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout='Success',
            stderr=''
        )
        yield mock_run


@pytest.fixture
def mock_psexec_client():
    """Mock pypsexec Client with a reachable SMB port"""
    import sstpfunctions as sf

    with patch('Tools.remoting.Client') as mock_client, \
            patch.object(sf, 'test_tcp_port', return_value=True):
        instance = MagicMock()
        instance.run_executable.return_value = (b'VPN-01\r\n', b'', 0)
        mock_client.return_value = instance
        yield mock_client


#==============================================================================
# FIXTURES - Configuration
#==============================================================================

@pytest.fixture
def temp_config_ini(tmp_path):
    """Create a temporary sstpcert.ini file"""
    config_path = tmp_path / 'sstpcert.ini'

    config = ConfigParser()
    config.add_section('SSTP')
    config.set('SSTP', 'hosts', '\nvpn-01.corp.example\n#vpn-02.corp.example\nvpn-03.corp.example')
    config.set('SSTP', 'certificate_hash', SAMPLE_HASH)
    config.set('SSTP', 'restart', 'yes')
    config.add_section('REMOTE')
    config.set('REMOTE', 'authentication', 'kerberos')
    config.set('REMOTE', 'encrypt', 'yes')
    config.set('REMOTE', 'max_workers', '4')

    with open(config_path, 'w') as f:
        config.write(f)

    return str(config_path)


@pytest.fixture
def fresh_sf():
    """sstpfunctions with a clean config parser and quiet console"""
    import sstpfunctions as sf

    with patch.object(sf, 'config', ConfigParser()), \
            patch.object(sf, 'logfiles', []), \
            patch.object(sf, 'console_output', False), \
            patch.object(sf, '_password', None):
        yield sf


#==============================================================================
# MARKERS
#==============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests that need a real Windows host"
    )
