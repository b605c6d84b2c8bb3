#!/usr/bin/env python3
# remoting.py - SSTP Certificate Tool Remote Execution
# Version 1.0 - October 2026
# Runs commands locally or on remote Windows hosts via PAExec (pypsexec)

"""
Remote Execution Module

Two command runners share the same interface:

- LocalRunner:  runs executables on this machine via subprocess
- PsexecRunner: runs executables on a remote Windows host over SMB using
                pypsexec (PAExec service, optional SMB3 encryption)

RemoteExecutor.invoke() opens the runner matching a DispatchConfig, hands it
to a routine together with the routine's arguments and always closes the
runner afterwards.
"""

import logging
import socket
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from pypsexec.client import Client
from pypsexec.exceptions import PypsexecException
from smbprotocol.exceptions import SMBException

import sstpfunctions as sf

logger = logging.getLogger(__name__)

#==============================================================================
# TYPES
#==============================================================================

class AuthMode(Enum):
    DEFAULT = "default"
    NEGOTIATE = "negotiate"
    NTLM = "ntlm"
    KERBEROS = "kerberos"

    @property
    def smb_protocol(self) -> str:
        """Authentication protocol name understood by smbprotocol"""
        if self is AuthMode.DEFAULT:
            return AuthMode.NEGOTIATE.value
        return self.value


@dataclass(frozen=True)
class Credential:
    username: str
    password: str = field(default='', repr=False)


@dataclass(frozen=True)
class DispatchConfig:
    host: str
    is_local: bool
    auth: AuthMode = AuthMode.DEFAULT
    credential: Optional[Credential] = None
    encrypt: bool = False
    # Only meaningful for remote hosts: the routine reports its own host name
    hide_host_name: bool = False
    timeout: int = sf.remote_timeout


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class RemoteExecutionError(Exception):
    """The remote-execution channel to a host failed"""

    def __init__(self, host: str, message: str):
        super().__init__(f'{host}: {message}')
        self.host = host

#==============================================================================
# RUNNERS
#==============================================================================

class LocalRunner:
    """Run executables on the local machine"""

    def __init__(self, timeout: int = 300):
        self.timeout = timeout

    @property
    def host_name(self) -> str:
        return socket.gethostname()

    def run(self, executable: str, arguments: List[str]) -> CommandResult:
        cp = sf.run_command([executable] + list(arguments), shell=False, timeout=self.timeout)
        return CommandResult(cp.returncode, (cp.stdout or '').strip(), (cp.stderr or '').strip())

    def close(self) -> None:
        pass


class PsexecRunner:
    """
    Run executables on a remote Windows host through pypsexec.

    The PAExec service is installed on open() and removed again on close().
    Processes run under the SYSTEM account so HKLM and the service control
    manager are writable regardless of UAC remote restrictions.
    """

    def __init__(self, config: DispatchConfig):
        self.config = config
        self.client = None
        self._host_name = None

    def open(self) -> 'PsexecRunner':
        host = self.config.host

        if not sf.test_tcp_port(host, sf.smb_port, timeout=min(self.config.timeout, 10)):
            raise RemoteExecutionError(host, f'SMB port {sf.smb_port} is not reachable')

        username = password = None
        if self.config.credential is not None:
            username = self.config.credential.username
            password = self.config.credential.password

        client = Client(host, username=username, password=password, encrypt=self.config.encrypt)
        # pypsexec does not expose the SMB authentication protocol
        client.session.auth_protocol = self.config.auth.smb_protocol

        try:
            client.connect(timeout=self.config.timeout)
        except (PypsexecException, SMBException, OSError, ValueError) as e:
            raise RemoteExecutionError(host, f'connection failed - {e}') from e

        try:
            client.create_service()
        except (PypsexecException, SMBException) as e:
            client.disconnect()
            raise RemoteExecutionError(host, f'could not create PAExec service - {e}') from e

        logger.debug(f'{host}: PAExec session open (auth={self.config.auth.value}, '
                     f'encrypt={self.config.encrypt})')
        self.client = client
        return self

    @property
    def host_name(self) -> str:
        if self._host_name is None:
            result = self.run('hostname.exe', [])
            self._host_name = result.stdout if result.ok and result.stdout else self.config.host
        return self._host_name

    def run(self, executable: str, arguments: List[str]) -> CommandResult:
        if self.client is None:
            raise RemoteExecutionError(self.config.host, 'session is not open')

        try:
            stdout, stderr, rc = self.client.run_executable(
                executable,
                arguments=subprocess.list2cmdline(arguments),
                use_system_account=True,
                timeout_seconds=self.config.timeout,
            )
        except (PypsexecException, SMBException) as e:
            raise RemoteExecutionError(self.config.host, f'{executable} failed - {e}') from e

        return CommandResult(
            rc,
            (stdout or b'').decode('utf-8', errors='replace').strip(),
            (stderr or b'').decode('utf-8', errors='replace').strip(),
        )

    def close(self) -> None:
        if self.client is None:
            return
        try:
            self.client.remove_service()
        except (PypsexecException, SMBException) as e:
            logger.warning(f'{self.config.host}: could not remove PAExec service - {e}')
        finally:
            try:
                self.client.disconnect()
            except (PypsexecException, SMBException, OSError) as e:
                logger.warning(f'{self.config.host}: disconnect failed - {e}')
            self.client = None


def open_runner(config: DispatchConfig):
    """Create the runner for a dispatch config"""
    if config.is_local:
        return LocalRunner(timeout=max(config.timeout, 300))
    return PsexecRunner(config).open()

#==============================================================================
# EXECUTOR
#==============================================================================

class RemoteExecutor:
    """Dispatch a routine to a host: invoke(config, routine, args)"""

    def __init__(self, runner_factory: Optional[Callable[[DispatchConfig], object]] = None):
        self.runner_factory = runner_factory or open_runner

    def invoke(self, config: DispatchConfig, routine: Callable, *args):
        """
        Run routine(runner, *args) against the host described by config.

        :param config: Per-host dispatch configuration
        :param routine: Callable taking a runner followed by args
        :return: Whatever the routine returns, stamped with the dispatch host
                 name unless config.hide_host_name is set
        :raises RemoteExecutionError: the runner could not be opened
        """
        runner = self.runner_factory(config)
        try:
            result = routine(runner, *args)
        finally:
            runner.close()

        if not config.hide_host_name and hasattr(result, 'with_dispatch_host'):
            result = result.with_dispatch_host(config.host)
        return result
