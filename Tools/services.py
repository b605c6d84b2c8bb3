#!/usr/bin/env python3
# services.py - SSTP Certificate Tool Service Control
# Version 1.0 - October 2026
# Restarts Windows services through PowerShell

import logging

logger = logging.getLogger(__name__)

POWERSHELL = 'powershell.exe'


class ServiceControlError(Exception):
    """A service control request failed"""


class ServiceController:
    """Issue service restart requests through a command runner"""

    def __init__(self, runner):
        self.runner = runner

    def restart_service(self, name: str, force: bool = True) -> None:
        """
        Restart a Windows service.

        :param name: Service name (e.g., RemoteAccess)
        :param force: Also stop services that depend on it
        :raises ServiceControlError: the restart command failed
        """
        if not name or "'" in name:
            raise ServiceControlError(f'Invalid service name: {name!r}')

        command = f"Restart-Service -Name '{name}' -ErrorAction Stop"
        if force:
            command += ' -Force'

        logger.info(f'Restarting service {name}')
        result = self.runner.run(POWERSHELL, ['-NoProfile', '-NonInteractive', '-InputFormat', 'None',
                                                  '-Command', command])
        if not result.ok:
            raise ServiceControlError(f'Restart of {name} failed: {result.stderr or result.stdout}')
