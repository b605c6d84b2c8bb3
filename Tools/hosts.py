#!/usr/bin/env python3
# hosts.py - SSTP Certificate Tool Host Iterator
# Version 1.0 - October 2026
# Dispatches the certificate binding to each target host in parallel

import socket
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional

import sstpfunctions as sf
from Tools.remoting import AuthMode, Credential, DispatchConfig, RemoteExecutor
from Tools.sstp_config import (MutationOutcome, MutationRequest, MutationResult,
                               ServiceRestartFailure, configure_host)

#==============================================================================
# CONFIGURATION
#==============================================================================

LOCAL_NAMES = {'', '.', 'localhost', '127.0.0.1', '::1'}

#==============================================================================
# TYPES
#==============================================================================

@dataclass(frozen=True)
class RemoteSettings:
    auth: AuthMode = AuthMode.DEFAULT
    credential: Optional[Credential] = None
    encrypt: bool = False
    timeout: int = sf.remote_timeout
    max_workers: int = sf.max_workers


@dataclass
class HostOutcome:
    host: str
    outcome: Optional[MutationOutcome] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def config_applied(self) -> bool:
        """True when the registry change is in place, even if the restart failed"""
        return self.outcome is not None and self.outcome.config_applied

    @property
    def result(self) -> Optional[MutationResult]:
        return self.outcome.result if self.outcome is not None else None

    @property
    def status(self) -> str:
        if isinstance(self.error, ServiceRestartFailure):
            return 'restart-failed'
        if self.error is not None:
            return 'failed'
        return self.outcome.status.value

    @property
    def message(self) -> str:
        if self.error is None:
            return self.outcome.warning if self.outcome is not None else ''
        if getattr(self.error, 'host', None):
            return str(self.error)
        return f'{self.host}: {self.error}'

#==============================================================================
# FUNCTIONS
#==============================================================================

def is_local_host(host: str) -> bool:
    """True if host names this machine"""
    name = host.strip().lower()
    if name in LOCAL_NAMES:
        return True
    own_names = {socket.gethostname().lower(), socket.getfqdn().lower()}
    own_names.add(socket.gethostname().split('.')[0].lower())
    return name in own_names


def build_dispatch_config(host: str, settings: RemoteSettings) -> DispatchConfig:
    """
    Build the per-host dispatch parameters.

    Local hosts run in-process without credentials or transport encryption.
    Remote hosts report their own name in the result, so the dispatch name is
    not echoed for them.
    """
    local = is_local_host(host)
    if local:
        return DispatchConfig(host=host, is_local=True, timeout=settings.timeout)

    return DispatchConfig(
        host=host,
        is_local=False,
        auth=settings.auth,
        credential=settings.credential,
        encrypt=settings.encrypt,
        hide_host_name=True,
        timeout=settings.timeout,
    )


def configure_single_host(host: str, request: MutationRequest, settings: RemoteSettings,
                          executor: RemoteExecutor) -> HostOutcome:
    """
    Configure one host and report the outcome.

    Errors are returned on the HostOutcome (and logged with the host name)
    so that one host cannot stop the others.
    """
    config = build_dispatch_config(host, settings)
    sf.write_output(f'{host}: configuring SSTP certificate binding'
                    f'{" (local)" if config.is_local else ""}')

    try:
        outcome = executor.invoke(config, configure_host, request)
    except ServiceRestartFailure as e:
        host_outcome = HostOutcome(host, outcome=e.outcome, error=e)
        sf.write_output(f'WARNING: {host_outcome.message}')
        return host_outcome
    except Exception as e:
        host_outcome = HostOutcome(host, error=e)
        sf.write_output(f'ERROR: {host_outcome.message}')
        return host_outcome

    host_outcome = HostOutcome(host, outcome=outcome)
    if outcome.warning:
        sf.write_output(f'WARNING: {host}: {outcome.warning}')
    elif outcome.summary is not None:
        for line in outcome.summary.describe():
            sf.write_output(f'{host}: {line}')
    elif outcome.restart_performed:
        sf.write_output(f'{host}: certificate binding applied and {request.service_name} restarted')
    else:
        sf.write_output(f'{host}: certificate binding applied - restart {request.service_name} '
                        f'for it to take effect')
    return host_outcome


def configure_hosts(hosts: List[str], request: MutationRequest,
                    settings: Optional[RemoteSettings] = None,
                    executor: Optional[RemoteExecutor] = None) -> List[HostOutcome]:
    """
    Configure every host, up to settings.max_workers at a time.

    :param hosts: Host names ('.' or 'localhost' for this machine)
    :param request: Arguments forwarded to the per-host routine
    :return: One HostOutcome per host, in the order given
    """
    settings = settings or RemoteSettings()
    executor = executor or RemoteExecutor()

    if len(hosts) <= 1 or settings.max_workers <= 1:
        return [configure_single_host(host, request, settings, executor) for host in hosts]

    results: List[Optional[HostOutcome]] = [None] * len(hosts)
    with ThreadPoolExecutor(max_workers=min(settings.max_workers, len(hosts))) as pool:
        future_to_index = {
            pool.submit(configure_single_host, host, request, settings, executor): index
            for index, host in enumerate(hosts)
        }
        for future in as_completed(future_to_index):
            results[future_to_index[future]] = future.result()

    return results
