#!/usr/bin/env python3
# sstp_config.py - SSTP Certificate Binding Configuration
# Version 1.0 - October 2026
# Installs a SHA-256 certificate hash in the SSTP service parameters

"""
SSTP Certificate Binding Module

ConfigMutator.apply() configures one host:

1. Decode the certificate hash (nothing is touched if it is malformed)
2. Skip the host with a warning if the SstpSvc parameters key is missing
3. In one transaction write:
     UseHttps                = 0        (REG_DWORD)
     IsHashConfiguredByAdmin = 1        (REG_DWORD)
     SHA256CertificateHash   = <hash>   (REG_BINARY)
   and delete the legacy SHA1CertificateHash value if there is one
4. Re-read IsHashConfiguredByAdmin to confirm the change took effect
5. Restart RemoteAccess if requested, otherwise flag that a restart is needed
6. Optionally re-read all values into a MutationResult

A dry run stops after step 2 and reports what would be written.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import sstpfunctions as sf
from Tools.fingerprint import decode, encode
from Tools.regstore import (EntryNotFound, EntryWrite, ErrorPolicy, RegistryStore,
                            RollbackError, StoreError, ValueType)
from Tools.services import ServiceControlError, ServiceController

logger = logging.getLogger(__name__)

#==============================================================================
# CONFIGURATION
#==============================================================================

USE_HTTPS = 'UseHttps'
HASH_CONFIGURED_BY_ADMIN = 'IsHashConfiguredByAdmin'
SHA256_HASH = 'SHA256CertificateHash'
SHA1_HASH = 'SHA1CertificateHash'

#==============================================================================
# TYPES
#==============================================================================

class MutationStatus(Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    DRY_RUN = "dry-run"


@dataclass(frozen=True)
class MutationRequest:
    config_path: str
    fingerprint_hex: str
    restart: bool = False
    want_result: bool = False
    dry_run: bool = False
    verbose: bool = False
    service_name: str = sf.sstp_service


@dataclass(frozen=True)
class MutationResult:
    host_name: str
    use_https: Optional[int]
    is_hash_configured_by_admin: Optional[int]
    sha1_hash_hex: str
    sha256_hash_hex: str
    restart_performed: bool
    restart_required: bool
    dispatch_host: Optional[str] = None

    def as_dict(self) -> dict:
        data = {
            'hostName': self.host_name,
            'useHttps': self.use_https,
            'isHashConfiguredByAdmin': self.is_hash_configured_by_admin,
            'sha1HashHex': self.sha1_hash_hex,
            'sha256HashHex': self.sha256_hash_hex,
            'restartPerformed': self.restart_performed,
            'restartRequiredButNotPerformed': self.restart_required,
        }
        if self.dispatch_host is not None:
            data['dispatchHost'] = self.dispatch_host
        return data


@dataclass(frozen=True)
class DryRunSummary:
    host_name: str
    config_path: str
    writes: List[EntryWrite] = field(default_factory=list)
    delete_legacy_hash: bool = False
    restart_requested: bool = False

    @property
    def restart_recommended(self) -> bool:
        return not self.restart_requested

    def describe(self) -> List[str]:
        lines = []
        for write in self.writes:
            value = encode(write.value) if write.value_type is ValueType.BINARY else write.value
            lines.append(f'Would set {self.config_path}\\{write.name} ({write.value_type.value}) = {value}')
        if self.delete_legacy_hash:
            lines.append(f'Would delete legacy value {self.config_path}\\{SHA1_HASH}')
        if self.restart_requested:
            lines.append('Would restart the service')
        else:
            lines.append('A service restart would be required for the change to take effect')
        return lines


@dataclass(frozen=True)
class MutationOutcome:
    host_name: str
    status: MutationStatus
    result: Optional[MutationResult] = None
    summary: Optional[DryRunSummary] = None
    restart_performed: bool = False
    restart_required: bool = False
    warning: str = ''

    @property
    def config_applied(self) -> bool:
        return self.status is MutationStatus.APPLIED

    def with_dispatch_host(self, host: str) -> 'MutationOutcome':
        if self.result is None:
            return self
        return dataclasses.replace(self, result=dataclasses.replace(self.result, dispatch_host=host))

#==============================================================================
# ERRORS
#==============================================================================

class SstpCertError(Exception):
    """Base class for per-host configuration failures"""

    def __init__(self, host: str, message: str):
        super().__init__(f'{host}: {message}')
        self.host = host


class TransactionFailure(SstpCertError):
    """A write or the commit failed; left_changed lists entries the rollback could not restore"""

    def __init__(self, host: str, message: str, left_changed: Optional[List[str]] = None):
        super().__init__(host, message)
        self.left_changed = left_changed or []


class ValidationFailure(SstpCertError):
    """The commit succeeded but the store does not show the change"""


class ServiceRestartFailure(SstpCertError):
    """The configuration was applied but the service restart failed"""

    def __init__(self, host: str, message: str, outcome: MutationOutcome):
        super().__init__(host, message)
        self.outcome = outcome

#==============================================================================
# CONFIG MUTATOR
#==============================================================================

def build_writes(fingerprint: bytes) -> List[EntryWrite]:
    """The three values written for a certificate binding, in write order"""
    return [
        EntryWrite(USE_HTTPS, ValueType.DWORD, 0),
        EntryWrite(HASH_CONFIGURED_BY_ADMIN, ValueType.DWORD, 1),
        EntryWrite(SHA256_HASH, ValueType.BINARY, fingerprint),
    ]


class ConfigMutator:
    """Apply the SSTP certificate binding to one host's registry"""

    def __init__(self, store, services):
        self.store = store
        self.services = services

    @property
    def host(self) -> str:
        return self.store.host_name

    def apply(self, request: MutationRequest) -> MutationOutcome:
        """
        Configure the certificate binding described by request.

        :return: MutationOutcome (SKIPPED, DRY_RUN or APPLIED)
        :raises FormatError: the fingerprint is not valid hex
        :raises TransactionFailure: a write failed, nothing was changed
        :raises ValidationFailure: the change is not visible after commit
        :raises ServiceRestartFailure: configured, but the restart failed
        """
        fingerprint = decode(request.fingerprint_hex)
        host = self.host
        path = request.config_path

        try:
            path_exists = self.store.exists(path)
        except StoreError as e:
            raise TransactionFailure(host, f'could not open {path}: {e}') from e

        if not path_exists:
            warning = f'{path} not found, SSTP is not installed - nothing to configure'
            logger.warning(f'{host}: {warning}')
            return MutationOutcome(host, MutationStatus.SKIPPED, warning=warning)

        writes = build_writes(fingerprint)

        if request.dry_run:
            return self._dry_run(request, writes)

        self._commit_writes(path, writes, request.verbose)
        self._validate(path)

        restart_performed = False
        restart_error = None
        if request.restart:
            try:
                self.services.restart_service(request.service_name, force=True)
                restart_performed = True
            except ServiceControlError as e:
                restart_error = e
        else:
            logger.warning(f'{host}: restart {request.service_name} for the new certificate to take effect')

        restart_required = not restart_performed
        result = None
        if request.want_result:
            try:
                result = self.read_result(path, restart_performed, restart_required)
            except StoreError as e:
                raise ValidationFailure(host, f'could not read back the binding: {e}') from e

        outcome = MutationOutcome(host, MutationStatus.APPLIED, result=result,
                                  restart_performed=restart_performed,
                                  restart_required=restart_required)

        if restart_error is not None:
            raise ServiceRestartFailure(
                host, f'configuration applied but {request.service_name} restart failed: {restart_error}',
                outcome) from restart_error

        return outcome

    def _dry_run(self, request: MutationRequest, writes: List[EntryWrite]) -> MutationOutcome:
        try:
            self.store.read_entry(request.config_path, SHA1_HASH)
            has_legacy = True
        except EntryNotFound:
            has_legacy = False
        except StoreError as e:
            raise TransactionFailure(self.host, f'could not read {SHA1_HASH}: {e}') from e

        summary = DryRunSummary(self.host, request.config_path, writes,
                                delete_legacy_hash=has_legacy,
                                restart_requested=request.restart)
        for line in summary.describe():
            logger.info(f'{self.host}: {line}')
        return MutationOutcome(self.host, MutationStatus.DRY_RUN, summary=summary,
                               restart_required=summary.restart_recommended)

    def _commit_writes(self, path: str, writes: List[EntryWrite], verbose: bool) -> None:
        level = logging.INFO if verbose else logging.DEBUG
        tx = self.store.begin_transaction(ErrorPolicy.ROLLBACK)
        try:
            for write in writes:
                logger.log(level, f'{self.host}: setting {write.name}')
                self.store.write_entry(tx, path, write)
            if self._remove_legacy_hash(tx, path):
                logger.log(level, f'{self.host}: removing {SHA1_HASH}')
            self.store.commit(tx)
        except RollbackError as e:
            raise TransactionFailure(self.host, f'registry update failed: {e}', e.left_changed) from e
        except StoreError as e:
            self.store.rollback(tx)
            raise TransactionFailure(self.host, f'registry update rolled back: {e}') from e

    def _remove_legacy_hash(self, tx, path: str) -> bool:
        """Stage deletion of the SHA-1 hash; a missing value is not an error"""
        try:
            self.store.read_entry(path, SHA1_HASH)
        except EntryNotFound:
            return False
        try:
            self.store.delete_entry(tx, path, SHA1_HASH)
        except EntryNotFound:
            return False
        return True

    def _validate(self, path: str) -> None:
        try:
            value = self.store.read_entry(path, HASH_CONFIGURED_BY_ADMIN)
        except StoreError as e:
            raise ValidationFailure(self.host, f'could not read back {HASH_CONFIGURED_BY_ADMIN}: {e}') from e
        if value != 1:
            raise ValidationFailure(self.host, f'{HASH_CONFIGURED_BY_ADMIN} is {value!r} after commit, expected 1')

    def read_result(self, path: str, restart_performed: bool, restart_required: bool) -> MutationResult:
        """Re-read the binding values from the store"""
        return MutationResult(
            host_name=self.host,
            use_https=self._read_optional(path, USE_HTTPS),
            is_hash_configured_by_admin=self._read_optional(path, HASH_CONFIGURED_BY_ADMIN),
            sha1_hash_hex=encode(self._read_optional(path, SHA1_HASH) or b''),
            sha256_hash_hex=encode(self._read_optional(path, SHA256_HASH) or b''),
            restart_performed=restart_performed,
            restart_required=restart_required,
        )

    def _read_optional(self, path: str, name: str):
        try:
            return self.store.read_entry(path, name)
        except EntryNotFound:
            return None


def configure_host(runner, request: MutationRequest) -> MutationOutcome:
    """Routine dispatched per host: bind the store and services to runner and apply"""
    return ConfigMutator(RegistryStore(runner), ServiceController(runner)).apply(request)
