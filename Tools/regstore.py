#!/usr/bin/env python3
# regstore.py - SSTP Certificate Tool Registry Store
# Version 1.0 - October 2026
# Transactional access to registry values through reg.exe

"""
Registry Store Module

RegistryStore drives reg.exe through a command runner (local or remote), so
the same code configures the local machine and remote hosts.

reg.exe exits with 1 for every error and its messages are localized, so
"not found" is never read from its output:

- a key is tested with PowerShell Test-Path and its exit code
- a value is read from the full listing of its key (reg query <key>);
  a name missing from the listing does not exist

reg.exe has no transaction support, so transactions are journaled:

1. write_entry()/delete_entry() only stage operations on a Transaction
2. commit() queries the current value of each entry before changing it
3. with ErrorPolicy.ROLLBACK, the first failure restores every entry already
   changed (in reverse order) before StoreError is raised; if an entry cannot
   be restored RollbackError names what was left changed

reg.exe output format (reg query <key>):

    HKEY_LOCAL_MACHINE\\SYSTEM\\CurrentControlSet\\Services\\SstpSvc\\Parameters
        UseHttps    REG_DWORD    0x0
        SHA256CertificateHash    REG_BINARY    0A1B...
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from Tools.fingerprint import FormatError, decode, encode

logger = logging.getLogger(__name__)

#==============================================================================
# CONFIGURATION
#==============================================================================

REG_EXE = 'reg.exe'
POWERSHELL = 'powershell.exe'

# Exit code of the Test-Path command when the key does not exist
KEY_MISSING_EXIT = 3

HIVES = {
    'HKLM': 'HKEY_LOCAL_MACHINE',
    'HKCU': 'HKEY_CURRENT_USER',
    'HKCR': 'HKEY_CLASSES_ROOT',
    'HKU': 'HKEY_USERS',
    'HKCC': 'HKEY_CURRENT_CONFIG',
}

VALUE_LINE = re.compile(r'^\s+(?P<name>.+?)\s+(?P<type>REG_[A-Z_]+)(?:\s+(?P<data>.*))?$')

#==============================================================================
# TYPES
#==============================================================================

class ValueType(Enum):
    DWORD = "REG_DWORD"
    BINARY = "REG_BINARY"
    SZ = "REG_SZ"


class ErrorPolicy(Enum):
    ROLLBACK = "rollback"
    KEEP_APPLIED = "keep-applied"


class TransactionState(Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"
    # Rollback failed part way; some entries keep their new values
    ROLLBACK_INCOMPLETE = "rollback-incomplete"


@dataclass(frozen=True)
class EntryWrite:
    name: str
    value_type: ValueType
    value: Any
    # Overwrite an existing value (reg add /f)
    force: bool = True


@dataclass
class Transaction:
    policy: ErrorPolicy = ErrorPolicy.ROLLBACK
    state: TransactionState = TransactionState.OPEN
    # Staged operations: ('write', path, EntryWrite) or ('delete', path, name)
    operations: List[Tuple[str, str, Any]] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.state is TransactionState.OPEN


class StoreError(Exception):
    """A registry operation failed"""


class EntryNotFound(StoreError):
    """The registry value (or key) does not exist"""


class RollbackError(StoreError):
    """A commit failed and some applied entries could not be restored"""

    def __init__(self, message: str, left_changed: List[str]):
        super().__init__(f'{message}; rollback incomplete, left changed: {", ".join(left_changed)}')
        self.left_changed = left_changed

#==============================================================================
# REGISTRY STORE
#==============================================================================

class RegistryStore:
    """Configuration store backed by reg.exe"""

    def __init__(self, runner):
        self.runner = runner

    @property
    def host_name(self) -> str:
        return self.runner.host_name

    #--------------------------------------------------------------------------
    # reg.exe helpers
    #--------------------------------------------------------------------------

    def _reg(self, *arguments: str):
        result = self.runner.run(REG_EXE, list(arguments))
        logger.debug(f'reg {" ".join(arguments)} -> rc={result.returncode}')
        return result

    @staticmethod
    def _provider_path(path: str) -> str:
        """PowerShell registry provider path, e.g. Registry::HKEY_LOCAL_MACHINE\\SYSTEM"""
        hive, _, rest = path.partition('\\')
        hive = HIVES.get(hive.upper(), hive)
        return f'Registry::{hive}\\{rest}' if rest else f'Registry::{hive}'

    @staticmethod
    def _parse_value(value_type: str, data: str) -> Any:
        if value_type == ValueType.DWORD.value:
            return int(data, 16) if data.lower().startswith('0x') else int(data)
        if value_type == ValueType.BINARY.value:
            return decode(data)
        return data

    @staticmethod
    def _format_value(write: EntryWrite) -> str:
        if write.value_type is ValueType.DWORD:
            return str(int(write.value))
        if write.value_type is ValueType.BINARY:
            return encode(bytes(write.value))
        return str(write.value)

    def _list(self, path: str) -> Dict[str, Tuple[str, str]]:
        """Raw (type, data) of every value under a key, keyed by lower-case name"""
        result = self._reg('query', path)
        if not result.ok:
            if not self.exists(path):
                return {}
            raise StoreError(f'reg query {path} failed: {result.stderr or result.stdout}')

        values = {}
        for line in result.stdout.splitlines():
            match = VALUE_LINE.match(line)
            if match:
                values[match.group('name').lower()] = (match.group('type'),
                                                       (match.group('data') or '').strip())
        return values

    def _query(self, path: str, name: str) -> Optional[Tuple[ValueType, Any]]:
        """Return (type, value) for a registry value, None if it does not exist"""
        entry = self._list(path).get(name.lower())
        if entry is None:
            return None

        type_name, data = entry
        try:
            value_type = ValueType(type_name)
        except ValueError:
            raise StoreError(f'{name} has unsupported type {type_name}') from None
        try:
            return value_type, self._parse_value(value_type.value, data)
        except (FormatError, ValueError) as e:
            raise StoreError(f'Could not parse {name} value "{data}": {e}') from e

    def _add(self, path: str, write: EntryWrite) -> None:
        if not write.force and self._query(path, write.name) is not None:
            raise StoreError(f'{write.name} already exists and force is not set')

        # /f also suppresses the interactive overwrite prompt
        result = self._reg('add', path, '/v', write.name, '/t', write.value_type.value,
                           '/d', self._format_value(write), '/f')
        if not result.ok:
            raise StoreError(f'reg add {path} /v {write.name} failed: {result.stderr or result.stdout}')

    def _delete(self, path: str, name: str) -> None:
        result = self._reg('delete', path, '/v', name, '/f')
        if not result.ok:
            if self._query(path, name) is None:
                raise EntryNotFound(f'{path}\\{name} does not exist')
            raise StoreError(f'reg delete {path} /v {name} failed: {result.stderr or result.stdout}')

    #--------------------------------------------------------------------------
    # Store interface
    #--------------------------------------------------------------------------

    def exists(self, path: str) -> bool:
        literal = self._provider_path(path).replace("'", "''")
        command = (f"if (Test-Path -LiteralPath '{literal}') {{ exit 0 }} "
                   f"else {{ exit {KEY_MISSING_EXIT} }}")
        result = self.runner.run(POWERSHELL, ['-NoProfile', '-NonInteractive', '-InputFormat', 'None',
                                              '-Command', command])
        logger.debug(f'Test-Path {path} -> rc={result.returncode}')
        if result.returncode == 0:
            return True
        if result.returncode == KEY_MISSING_EXIT:
            return False
        raise StoreError(f'Test-Path {path} failed: {result.stderr or result.stdout}')

    def read_entry(self, path: str, name: str) -> Any:
        entry = self._query(path, name)
        if entry is None:
            raise EntryNotFound(f'{path}\\{name} does not exist')
        return entry[1]

    def begin_transaction(self, policy: ErrorPolicy = ErrorPolicy.ROLLBACK) -> Transaction:
        return Transaction(policy=policy)

    def write_entry(self, tx: Transaction, path: str, write: EntryWrite) -> None:
        self._require_open(tx)
        # Catch values reg.exe cannot take before anything is applied
        try:
            self._format_value(write)
        except (TypeError, ValueError) as e:
            raise StoreError(f'Invalid value for {write.name}: {e}') from e
        tx.operations.append(('write', path, write))

    def delete_entry(self, tx: Transaction, path: str, name: str) -> None:
        self._require_open(tx)
        if self._query(path, name) is None:
            raise EntryNotFound(f'{path}\\{name} does not exist')
        tx.operations.append(('delete', path, name))

    def commit(self, tx: Transaction) -> None:
        """
        Apply all staged operations in order.

        :raises RollbackError: an operation failed under ErrorPolicy.ROLLBACK
                               and some entries could not be restored
        :raises StoreError: an operation failed; under ErrorPolicy.ROLLBACK
                            every entry already changed has been restored
        """
        self._require_open(tx)
        journal = []

        try:
            for kind, path, item in tx.operations:
                name = item.name if kind == 'write' else item
                prior = self._query(path, name)
                if kind == 'write':
                    self._add(path, item)
                else:
                    self._delete(path, item)
                journal.append((path, name, prior))
        except StoreError as e:
            if tx.policy is not ErrorPolicy.ROLLBACK:
                tx.state = TransactionState.COMMITTED
                raise
            left_changed = self._restore(journal)
            if left_changed:
                tx.state = TransactionState.ROLLBACK_INCOMPLETE
                raise RollbackError(str(e), left_changed) from e
            tx.state = TransactionState.ROLLED_BACK
            raise

        tx.state = TransactionState.COMMITTED
        logger.debug(f'Committed {len(journal)} registry operations')

    def rollback(self, tx: Transaction) -> None:
        """Discard staged operations; closed transactions are left as they are"""
        if not tx.is_open:
            return
        tx.operations.clear()
        tx.state = TransactionState.ROLLED_BACK

    #--------------------------------------------------------------------------

    def _require_open(self, tx: Transaction) -> None:
        if not tx.is_open:
            raise StoreError(f'Transaction is already {tx.state.value}')

    def _restore(self, journal) -> List[str]:
        """Undo journaled changes in reverse order, return the entries that could not be restored"""
        failed = []
        for path, name, prior in reversed(journal):
            try:
                if prior is None:
                    self._delete(path, name)
                else:
                    value_type, value = prior
                    self._add(path, EntryWrite(name, value_type, value))
                logger.info(f'Rolled back {name}')
            except EntryNotFound:
                logger.info(f'Rolled back {name} (already absent)')
            except StoreError as e:
                logger.error(f'Rollback of {name} failed: {e}')
                failed.append(f'{path}\\{name}')
        return failed
