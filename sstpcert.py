#!/usr/bin/env python3
# sstpcert.py - SSTP Certificate Binding Tool
# Version 1.0 - October 2026
# Sets the SSTP VPN certificate hash on local or remote RRAS servers

"""
SSTP Certificate Binding Tool

Installs a SHA-256 certificate hash in the SstpSvc registry parameters of one
or more Windows RRAS servers, removes the legacy SHA-1 hash value and
optionally restarts the RemoteAccess service.

Usage:
    python3 sstpcert.py --hash <64 hex chars>                  # local machine
    python3 sstpcert.py --certificate vpn.pem -c vpn-01 vpn-02 --restart
    python3 sstpcert.py --hash <hash> -c vpn-01 --username CORP\\admin --encrypt
    python3 sstpcert.py --hash <hash> -c vpn-01 --dry-run      # show what would be done
    python3 sstpcert.py --config sstpcert.ini --passthru --json

Settings not given on the command line are read from the [SSTP] and [REMOTE]
sections of the config file (see sstpcert.ini.example).

Exit codes:
  0 = every host configured, skipped (SSTP not installed) or dry run
  1 = at least one host failed
  2 = usage or configuration error
"""

import os
import sys
import json
import logging
import argparse

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

# Import core functions
import sstpfunctions as sf
from Tools.fingerprint import FormatError, thumbprint_from_file, validate_certificate_hash
from Tools.hosts import RemoteSettings, configure_hosts, is_local_host
from Tools.remoting import AuthMode, Credential
from Tools.sstp_config import MutationRequest

SCRIPT_VERSION = '1.0'


class UsageError(Exception):
    """Invalid command line or configuration"""


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Set the SSTP VPN certificate hash on RRAS servers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='Password lookup order: --password, SSTPCERT_PASS, ~/sstpcert-creds.txt'
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument('--hash', dest='certificate_hash',
                        help='SHA-256 certificate hash (64 hex characters)')
    source.add_argument('--certificate', dest='certificate_file',
                        help='PEM or DER certificate to take the SHA-256 hash from')

    parser.add_argument('--computer-name', '-c', nargs='+', dest='hosts',
                        help='Target hosts (default: [SSTP] hosts or the local machine)')
    restart = parser.add_mutually_exclusive_group()
    restart.add_argument('--restart', action='store_true', default=None,
                         help='Restart the RemoteAccess service after the change')
    restart.add_argument('--no-restart', action='store_false', dest='restart', default=None,
                         help='Do not restart, even if [SSTP] restart = yes')
    parser.add_argument('--passthru', action='store_true',
                        help='Read back and report the resulting values')
    parser.add_argument('--dry-run', action='store_true',
                        help='Dry run - show what would be changed')

    parser.add_argument('--authentication', choices=[mode.value for mode in AuthMode],
                        help='Authentication for remote hosts (default: default)')
    parser.add_argument('--username', help='Account for remote hosts (DOMAIN\\user)')
    parser.add_argument('--password', help='Password for --username')
    encrypt = parser.add_mutually_exclusive_group()
    encrypt.add_argument('--encrypt', action='store_true', default=None,
                         help='Require SMB encryption for remote hosts')
    encrypt.add_argument('--no-encrypt', action='store_false', dest='encrypt', default=None,
                         help='Do not encrypt, even if [REMOTE] encrypt = yes')
    parser.add_argument('--max-workers', type=int,
                        help=f'Hosts configured in parallel (default: {sf.max_workers})')
    parser.add_argument('--timeout', type=int,
                        help=f'Remote connection/command timeout in seconds (default: {sf.remote_timeout})')

    parser.add_argument('--config', help=f'INI config file (default: {sf.configini})')
    parser.add_argument('--config-path', help=f'Registry key (default: {sf.sstp_config_path})')
    parser.add_argument('--service-name', help=f'Service to restart (default: {sf.sstp_service})')
    parser.add_argument('--logfile', help='Also append output to this file')
    parser.add_argument('--json', action='store_true', help='Print per-host results as JSON')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--version', action='version', version=f'%(prog)s {SCRIPT_VERSION}')
    return parser.parse_args(argv)

#==============================================================================
# INPUT GUARDS
#==============================================================================

def resolve_certificate_hash(args) -> str:
    """Get the SHA-256 hash from --hash, --certificate or the config file"""
    certificate_hash = args.certificate_hash or sf.get_config_value('SSTP', 'certificate_hash')
    certificate_file = args.certificate_file
    if not certificate_hash and not certificate_file:
        certificate_file = sf.get_config_value('SSTP', 'certificate_file')

    if certificate_file and not args.certificate_hash:
        if not os.path.isfile(certificate_file):
            raise UsageError(f'Certificate file not found: {certificate_file}')
        try:
            return thumbprint_from_file(certificate_file)
        except ValueError as e:
            raise UsageError(f'Could not load certificate {certificate_file}: {e}') from e

    if not certificate_hash:
        raise UsageError('No certificate hash given. Use --hash or --certificate')

    try:
        return validate_certificate_hash(certificate_hash)
    except FormatError as e:
        raise UsageError(str(e)) from e


def resolve_hosts(args) -> list:
    """Target host list with blanks and duplicates removed; local aliases count as one host"""
    hosts = args.hosts or sf.get_config_list('SSTP', 'hosts') or ['localhost']

    result = []
    seen = set()
    for host in hosts:
        name = host.strip()
        if not name:
            continue
        key = 'localhost' if is_local_host(name) else name.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(name)

    if not result:
        raise UsageError('No target hosts given')
    return result


def resolve_settings(args) -> RemoteSettings:
    """Remote execution settings from the command line and [REMOTE]"""
    auth_name = args.authentication or sf.get_config_value('REMOTE', 'authentication', 'default')
    try:
        auth = AuthMode(auth_name.lower())
    except ValueError:
        raise UsageError(f'Unknown authentication mode: {auth_name}') from None

    credential = None
    username = args.username or sf.get_config_value('REMOTE', 'username')
    if username:
        password = args.password or sf.get_password()
        if not password:
            raise UsageError(f'No password for {username}. Set {sf.password_env} or {sf.creds}')
        credential = Credential(username, password)
    elif auth is AuthMode.NTLM:
        raise UsageError('NTLM authentication needs --username')

    encrypt = args.encrypt if args.encrypt is not None else sf.get_config_bool('REMOTE', 'encrypt')
    max_workers = args.max_workers or sf.get_config_int('REMOTE', 'max_workers', sf.max_workers)
    timeout = args.timeout or sf.get_config_int('REMOTE', 'timeout', sf.remote_timeout)
    if max_workers < 1 or timeout < 1:
        raise UsageError('--max-workers and --timeout must be positive')

    return RemoteSettings(auth=auth, credential=credential, encrypt=encrypt,
                          timeout=timeout, max_workers=max_workers)


def build_request(args, certificate_hash: str) -> MutationRequest:
    restart = args.restart if args.restart is not None else sf.get_config_bool('SSTP', 'restart')
    return MutationRequest(
        config_path=args.config_path or sf.get_config_value('SSTP', 'config_path', sf.sstp_config_path),
        fingerprint_hex=certificate_hash,
        restart=restart,
        want_result=args.passthru,
        dry_run=args.dry_run,
        verbose=args.verbose,
        service_name=args.service_name or sf.get_config_value('SSTP', 'service_name', sf.sstp_service),
    )

#==============================================================================
# OUTPUT
#==============================================================================

def outcome_record(host_outcome) -> dict:
    """JSON-friendly record of one host's outcome"""
    record = {
        'host': host_outcome.host,
        'status': host_outcome.status,
        'configApplied': host_outcome.config_applied,
        'error': host_outcome.message if not host_outcome.ok else None,
        'result': None,
    }
    if getattr(host_outcome.error, 'left_changed', None):
        record['leftChanged'] = host_outcome.error.left_changed
    if host_outcome.outcome is not None:
        record['restartPerformed'] = host_outcome.outcome.restart_performed
        record['restartRequiredButNotPerformed'] = host_outcome.outcome.restart_required
        if host_outcome.outcome.warning:
            record['warning'] = host_outcome.outcome.warning
    if host_outcome.result is not None:
        record['result'] = host_outcome.result.as_dict()
    return record


def print_summary(outcomes) -> None:
    print("\n" + "=" * 60)
    print("SSTP CERTIFICATE BINDING SUMMARY")
    print("=" * 60)
    for host_outcome in outcomes:
        print(f"  {host_outcome.status.upper():<15} {host_outcome.host}")
        if not host_outcome.ok or (host_outcome.outcome and host_outcome.outcome.warning):
            print(f"      {host_outcome.message}")
        result = host_outcome.result
        if result is not None:
            for key, value in result.as_dict().items():
                print(f"      {key:<32} {value}")
    print()

#==============================================================================
# MAIN
#==============================================================================

def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    sf.init(args.config, logfile=args.logfile, console=not args.json)

    try:
        certificate_hash = resolve_certificate_hash(args)
        hosts = resolve_hosts(args)
        settings = resolve_settings(args)
    except UsageError as e:
        logger.error(str(e))
        return 2

    request = build_request(args, certificate_hash)

    sf.write_output(f'SSTP certificate hash: {certificate_hash}')
    sf.write_output(f'Targets: {", ".join(hosts)}')
    if request.dry_run:
        sf.write_output('DRY RUN MODE - No changes will be made')

    outcomes = configure_hosts(hosts, request, settings)

    if args.json:
        print(json.dumps([outcome_record(o) for o in outcomes], indent=2))
    else:
        print_summary(outcomes)

    failed = [o.host for o in outcomes if not o.ok]
    if failed:
        sf.write_output(f'Failed hosts: {", ".join(failed)}')
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
