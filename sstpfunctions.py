# sstpfunctions.py - SSTP Certificate Tool Core Functions Library
# Version 1.0 - October 2026
# Shared configuration, credential, output and command helpers

import os
import subprocess
import datetime
import socket
import logging
from configparser import ConfigParser

# Default logging level is WARNING (other levels are DEBUG, INFO, ERROR and CRITICAL)
logging.basicConfig(level=logging.WARNING)

#==============================================================================
# STATIC VARIABLES
#==============================================================================

configname = 'sstpcert.ini'
configini = os.environ.get('SSTPCERT_CONFIG', os.path.join(os.getcwd(), configname))
creds = os.path.join(os.path.expanduser('~'), 'sstpcert-creds.txt')
password_env = 'SSTPCERT_PASS'

# Registry location of the SSTP service parameters and the service to restart
sstp_config_path = r'HKLM\SYSTEM\CurrentControlSet\Services\SstpSvc\Parameters'
sstp_service = 'RemoteAccess'

# Remote execution defaults
smb_port = 445
remote_timeout = 60
max_workers = 8

# Log files (empty list means console only)
logfiles = []

# Config parser
config = ConfigParser()

# Password variable - cached after the first lookup
_password = None

# Console output flag
console_output = True

#==============================================================================
# INITIALIZATION
#==============================================================================

def init(config_file=None, **kwargs):
    """
    Initialize the sstpfunctions module

    :param config_file: Path to the INI file (defaults to configini)
    :param kwargs:
        logfile - append output to this file as well as the console
        console - override console output setting (True/False)
    :return: True if a config file was read
    """
    global configini, logfiles, console_output

    if config_file:
        configini = config_file

    if kwargs.get('logfile'):
        logfiles = [kwargs['logfile']]

    if 'console' in kwargs:
        console_output = kwargs['console']

    loaded = False
    if os.path.isfile(configini):
        config.read(configini)
        loaded = True
        write_output(f'Read configuration from {configini}', console=False)

    return loaded

#==============================================================================
# CONFIG HELPER FUNCTIONS
#==============================================================================

def get_config_list(section: str, option: str, fallback: list = None) -> list:
    """
    Get a config option as a list, filtering out commented lines.

    Multiline values are split on newlines, single-line values on commas.
    Lines starting with '#' or ';' are treated as if they don't exist.

    :param section: Config section name (e.g., 'SSTP')
    :param option: Config option name (e.g., 'hosts')
    :param fallback: Default value if option doesn't exist (default: empty list)
    :return: List of non-commented, non-empty values

    Example:
        # [SSTP]
        # hosts = vpn-01.corp.example
        #   #vpn-02.corp.example
        #   vpn-03.corp.example

        get_config_list('SSTP', 'hosts')
        # Returns: ['vpn-01.corp.example', 'vpn-03.corp.example']
    """
    if fallback is None:
        fallback = []

    if not config.has_option(section, option):
        return fallback

    raw_value = config.get(section, option)
    if not raw_value:
        return fallback

    if '\n' in raw_value:
        lines = raw_value.split('\n')
    else:
        lines = raw_value.split(',')

    result = []
    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith('#') or stripped.startswith(';'):
            continue
        result.append(stripped)

    return result


def get_config_value(section: str, option: str, fallback: str = '') -> str:
    """
    Get a config option value, returning fallback if commented out.

    :param section: Config section name
    :param option: Config option name
    :param fallback: Default value if option doesn't exist or is commented
    :return: Config value or fallback
    """
    if not config.has_option(section, option):
        return fallback

    value = config.get(section, option).strip()

    if not value or value.startswith('#') or value.startswith(';'):
        return fallback

    return value


def get_config_bool(section: str, option: str, fallback: bool = False) -> bool:
    """Get a boolean config option (yes/no, true/false, on/off, 1/0)"""
    value = get_config_value(section, option)
    if not value:
        return fallback
    return value.lower() in ('1', 'yes', 'true', 'on')


def get_config_int(section: str, option: str, fallback: int = 0) -> int:
    """Get an integer config option, falling back when unset or not a number"""
    value = get_config_value(section, option)
    try:
        return int(value)
    except ValueError:
        return fallback

#==============================================================================
# PASSWORD FUNCTIONS
#==============================================================================

def get_password() -> str:
    """
    Get the remote account password.

    Looked up from the SSTPCERT_PASS environment variable first, then the
    creds file. The result is cached in _password after the first read.

    :return: Password string, or empty string if not found
    """
    global _password
    if _password is None:
        if os.environ.get(password_env):
            _password = os.environ[password_env]
        elif os.path.isfile(creds):
            with open(creds, 'r') as f:
                _password = f.read().strip()
    return _password if _password else ''

#==============================================================================
# OUTPUT AND LOGGING
#==============================================================================

def write_output(msg, **kwargs):
    """
    Write output to log files and optionally to console

    :param msg: Message to write
    :param kwargs:
        logfile - specific logfile path
        console - override console output setting (True/False)
    """
    timestamp = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    formatted_msg = f'[{timestamp}] {msg}'

    lfile = kwargs.get('logfile', None)
    print_to_console = kwargs.get('console', console_output)

    targets = [lfile] if lfile else logfiles
    for lf in targets:
        try:
            directory = os.path.dirname(lf)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(lf, 'a') as f:
                f.write(formatted_msg + '\n')
        except OSError as e:
            print(f'Error writing to {lf}: {e}')

    if print_to_console:
        print(formatted_msg)

#==============================================================================
# COMMAND EXECUTION
#==============================================================================

def run_command(cmd, **kwargs):
    """
    Execute a command

    :param cmd: Command string or list
    :param kwargs: timeout, shell, capture_output
    :return: subprocess.CompletedProcess
    """
    timeout = kwargs.get('timeout', 300)
    shell = kwargs.get('shell', True)
    capture = kwargs.get('capture_output', True)

    try:
        result = subprocess.run(
            cmd,
            shell=shell,
            capture_output=capture,
            text=True,
            timeout=timeout
        )
        return result
    except subprocess.TimeoutExpired:
        write_output(f'Command timed out: {cmd}')
        return subprocess.CompletedProcess(cmd, 1, '', 'Timeout')
    except OSError as e:
        write_output(f'Command failed: {cmd} - {e}')
        return subprocess.CompletedProcess(cmd, 1, '', str(e))

#==============================================================================
# NETWORK TESTING
#==============================================================================

def test_tcp_port(host, port, **kwargs):
    """
    Test if a TCP port is open

    :param host: Hostname or IP
    :param port: Port number
    :return: True if port is open
    """
    timeout = kwargs.get('timeout', 5)

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        result = sock.connect_ex((host, port))
        sock.close()
        return result == 0
    except OSError:
        return False
