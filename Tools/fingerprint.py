#!/usr/bin/env python3
# fingerprint.py - SSTP Certificate Fingerprint Codec
# Version 1.0 - October 2026
# Converts certificate hash strings to registry byte values and back

import string

from cryptography import x509
from cryptography.hazmat.primitives import hashes

#==============================================================================
# CONFIGURATION
#==============================================================================

SHA256_HEX_LENGTH = 64
HEX_DIGITS = frozenset(string.hexdigits)


class FormatError(ValueError):
    """Raised when a hash string is not an even-length hexadecimal string"""


#==============================================================================
# FUNCTIONS
#==============================================================================

def decode(hex_string: str) -> bytes:
    """
    Convert a hexadecimal string to bytes, two characters per byte.

    Digits are case-insensitive and the most significant nibble comes first.
    Nothing is returned unless the whole string parses.

    :param hex_string: Even-length string of hex digits
    :return: Decoded bytes
    :raises FormatError: odd length or a non-hex character pair
    """
    if len(hex_string) % 2 != 0:
        raise FormatError(f'Hash string has odd length ({len(hex_string)})')

    result = bytearray()
    for index in range(0, len(hex_string), 2):
        pair = hex_string[index:index + 2]
        if not set(pair) <= HEX_DIGITS:
            raise FormatError(f'Invalid hex pair "{pair}" at position {index}')
        result.append(int(pair, 16))

    return bytes(result)


def encode(data: bytes) -> str:
    """Render bytes as an upper-case hex string (inverse of decode)"""
    return data.hex().upper()


def is_certificate_hash(value: str) -> bool:
    """True if value is a 64 character hex string"""
    return len(value) == SHA256_HEX_LENGTH and set(value) <= HEX_DIGITS


def validate_certificate_hash(value: str) -> str:
    """
    Check a SHA-256 certificate hash supplied by the operator.

    :param value: Hash string, colons and spaces are ignored
    :return: Normalized upper-case hash
    :raises FormatError: wrong length or non-hex characters
    """
    normalized = value.replace(':', '').replace(' ', '').strip()
    if len(normalized) != SHA256_HEX_LENGTH:
        raise FormatError(
            f'Certificate hash must be {SHA256_HEX_LENGTH} hex characters, got {len(normalized)}'
        )
    if not is_certificate_hash(normalized):
        raise FormatError('Certificate hash contains non-hex characters')
    return normalized.upper()


def thumbprint_from_file(path: str) -> str:
    """
    Compute the SHA-256 thumbprint of a PEM or DER certificate file.

    :param path: Path to the certificate
    :return: Upper-case hex thumbprint
    """
    with open(path, 'rb') as f:
        data = f.read()

    if b'-----BEGIN CERTIFICATE-----' in data:
        cert = x509.load_pem_x509_certificate(data)
    else:
        cert = x509.load_der_x509_certificate(data)

    return encode(cert.fingerprint(hashes.SHA256()))
