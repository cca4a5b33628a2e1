"""ICP account identifier and principal helpers"""

import base64
import hashlib
import zlib
from typing import Optional

ACCOUNT_ID_DOMAIN = b"\x0aaccount-id"
DEFAULT_SUBACCOUNT = bytes(32)


def _crc32_bytes(data: bytes) -> bytes:
    return zlib.crc32(data).to_bytes(4, "big")


def is_principal_text(value: str) -> bool:
    """Principals are written as dash-separated base32 groups"""
    return "-" in value


def is_valid_account_id(account_hex: str) -> bool:
    """
    Check that an account identifier is 32 bytes of hex whose first four
    bytes are the CRC32 of the remaining 28.
    """
    if len(account_hex) != 64:
        return False
    try:
        raw = bytes.fromhex(account_hex)
    except ValueError:
        return False
    return raw[:4] == _crc32_bytes(raw[4:])


def principal_from_text(text: str) -> bytes:
    """
    Decode a textual principal into its raw bytes

    Raises:
        ValueError: if the text is not valid base32 or the checksum does not match
    """
    compact = text.replace("-", "").upper()
    padding = "=" * (-len(compact) % 8)
    try:
        decoded = base64.b32decode(compact + padding)
    except ValueError as exc:
        raise ValueError(f"Invalid principal text: {text}") from exc

    if len(decoded) < 4:
        raise ValueError(f"Principal too short: {text}")

    checksum, principal = decoded[:4], decoded[4:]
    if checksum != _crc32_bytes(principal):
        raise ValueError(f"Principal checksum mismatch: {text}")
    return principal


def principal_to_text(principal: bytes) -> str:
    encoded = base64.b32encode(_crc32_bytes(principal) + principal).decode().lower().rstrip("=")
    return "-".join(encoded[i : i + 5] for i in range(0, len(encoded), 5))


def principal_to_account_id(principal: bytes, subaccount: Optional[bytes] = None) -> str:
    """Derive the hex account identifier of a principal's (sub)account"""
    sub = subaccount if subaccount is not None else DEFAULT_SUBACCOUNT
    if len(sub) != 32:
        raise ValueError("Subaccount must be 32 bytes")

    digest = hashlib.sha224(ACCOUNT_ID_DOMAIN + principal + sub).digest()
    return (_crc32_bytes(digest) + digest).hex()


def normalize_address(address: str) -> str:
    """
    Resolve an address to a lowercase account identifier.

    Principals are converted to their default account identifier. Account
    identifiers are returned lowercased without further validation.
    """
    address = address.strip()
    if is_principal_text(address):
        return principal_to_account_id(principal_from_text(address))
    return address.lower()
