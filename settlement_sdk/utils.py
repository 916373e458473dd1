"""
Unit conversion and address helpers.

All monetary conversions follow one rule: the value is read as a
``Decimal`` through its string form and truncated toward zero at the
sixth fractional digit.
"""
import re
import secrets
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Union

from .exceptions import ValidationError, InvalidAddress

USDC_DECIMALS = 6
MICROS_PER_USDC = 10 ** USDC_DECIMALS
_QUANTUM = Decimal(1).scaleb(-USDC_DECIMALS)

_HEX_ADDRESS = re.compile(r"^(0x)?[0-9a-fA-F]{40}$")
_HEX_BYTES32 = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")

ZERO_ADDRESS = "0x" + "0" * 40
MAX_UINT256 = 2 ** 256 - 1

Amount = Union[str, int, float, Decimal]


def to_decimal(value: Amount) -> Decimal:
    """
    Parse an amount into a ``Decimal`` truncated to 6 fractional digits.

    Floats go through ``str()`` first so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises:
        ValidationError: If the value is not a finite, non-negative number
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid amount: {value!r}")
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not dec.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    if dec < 0:
        raise ValidationError(f"Amount must not be negative: {value!r}")
    try:
        return dec.quantize(_QUANTUM, rounding=ROUND_DOWN)
    except InvalidOperation:
        raise ValidationError(f"Amount out of range: {value!r}")


def to_micros(value: Amount) -> int:
    """
    Convert a human USDC amount to micros.

    Args:
        value: Decimal string, int, float or Decimal (e.g. "10.5")

    Returns:
        Amount in USDC base units

    Raises:
        ValidationError: If the value is negative or not a number
    """
    return int(to_decimal(value) * MICROS_PER_USDC)


def micros_to_decimal(micros: int) -> Decimal:
    """Convert micros back to a USDC ``Decimal`` with 6 fractional digits."""
    return (Decimal(int(micros)) / MICROS_PER_USDC).quantize(_QUANTUM)


def format_usdc(micros: int) -> str:
    """Human-readable USDC amount, e.g. ``1500000 -> '1.500000'``."""
    return f"{micros_to_decimal(micros):f}"


def require_positive(micros: int, field: str = "amount") -> int:
    if not isinstance(micros, int) or isinstance(micros, bool) or micros <= 0:
        raise ValidationError(f"{field} must be a positive number of micros (got {micros!r})")
    return micros


def validate_address(address: str) -> str:
    """
    Check that ``address`` is 20 bytes of hex and return it with a 0x prefix.

    Raises:
        InvalidAddress: If the address has the wrong length or is not hex
    """
    if not isinstance(address, str) or not _HEX_ADDRESS.match(address):
        raise InvalidAddress(address)
    return address if address.startswith("0x") else "0x" + address


def address_to_bytes32(address: str) -> str:
    """
    Left-pad a 20-byte address to a 32-byte hex value.

    Args:
        address: Hex address with or without 0x prefix

    Returns:
        Lowercase 0x-prefixed 32-byte hex string

    Raises:
        InvalidAddress: If the address is not exactly 20 bytes
    """
    body = validate_address(address)[2:].lower()
    return "0x" + body.rjust(64, "0")


def bytes32_from_hex(value: str) -> str:
    """Validate a 32-byte hex value (e.g. a salt) and normalise it."""
    if not isinstance(value, str) or not _HEX_BYTES32.match(value):
        raise ValidationError(f"Expected 32-byte hex value, got {value!r}")
    body = value[2:] if value.startswith("0x") else value
    return "0x" + body.lower()


def random_salt() -> str:
    """Fresh 32-byte salt from the OS CSPRNG."""
    return "0x" + secrets.token_bytes(32).hex()


def short_address(address: str) -> str:
    """Truncate an address for log output."""
    if not address or len(address) < 12:
        return address
    return f"{address[:6]}...{address[-4:]}"
