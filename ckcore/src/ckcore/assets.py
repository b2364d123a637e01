"""
Counterparty asset identifier codec.

Assets are identified on-chain by an unsigned 64-bit id. Ids with a non-zero
high 32-bit word carry a base-26 alphabetic ticker (A=0 ... Z=25); ids that fit
in the low word are rendered in the literal ``A<id>`` form.
"""

from __future__ import annotations

import re

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

MAX_ASSET_ID = 2**64 - 1

# 26**13 < 2**64 < 26**14, so a 64-bit id never needs more than 14 letters
MAX_ALPHABETIC_LENGTH = 14

ALPHABETIC_NAME_RE = re.compile(rf"^[A-Z]{{1,{MAX_ALPHABETIC_LENGTH}}}$")
NUMERIC_NAME_RE = re.compile(r"^A(0|[1-9][0-9]*)$")

# Width of the asset field inside a Counterparty message, in hex digits
ASSET_HEX_WIDTH = 16
LITERAL_PREFIX_HEX = "00000000"


def is_literal_asset_id(asset_id: int) -> bool:
    """True when the id's high 32 bits are zero, i.e. it renders as ``A<id>``."""
    return asset_id >> 32 == 0


def encode_asset_id(asset_id: int) -> str:
    """
    Convert a numeric asset id into its ticker.

    Args:
        asset_id: Unsigned 64-bit asset id

    Returns:
        Alphabetic ticker, or ``A<id>`` for ids below 2**32

    Raises:
        ValueError: If the id is outside the unsigned 64-bit range
    """
    if asset_id < 0 or asset_id > MAX_ASSET_ID:
        raise ValueError(f"Asset id out of range: {asset_id}")

    if is_literal_asset_id(asset_id):
        return f"A{asset_id}"

    letters = []
    while True:
        asset_id, remainder = divmod(asset_id, 26)
        letters.append(ALPHABET[remainder])
        if asset_id == 0:
            break
    return "".join(reversed(letters))


def decode_asset_name(name: str) -> int:
    """
    Convert a ticker back into its numeric asset id.

    Raises:
        ValueError: If the ticker is malformed or does not fit in 64 bits
    """
    if NUMERIC_NAME_RE.match(name):
        asset_id = int(name[1:])
    elif ALPHABETIC_NAME_RE.match(name):
        asset_id = 0
        for char in name:
            asset_id = asset_id * 26 + ALPHABET.index(char)
    else:
        raise ValueError(f"Invalid asset name: {name!r}")

    if asset_id > MAX_ASSET_ID:
        raise ValueError(f"Asset name {name!r} does not fit in 64 bits")
    return asset_id


def asset_name_from_hex(asset_hex: str) -> str:
    """
    Decode the 16-hex-digit asset field of a Counterparty message.

    A leading ``00000000`` block selects the literal ``A<id>`` form, which is
    the same rule :func:`encode_asset_id` applies to the numeric id.
    """
    if len(asset_hex) != ASSET_HEX_WIDTH:
        raise ValueError(f"Asset field must be {ASSET_HEX_WIDTH} hex digits, got {asset_hex!r}")

    asset_id = int(asset_hex, 16)
    if asset_hex[:8] == LITERAL_PREFIX_HEX:
        return f"A{asset_id}"
    return encode_asset_id(asset_id)


def is_valid_asset_name(name: str) -> bool:
    try:
        decode_asset_name(name)
    except ValueError:
        return False
    return True
