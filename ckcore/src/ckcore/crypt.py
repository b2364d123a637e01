"""
Symmetric encryption with OpenSSL cipher names.

Keys and IVs can be derived from a password and salt the way gibberish-aes
and ``openssl enc -md md5`` do (chained MD5 rounds). Password-based payloads use
the OpenSSL ``Salted__`` envelope, so they interoperate with both.
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from loguru import logger

SALT_SIZE = 8
BLOCK_SIZE = 16
SALTED_MAGIC = b"Salted__"
DEFAULT_CIPHER = "aes-256-cbc"

CIPHER_RE = re.compile(r"^aes-(128|192|256)-(cbc|ctr|ecb)$")

# Block modes that need PKCS#7 padding; CTR is a stream mode
PADDED_MODES = ("cbc", "ecb")


class CryptError(ValueError):
    """Unknown cipher or data that cannot be decrypted."""

    pass


@dataclass(frozen=True)
class CipherSpec:
    name: str
    key_size: int
    mode: str

    @property
    def needs_iv(self) -> bool:
        return self.mode != "ecb"


def parse_cipher(name: str) -> CipherSpec:
    """
    Parse an OpenSSL cipher name such as ``aes-256-cbc``.

    Raises:
        CryptError: If the cipher is not a supported AES variant
    """
    match = CIPHER_RE.match(name.lower())
    if not match:
        raise CryptError(f"Unsupported cipher: {name!r}")
    bits, mode = match.groups()
    return CipherSpec(name=name.lower(), key_size=int(bits) // 8, mode=mode)


def _as_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def generate_salt() -> bytes:
    return secrets.token_bytes(SALT_SIZE)


def derive_key_and_iv(
    password: bytes | str, salt: bytes, cipher: str = DEFAULT_CIPHER
) -> tuple[bytes, bytes]:
    """
    Derive a key and IV from a password and salt (gibberish-aes scheme).

    Each round is ``md5(previous_digest + password + salt)``. AES-128 needs
    2 rounds (16 bytes key, 16 bytes IV); AES-192 and AES-256 need 3.
    """
    spec = parse_cipher(cipher)
    rounds = 2 if spec.key_size == 16 else 3
    data = _as_bytes(password) + salt

    digest = b""
    material = b""
    for _ in range(rounds):
        digest = hashlib.md5(digest + data).digest()
        material += digest
    return material[: spec.key_size], material[spec.key_size : spec.key_size + BLOCK_SIZE]


def _fit(value: bytes, size: int, what: str) -> bytes:
    # OpenSSL zero-pads short keys/IVs and truncates long ones
    if len(value) != size:
        logger.warning(f"{what} is {len(value)} bytes, expected {size}; adjusting")
    return value[:size].ljust(size, b"\0")


def _cipher(spec: CipherSpec, key: bytes, iv: bytes) -> Cipher:
    key = _fit(key, spec.key_size, "Key")
    if spec.mode == "ecb":
        mode = modes.ECB()
    else:
        iv = _fit(iv, BLOCK_SIZE, "IV")
        mode = {
            "cbc": modes.CBC,
            "ctr": modes.CTR,
        }[spec.mode](iv)
    return Cipher(algorithms.AES(key), mode)


def encrypt(data: bytes | str, cipher: str, key: bytes | str, iv: bytes = b"") -> bytes:
    """
    Encrypt ``data`` with a raw key, returning the raw ciphertext.

    Args:
        data: Plaintext; strings are encoded as UTF-8
        cipher: OpenSSL cipher name, e.g. ``aes-256-cbc``
        key: Raw key bytes
        iv: Initialization vector (ignored for ECB)
    """
    spec = parse_cipher(cipher)
    plaintext = _as_bytes(data)
    if spec.mode in PADDED_MODES:
        padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
        plaintext = padder.update(plaintext) + padder.finalize()
    encryptor = _cipher(spec, _as_bytes(key), iv).encryptor()
    return encryptor.update(plaintext) + encryptor.finalize()


def decrypt(data: bytes, cipher: str, key: bytes | str, iv: bytes = b"") -> bytes:
    """
    Decrypt raw ciphertext produced by :func:`encrypt` or OpenSSL.

    Raises:
        CryptError: If the ciphertext is truncated or the padding is invalid
            (usually a wrong key or IV)
    """
    spec = parse_cipher(cipher)
    decryptor = _cipher(spec, _as_bytes(key), iv).decryptor()
    try:
        plaintext = decryptor.update(data) + decryptor.finalize()
        if spec.mode in PADDED_MODES:
            unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
            plaintext = unpadder.update(plaintext) + unpadder.finalize()
    except ValueError as e:
        raise CryptError(f"Decryption failed: {e}") from e
    return plaintext


def encrypt_with_password(
    data: bytes | str,
    password: bytes | str,
    cipher: str = DEFAULT_CIPHER,
    salt: bytes | None = None,
) -> str:
    """Encrypt into the base64 ``Salted__`` envelope used by gibberish-aes and OpenSSL."""
    salt = salt if salt is not None else generate_salt()
    if len(salt) != SALT_SIZE:
        raise CryptError(f"Salt must be {SALT_SIZE} bytes, got {len(salt)}")
    key, iv = derive_key_and_iv(password, salt, cipher)
    payload = SALTED_MAGIC + salt + encrypt(data, cipher, key, iv)
    return base64.b64encode(payload).decode("ascii")


def decrypt_with_password(
    data: str | bytes, password: bytes | str, cipher: str = DEFAULT_CIPHER
) -> bytes:
    try:
        payload = base64.b64decode(data, validate=True)
    except ValueError as e:
        raise CryptError(f"Invalid base64 payload: {e}") from e
    if not payload.startswith(SALTED_MAGIC):
        raise CryptError("Missing Salted__ header")
    salt = payload[len(SALTED_MAGIC) : len(SALTED_MAGIC) + SALT_SIZE]
    key, iv = derive_key_and_iv(password, salt, cipher)
    return decrypt(payload[len(SALTED_MAGIC) + SALT_SIZE :], cipher, key, iv)
