"""
CipherString Codec — Parsing, serialization and authenticated decryption
of single encrypted vault fields.

Wire format:
    "<type>.<iv_b64>|<ciphertext_b64>|<mac_b64>"   (MAC'd types)
    "<type>.<iv_b64>|<ciphertext_b64>"             (legacy, no MAC)

Supported types:
    0: AES-256-CBC, no MAC (legacy, reduced integrity)
    2: AES-256-CBC + HMAC-SHA256 over iv || ciphertext

Security Note:
    The MAC is always verified before any decryption takes place, and the
    comparison is constant-time. Never log plaintext or ciphertext values.
"""
import os
import re
import base64
import binascii
from enum import IntEnum
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..exceptions import (
    AuthenticationError,
    EncodingError,
    MalformedCipherStringError,
    PaddingError,
)
from .secret import SecretKey

IV_SIZE = 16  # AES block
MAC_SIZE = 32  # HMAC-SHA256
KEY_LENGTH = 32  # AES-256
BLOCK_SIZE = 16

_B64 = r"[A-Za-z0-9+/]+={0,2}"
_CIPHER_STRING_RE = re.compile(rf"^\d+\.{_B64}(\|{_B64}){{1,2}}$")

KeyLike = Union[SecretKey, bytes, bytearray]


class EncryptionType(IntEnum):
    """Symmetric CipherString schemes understood by the codec."""

    AES_CBC_256_B64 = 0
    AES_CBC_256_HMAC_SHA256_B64 = 2

    @property
    def has_mac(self) -> bool:
        return self is EncryptionType.AES_CBC_256_HMAC_SHA256_B64

    @property
    def segments(self) -> int:
        return 3 if self.has_mac else 2


@dataclass(frozen=True)
class CipherString:
    """A parsed encrypted field."""

    enc_type: EncryptionType
    iv: bytes
    ciphertext: bytes
    mac: Optional[bytes] = None

    @property
    def authenticated(self) -> bool:
        """False for legacy types whose integrity cannot be verified."""
        return self.mac is not None

    def __str__(self) -> str:
        return serialize(self)

    def __repr__(self) -> str:
        return (
            f"<CipherString type={int(self.enc_type)} "
            f"ciphertext={len(self.ciphertext)} bytes>"
        )


def _key_bytes(key: KeyLike) -> Union[bytes, bytearray]:
    if isinstance(key, SecretKey):
        return key.raw
    return key


def _b64decode(segment: str, name: str) -> bytes:
    try:
        return base64.b64decode(segment, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedCipherStringError(
            f"CipherString {name} is not valid base64"
        ) from None


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------

def looks_like_cipher_string(text: Optional[str]) -> bool:
    """Cheap shape check used for fields that may or may not be encrypted."""
    return bool(text) and _CIPHER_STRING_RE.match(text) is not None


def parse(text: str) -> CipherString:
    """Parse CipherString text into its components.

    Args:
        text: Wire-format CipherString.

    Returns:
        Parsed CipherString.

    Raises:
        MalformedCipherStringError: On a missing type marker, wrong number of
            segments, invalid base64, bad IV/MAC length or unknown type.
    """
    if not isinstance(text, str) or not text:
        raise MalformedCipherStringError("CipherString is empty")
    header, sep, body = text.partition(".")
    if not sep or not header.isdigit():
        raise MalformedCipherStringError("CipherString has no type marker")
    try:
        enc_type = EncryptionType(int(header))
    except ValueError:
        raise MalformedCipherStringError(
            f"Unsupported CipherString type: {header}"
        ) from None

    segments = body.split("|")
    if len(segments) != enc_type.segments:
        raise MalformedCipherStringError(
            f"CipherString type {int(enc_type)} expects {enc_type.segments} "
            f"segments, got {len(segments)}"
        )
    iv = _b64decode(segments[0], "iv")
    ciphertext = _b64decode(segments[1], "ciphertext")
    mac = _b64decode(segments[2], "mac") if enc_type.has_mac else None

    if len(iv) != IV_SIZE:
        raise MalformedCipherStringError(
            f"CipherString iv must be {IV_SIZE} bytes, got {len(iv)}"
        )
    if not ciphertext or len(ciphertext) % BLOCK_SIZE:
        raise MalformedCipherStringError(
            "CipherString ciphertext is not a whole number of AES blocks"
        )
    if mac is not None and len(mac) != MAC_SIZE:
        raise MalformedCipherStringError(
            f"CipherString mac must be {MAC_SIZE} bytes, got {len(mac)}"
        )
    return CipherString(enc_type, iv, ciphertext, mac)


def serialize(cs: CipherString) -> str:
    """Render a CipherString back to its wire format."""
    parts = [_b64encode(cs.iv), _b64encode(cs.ciphertext)]
    if cs.mac is not None:
        parts.append(_b64encode(cs.mac))
    return f"{int(cs.enc_type)}." + "|".join(parts)


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def _compute_mac(mac_key: KeyLike, iv: bytes, ciphertext: bytes) -> hmac.HMAC:
    h = hmac.HMAC(_key_bytes(mac_key), hashes.SHA256())
    h.update(iv)
    h.update(ciphertext)
    return h


def decrypt(
    cs: CipherString,
    enc_key: KeyLike,
    mac_key: Optional[KeyLike] = None,
) -> bytes:
    """Verify and decrypt a CipherString.

    Args:
        cs: Parsed CipherString.
        enc_key: 32-byte AES key.
        mac_key: 32-byte HMAC key, required for MAC'd types.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        AuthenticationError: MAC missing key or mismatch. Nothing is decrypted.
        PaddingError: PKCS#7 padding is invalid.
    """
    if cs.enc_type.has_mac:
        if mac_key is None:
            raise AuthenticationError("A MAC key is required for this CipherString")
        if cs.mac is None:
            raise AuthenticationError("CipherString is missing its MAC")
        try:
            _compute_mac(mac_key, cs.iv, cs.ciphertext).verify(cs.mac)
        except InvalidSignature:
            raise AuthenticationError("CipherString MAC mismatch") from None

    decryptor = Cipher(
        algorithms.AES(_key_bytes(enc_key)), modes.CBC(cs.iv)
    ).decryptor()
    padded = decryptor.update(cs.ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise PaddingError("CipherString has invalid padding") from None


def decrypt_text(
    cs: CipherString,
    enc_key: KeyLike,
    mac_key: Optional[KeyLike] = None,
) -> str:
    """Decrypt a CipherString holding UTF-8 text."""
    try:
        return decrypt(cs, enc_key, mac_key).decode("utf-8")
    except UnicodeDecodeError:
        raise EncodingError("Decrypted field is not valid UTF-8") from None


def encrypt(
    plaintext: bytes,
    enc_key: KeyLike,
    mac_key: Optional[KeyLike] = None,
    enc_type: EncryptionType = EncryptionType.AES_CBC_256_HMAC_SHA256_B64,
) -> CipherString:
    """Encrypt plaintext into a CipherString with a random IV.

    Raises:
        ValueError: If a MAC'd type is requested without a MAC key.
    """
    enc_type = EncryptionType(enc_type)
    if enc_type.has_mac and mac_key is None:
        raise ValueError(f"Encryption type {int(enc_type)} requires a MAC key")
    iv = os.urandom(IV_SIZE)
    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_key_bytes(enc_key)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    mac = None
    if enc_type.has_mac:
        mac = _compute_mac(mac_key, iv, ciphertext).finalize()
    return CipherString(enc_type, iv, ciphertext, mac)
