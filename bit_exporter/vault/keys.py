"""
Key Unwrap — Turns the user key and server-supplied wrapped keys into
working (encryption, MAC) key pairs.

Key hierarchy:
- user key → HKDF-Expand("enc" / "mac") → stretched pair
- stretched pair → decrypt wrapped master key → MasterKeyPair (64 bytes)
- MasterKeyPair → decrypt account private key (RSA, PKCS#8 DER)
- private key → RSA-OAEP decrypt organization key → MasterKeyPair
- user or organization pair → decrypt per-item key → MasterKeyPair

Security Note:
    A wrong password and a corrupted wrapped key raise the same error.
    Never log key material.
"""
import base64
import binascii
import logging
from typing import Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from ..exceptions import CipherStringError, KeyUnwrapError
from . import cipherstring
from .cipherstring import CipherString
from .secret import SecretKey

logger = logging.getLogger("bit_exporter.vault")

KEY_LENGTH = 32
PAIR_LENGTH = 2 * KEY_LENGTH

# Asymmetric CipherString types usable for organization keys.
_RSA_OAEP_HASHES = {
    3: hashes.SHA256,  # Rsa2048_OaepSha256_B64
    4: hashes.SHA1,  # Rsa2048_OaepSha1_B64
}


class MasterKeyPair:
    """An encryption key and a MAC key, each 256 bits.

    Used for the account master key as well as organization and item keys.
    Leaving a ``with`` block wipes both halves.
    """

    __slots__ = ("enc_key", "mac_key")

    def __init__(self, enc_key: SecretKey, mac_key: SecretKey):
        self.enc_key = enc_key
        self.mac_key = mac_key

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray]) -> "MasterKeyPair":
        """Split 64 bytes into (first 32 = enc, last 32 = mac).

        Raises:
            KeyUnwrapError: If ``data`` is not exactly 64 bytes.
        """
        if len(data) != PAIR_LENGTH:
            raise KeyUnwrapError(
                f"Unwrapped key must be {PAIR_LENGTH} bytes, got {len(data)}"
            )
        with SecretKey(data) as joined:
            return cls(*joined.split(KEY_LENGTH))

    def wipe(self) -> None:
        self.enc_key.wipe()
        self.mac_key.wipe()

    def __enter__(self) -> "MasterKeyPair":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return f"<MasterKeyPair{' wiped' if self.enc_key.wiped else ''}>"


def stretch_user_key(user_key: SecretKey) -> MasterKeyPair:
    """Expand the user key into the stretched (enc, mac) pair."""
    halves = []
    for info in (b"enc", b"mac"):
        hkdf = HKDFExpand(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            info=info,
        )
        halves.append(SecretKey(hkdf.derive(user_key.raw)))
    return MasterKeyPair(*halves)


def _unwrap_pair(
    wrapped: Union[str, CipherString],
    keys: MasterKeyPair,
    what: str,
) -> MasterKeyPair:
    try:
        cs = wrapped if isinstance(wrapped, CipherString) else cipherstring.parse(wrapped)
    except CipherStringError:
        raise KeyUnwrapError(f"Wrapped {what} is malformed") from None
    if not cs.authenticated:
        raise KeyUnwrapError(
            f"Wrapped {what} uses unauthenticated type {int(cs.enc_type)}"
        )
    try:
        plain = bytearray(cipherstring.decrypt(cs, keys.enc_key, keys.mac_key))
    except CipherStringError:
        raise KeyUnwrapError(
            f"Could not unwrap {what}: wrong password or corrupted key"
        ) from None
    try:
        return MasterKeyPair.from_bytes(plain)
    finally:
        plain[:] = bytes(len(plain))


def unwrap_master_key(
    wrapped: Union[str, CipherString],
    user_key: SecretKey,
) -> MasterKeyPair:
    """Unwrap the account master key with the password-derived user key.

    Args:
        wrapped: Wrapped master key (CipherString text or parsed).
        user_key: 32-byte user key from ``derive_user_key``.

    Returns:
        The master key split into encryption and MAC halves.

    Raises:
        KeyUnwrapError: On MAC failure (wrong password or corruption),
            malformed blob, or a plaintext that is not 512 bits.
    """
    with stretch_user_key(user_key) as stretched:
        pair = _unwrap_pair(wrapped, stretched, "master key")
    logger.debug("Master key unwrapped")
    return pair


def unwrap_symmetric_key(
    wrapped: Union[str, CipherString],
    keys: MasterKeyPair,
) -> MasterKeyPair:
    """Unwrap a per-item key protected by the user or organization key."""
    return _unwrap_pair(wrapped, keys, "item key")


def load_private_key(wrapped: str, keys: MasterKeyPair) -> RSAPrivateKey:
    """Decrypt the account RSA private key (PKCS#8 DER) with the master key.

    Raises:
        KeyUnwrapError: If the key cannot be decrypted or parsed.
    """
    try:
        der = cipherstring.decrypt(cipherstring.parse(wrapped), keys.enc_key, keys.mac_key)
    except CipherStringError:
        raise KeyUnwrapError("Could not decrypt the account private key") from None
    try:
        private_key = serialization.load_der_private_key(der, password=None)
    except ValueError:
        raise KeyUnwrapError("Account private key is not valid PKCS#8") from None
    if not isinstance(private_key, RSAPrivateKey):
        raise KeyUnwrapError("Account private key is not an RSA key")
    return private_key


def unwrap_organization_key(wrapped: str, private_key: RSAPrivateKey) -> MasterKeyPair:
    """Decrypt an RSA-OAEP wrapped organization key.

    Raises:
        KeyUnwrapError: On an unsupported type, bad encoding or decrypt failure.
    """
    header, sep, body = (wrapped or "").partition(".")
    if not sep or not header.isdigit() or int(header) not in _RSA_OAEP_HASHES:
        raise KeyUnwrapError(f"Unsupported organization key type: {header or '?'}")
    if "|" in body:
        raise KeyUnwrapError("Organization key is malformed")
    try:
        ciphertext = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        raise KeyUnwrapError("Organization key is malformed") from None

    algorithm = _RSA_OAEP_HASHES[int(header)]()
    try:
        plain = bytearray(private_key.decrypt(
            ciphertext,
            asym_padding.OAEP(
                mgf=asym_padding.MGF1(algorithm=algorithm),
                algorithm=algorithm,
                label=None,
            ),
        ))
    except ValueError:
        raise KeyUnwrapError("Could not decrypt organization key") from None
    try:
        return MasterKeyPair.from_bytes(plain)
    finally:
        plain[:] = bytes(len(plain))
