"""
Key Derivation — Turns a master password into the 256-bit user key.

Supported algorithms (selected by the server):
- PBKDF2-HMAC-SHA256, salt = lowercased email
- Argon2id, salt = SHA-256(lowercased email)

Derivation is intentionally slow; it runs once per export, never per field.

Security Note:
    Never log the password or the derived key. Only log the algorithm and
    its cost parameters.
"""
import hashlib
import logging

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import KdfParameterError
from ..models import KdfParams, KdfType
from .secret import SecretKey

logger = logging.getLogger("bit_exporter.vault")

KEY_LENGTH = 32  # 256-bit user key


def normalize_email(email: str) -> str:
    """Servers derive with the trimmed, lowercased account email."""
    return email.strip().lower()


def validate_kdf_params(params: KdfParams) -> None:
    """Check that the parameters for the selected algorithm are usable.

    Raises:
        KdfParameterError: If a required value is missing or not positive.
    """
    if params.algorithm not in (KdfType.PBKDF2_SHA256, KdfType.ARGON2ID):
        raise KdfParameterError(f"Unsupported KDF algorithm: {params.algorithm}")
    if not params.iterations or params.iterations <= 0:
        raise KdfParameterError(
            f"KDF iterations must be positive, got {params.iterations}"
        )
    if params.algorithm is KdfType.ARGON2ID:
        if not params.memory_kib or params.memory_kib <= 0:
            raise KdfParameterError(
                f"Argon2id memory must be positive, got {params.memory_kib}"
            )
        if not params.parallelism or params.parallelism <= 0:
            raise KdfParameterError(
                f"Argon2id parallelism must be positive, got {params.parallelism}"
            )


def _pbkdf2(password: bytes, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password)


def _argon2id(password: bytes, salt: bytes, params: KdfParams) -> bytes:
    try:
        return hash_secret_raw(
            secret=password,
            salt=salt,
            time_cost=params.iterations,
            memory_cost=params.memory_kib,
            parallelism=params.parallelism,
            hash_len=KEY_LENGTH,
            type=Type.ID,
        )
    except HashingError as err:
        raise KdfParameterError(f"Argon2id rejected the parameters: {err}") from None


def derive_user_key(password: str, email: str, params: KdfParams) -> SecretKey:
    """Derive the user key from the master password.

    Args:
        password: Master password.
        email: Account email, used as salt material.
        params: Server-supplied KDF parameters.

    Returns:
        32-byte user key. Use it as a context manager so it is wiped.

    Raises:
        KdfParameterError: If the parameters are invalid for the algorithm.
    """
    validate_kdf_params(params)
    salt = normalize_email(email).encode("utf-8")
    secret = password.encode("utf-8")

    logger.debug(
        "Deriving user key with %s (iterations=%d)",
        params.algorithm.name, params.iterations,
    )
    if params.algorithm is KdfType.PBKDF2_SHA256:
        derived = _pbkdf2(secret, salt, params.iterations)
    else:
        derived = _argon2id(secret, hashlib.sha256(salt).digest(), params)
    return SecretKey(derived)
