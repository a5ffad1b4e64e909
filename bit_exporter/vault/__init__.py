"""Vault decryption engine — key derivation, key unwrap, CipherString codec
and the vault graph walker.

Security Note (Threat Model):
    Keys and decrypted fields live in process memory for the duration of one
    export run. Secret buffers are zeroed when released, but interpreter-level
    copies cannot be reliably erased. This is an accepted limitation.
"""

from .secret import SecretKey
from .kdf import derive_user_key, validate_kdf_params
from .cipherstring import CipherString, EncryptionType
from .keys import (
    MasterKeyPair,
    load_private_key,
    stretch_user_key,
    unwrap_master_key,
    unwrap_organization_key,
    unwrap_symmetric_key,
)
from .walker import DecryptReport, VaultWalker, decrypt_all

__all__ = [
    "SecretKey",
    "derive_user_key",
    "validate_kdf_params",
    "CipherString",
    "EncryptionType",
    "MasterKeyPair",
    "load_private_key",
    "stretch_user_key",
    "unwrap_master_key",
    "unwrap_organization_key",
    "unwrap_symmetric_key",
    "DecryptReport",
    "VaultWalker",
    "decrypt_all",
]
