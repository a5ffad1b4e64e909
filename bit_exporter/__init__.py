"""Bit Exporter.

Exports a vault from a Bitwarden-compatible server and optionally decrypts
it into plaintext.
"""
from .version import __version__
from .config import ExportConfig
from .exceptions import (
    ApiError,
    AuthenticationError,
    BitExporterError,
    CipherStringError,
    EncodingError,
    ExportWriteError,
    KdfParameterError,
    KeyUnwrapError,
    MalformedCipherStringError,
    PaddingError,
)
from .pipeline import build_export, decrypt_vault, run_export

__all__ = [
    "__version__",
    "ExportConfig",
    "ApiError",
    "AuthenticationError",
    "BitExporterError",
    "CipherStringError",
    "EncodingError",
    "ExportWriteError",
    "KdfParameterError",
    "KeyUnwrapError",
    "MalformedCipherStringError",
    "PaddingError",
    "build_export",
    "decrypt_vault",
    "run_export",
]
