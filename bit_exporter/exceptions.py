"""
Exceptions raised by the export pipeline.

Every error is terminal for the current export run. Messages carry the stage
and, for field-level failures, the path of the vault field that failed.

Security Note:
    Never put passwords, key material, plaintext or ciphertext into a message.
"""
from typing import Optional


class BitExporterError(Exception):
    """Base class for all export pipeline errors."""

    stage: str = "export"

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def at(self, field: str) -> "BitExporterError":
        """Return a copy of this error bound to the vault field that failed."""
        return type(self)(self.message, field=field)

    def __str__(self) -> str:
        if self.field:
            return f"{self.message} (stage: {self.stage}, field: {self.field})"
        return f"{self.message} (stage: {self.stage})"


class KdfParameterError(BitExporterError, ValueError):
    """KDF parameters are missing, out of range or unsupported."""

    stage = "derive"


class KeyUnwrapError(BitExporterError):
    """A wrapped key could not be unwrapped.

    Wrong password and a corrupted key blob are intentionally reported the
    same way.
    """

    stage = "unwrap"


class CipherStringError(BitExporterError):
    """Base class for failures on a single encrypted field."""

    stage = "decrypt"


class MalformedCipherStringError(CipherStringError, ValueError):
    """The CipherString text does not follow the wire format."""


class AuthenticationError(CipherStringError):
    """The CipherString MAC does not match its IV and ciphertext."""


class PaddingError(CipherStringError):
    """The decrypted block has invalid PKCS#7 padding."""


class EncodingError(CipherStringError):
    """The decrypted bytes are not valid UTF-8."""


class ApiError(BitExporterError):
    """The server could not be reached or rejected a request."""

    stage = "fetch"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message, field=field)
        self.status = status

    def at(self, field: str) -> "ApiError":
        return type(self)(self.message, field=field, status=self.status)


class ExportWriteError(BitExporterError):
    """The export file could not be written."""

    stage = "write"
