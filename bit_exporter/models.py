"""
Vault Models — The synchronized vault graph and the authentication record.

Every entity kind is its own model carrying only the fields relevant to it.
``Cipher`` is a tagged variant: ``type`` selects which of ``login``, ``card``,
``identity``, ``secure_note`` or ``ssh_key`` is populated.

Leaves holding user data are plain strings; before decryption they contain
CipherString text. Servers answer in camelCase (current) or PascalCase
(older releases); both are accepted.
"""
from enum import IntEnum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def _lower_first(key: str) -> str:
    return key[:1].lower() + key[1:]


class KdfType(IntEnum):
    PBKDF2_SHA256 = 0
    ARGON2ID = 1


class CipherType(IntEnum):
    LOGIN = 1
    SECURE_NOTE = 2
    CARD = 3
    IDENTITY = 4
    SSH_KEY = 5


class VaultModel(BaseModel):
    """Base for all vault graph nodes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def normalize_keys(cls, data: Any) -> Any:
        """Accept PascalCase payloads by lowering the first letter of each key."""
        if isinstance(data, dict):
            return {
                _lower_first(k) if isinstance(k, str) else k: v
                for k, v in data.items()
            }
        return data


# ---------------------------------------------------------------------------
# Key derivation parameters / authentication
# ---------------------------------------------------------------------------

class KdfParams(BaseModel):
    """Server-supplied key derivation parameters.

    Range checks are done by the key derivation itself, so that invalid
    values surface as ``KdfParameterError`` rather than a validation error.
    """

    algorithm: KdfType
    iterations: int
    memory_kib: Optional[int] = None
    parallelism: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class Auth(BaseModel):
    """Result of a successful login."""

    access_token: str = Field(repr=False)
    key: str = Field(repr=False)
    private_key: Optional[str] = Field(default=None, repr=False)
    kdf: KdfParams

    @classmethod
    def from_token_response(cls, payload: dict[str, Any]) -> "Auth":
        """Build from an identity ``connect/token`` response.

        Argon2 memory is reported by the server in MiB and stored in KiB.

        Raises:
            KeyError: If the access token or wrapped key is missing.
            ValueError: If the KDF type is unknown.
        """
        data = {_lower_first(k): v for k, v in payload.items()}
        memory_mib = data.get("kdfMemory")
        kdf = KdfParams(
            algorithm=KdfType(int(data.get("kdf") or KdfType.PBKDF2_SHA256)),
            iterations=int(data.get("kdfIterations") or 0),
            memory_kib=int(memory_mib) * 1024 if memory_mib else None,
            parallelism=data.get("kdfParallelism"),
        )
        return cls(
            access_token=data["access_token"],
            key=data["key"],
            private_key=data.get("privateKey"),
            kdf=kdf,
        )


# ---------------------------------------------------------------------------
# Vault graph
# ---------------------------------------------------------------------------

class ProfileOrganization(VaultModel):
    id: str
    name: Optional[str] = None
    key: Optional[str] = Field(default=None, repr=False)


class Profile(VaultModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: str
    key: Optional[str] = Field(default=None, repr=False)
    private_key: Optional[str] = Field(default=None, repr=False)
    organizations: Optional[list[ProfileOrganization]] = None


class Folder(VaultModel):
    id: str
    name: Optional[str] = None
    revision_date: Optional[str] = None


class Collection(VaultModel):
    id: str
    organization_id: Optional[str] = None
    name: Optional[str] = None


class LoginUri(VaultModel):
    uri: Optional[str] = None
    match: Optional[int] = None


class Login(VaultModel):
    username: Optional[str] = None
    password: Optional[str] = None
    totp: Optional[str] = None
    uri: Optional[str] = None
    uris: Optional[list[LoginUri]] = None
    password_revision_date: Optional[str] = None


class Card(VaultModel):
    cardholder_name: Optional[str] = None
    brand: Optional[str] = None
    number: Optional[str] = None
    exp_month: Optional[str] = None
    exp_year: Optional[str] = None
    code: Optional[str] = None


class Identity(VaultModel):
    title: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    address3: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    ssn: Optional[str] = None
    username: Optional[str] = None
    passport_number: Optional[str] = None
    license_number: Optional[str] = None


class SecureNote(VaultModel):
    type: int = 0


class SshKey(VaultModel):
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    key_fingerprint: Optional[str] = None


class CustomField(VaultModel):
    name: Optional[str] = None
    value: Optional[str] = None
    type: int = 0
    linked_id: Optional[int] = None


class PasswordHistory(VaultModel):
    password: Optional[str] = None
    last_used_date: Optional[str] = None


class Attachment(VaultModel):
    """Attachment metadata. Only ``file_name`` is ever decrypted."""

    id: str
    file_name: Optional[str] = None
    key: Optional[str] = Field(default=None, repr=False)
    size: Optional[Union[str, int]] = None
    size_name: Optional[str] = None
    url: Optional[str] = None


class Cipher(VaultModel):
    """A vault item."""

    id: str
    organization_id: Optional[str] = None
    folder_id: Optional[str] = None
    type: CipherType
    name: Optional[str] = None
    notes: Optional[str] = None
    favorite: bool = False
    reprompt: int = 0
    key: Optional[str] = Field(default=None, repr=False)
    login: Optional[Login] = None
    card: Optional[Card] = None
    identity: Optional[Identity] = None
    secure_note: Optional[SecureNote] = None
    ssh_key: Optional[SshKey] = None
    fields: Optional[list[CustomField]] = None
    password_history: Optional[list[PasswordHistory]] = None
    attachments: Optional[list[Attachment]] = None
    collection_ids: Optional[list[str]] = None
    revision_date: Optional[str] = None
    creation_date: Optional[str] = None
    deleted_date: Optional[str] = None


class Sync(VaultModel):
    """Snapshot returned by the sync endpoint; root of the vault graph."""

    profile: Profile
    folders: Optional[list[Folder]] = None
    collections: Optional[list[Collection]] = None
    ciphers: Optional[list[Cipher]] = None

    @property
    def organization_ids(self) -> set[str]:
        """Organizations that own at least one cipher or collection."""
        owned = {c.organization_id for c in self.ciphers or ()}
        owned.update(c.organization_id for c in self.collections or ())
        owned.discard(None)
        return owned
