"""
Export Projector — Maps the (decrypted or still encrypted) vault graph into
the export file schema and writes it.

Decrypted exports carry ``encrypted: false`` and no key material. Encrypted
exports carry ``encrypted: true`` and the wrapped master key, so the file can
be decrypted later on its own. No cryptography happens here.
"""
import os
import logging
import tempfile
import contextlib
from pathlib import Path
from typing import Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .exceptions import ExportWriteError
from .models import (
    Card,
    Cipher,
    CipherType,
    CustomField,
    Identity,
    Login,
    PasswordHistory,
    SecureNote,
    SshKey,
    Sync,
)
from .vault.cipherstring import CipherString, serialize
from .vault.walker import DecryptReport

logger = logging.getLogger("bit_exporter.export")


class ExportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExportFolder(ExportModel):
    id: str
    name: Optional[str] = None


class ExportCollection(ExportModel):
    id: str
    organization_id: Optional[str] = None
    name: Optional[str] = None


class ExportItem(ExportModel):
    id: str
    organization_id: Optional[str] = None
    folder_id: Optional[str] = None
    type: int
    reprompt: int = 0
    name: Optional[str] = None
    notes: Optional[str] = None
    favorite: bool = False
    login: Optional[Login] = None
    card: Optional[Card] = None
    identity: Optional[Identity] = None
    secure_note: Optional[SecureNote] = None
    ssh_key: Optional[SshKey] = None
    fields: Optional[list[CustomField]] = None
    password_history: Optional[list[PasswordHistory]] = None
    collection_ids: Optional[list[str]] = None
    revision_date: Optional[str] = None
    creation_date: Optional[str] = None
    deleted_date: Optional[str] = None
    key: Optional[str] = None


class ExportDocument(ExportModel):
    """Root of the export file."""

    encrypted: bool
    key: Optional[str] = None
    unauthenticated_fields: Optional[list[str]] = None
    folders: list[ExportFolder] = []
    collections: list[ExportCollection] = []
    items: list[ExportItem] = []


def _project_item(cipher: Cipher, decrypted: bool) -> ExportItem:
    item = ExportItem(
        id=cipher.id,
        organization_id=cipher.organization_id,
        folder_id=cipher.folder_id,
        type=int(cipher.type),
        reprompt=cipher.reprompt,
        name=cipher.name,
        notes=cipher.notes,
        favorite=cipher.favorite,
        fields=cipher.fields,
        password_history=cipher.password_history,
        collection_ids=cipher.collection_ids,
        revision_date=cipher.revision_date,
        creation_date=cipher.creation_date,
        deleted_date=cipher.deleted_date,
        # a decrypted item no longer needs its wrapped item key
        key=None if decrypted else cipher.key,
    )
    match cipher.type:
        case CipherType.LOGIN:
            item.login = cipher.login
        case CipherType.CARD:
            item.card = cipher.card
        case CipherType.IDENTITY:
            item.identity = cipher.identity
        case CipherType.SECURE_NOTE:
            item.secure_note = cipher.secure_note or SecureNote()
        case CipherType.SSH_KEY:
            item.ssh_key = cipher.ssh_key
    return item


def project(
    sync: Sync,
    decrypted: bool,
    wrapped_master_key: Optional[Union[str, CipherString]] = None,
    report: Optional[DecryptReport] = None,
) -> ExportDocument:
    """Build the export document from a vault graph.

    Args:
        sync: The vault graph, decrypted in place or untouched.
        decrypted: Whether ``sync`` holds plaintext.
        wrapped_master_key: Required for encrypted exports.
        report: Walker report; unauthenticated field paths are carried over.

    Returns:
        ExportDocument ready to be serialized.

    Raises:
        ValueError: If an encrypted export is requested without the key.
    """
    if decrypted:
        key = None
    elif wrapped_master_key is None:
        raise ValueError("An encrypted export requires the wrapped master key")
    elif isinstance(wrapped_master_key, CipherString):
        key = serialize(wrapped_master_key)
    else:
        key = wrapped_master_key

    unauthenticated = None
    if decrypted and report is not None and report.unauthenticated:
        unauthenticated = list(report.unauthenticated)

    return ExportDocument(
        encrypted=not decrypted,
        key=key,
        unauthenticated_fields=unauthenticated,
        folders=[ExportFolder(id=f.id, name=f.name) for f in sync.folders or ()],
        collections=[
            ExportCollection(id=c.id, organization_id=c.organization_id, name=c.name)
            for c in sync.collections or ()
        ],
        items=[_project_item(c, decrypted) for c in sync.ciphers or ()],
    )


def dumps(document: ExportDocument) -> bytes:
    """Serialize an export document to indented JSON bytes."""
    payload = document.model_dump(mode="json", by_alias=True, exclude_none=True)
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2)


def _discard(tmp_name: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.unlink(tmp_name)


def write_export(document: ExportDocument, path: Union[str, Path]) -> Path:
    """Write the export atomically with owner-only permissions.

    The content goes to a temporary file in the target directory which is
    then renamed over ``path``; a failed write leaves no partial file.

    Returns:
        The path written.

    Raises:
        ExportWriteError: If the file cannot be created or replaced.
    """
    path = Path(path)
    payload = dumps(document)
    try:
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp",
        )
    except OSError as err:
        raise ExportWriteError(
            f"File writing error: {err.strerror or err}", field=str(path),
        ) from err
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.replace(tmp_name, path)
    except OSError as err:
        _discard(tmp_name)
        raise ExportWriteError(
            f"File writing error: {err.strerror or err}", field=str(path),
        ) from err
    except BaseException:
        _discard(tmp_name)
        raise
    logger.info("File %s is saved", path)
    return path
