"""
Vault Walker — Decrypts every encrypted leaf of a synchronized vault graph.

The walk happens in two phases:
1. collect: visit the graph in a fixed order and record one ``Leaf`` per
   encrypted value, together with the key pair that protects it;
2. decrypt: decrypt every leaf (optionally on a thread pool) and, only when
   all of them succeeded, write the plaintext back into the graph.

A failure on any leaf aborts the run and leaves the graph unchanged. The
first failure in traversal order is reported, whatever the worker count.

Attachment file names are decrypted so that a corrupt one fails the run like
any other field, but attachments are not part of the export document.

Security Note:
    Errors carry the path of the failing field, never its value.
"""
import logging
from collections.abc import Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic.alias_generators import to_camel

from ..exceptions import BitExporterError, KeyUnwrapError
from ..models import Cipher, CipherType, Sync
from . import cipherstring
from .keys import MasterKeyPair, unwrap_symmetric_key

logger = logging.getLogger("bit_exporter.vault")

# Encrypted attributes per node kind, in traversal order.
LOGIN_FIELDS = ("username", "password", "totp", "uri")
CARD_FIELDS = ("cardholder_name", "brand", "number", "exp_month", "exp_year", "code")
IDENTITY_FIELDS = (
    "title", "first_name", "middle_name", "last_name",
    "address1", "address2", "address3", "city", "state", "postal_code",
    "country", "company", "email", "phone", "ssn", "username",
    "passport_number", "license_number",
)
SSH_KEY_FIELDS = ("private_key", "public_key", "key_fingerprint")


@dataclass(frozen=True)
class Leaf:
    """One encrypted value and where it lives in the graph."""

    path: str
    owner: Any
    attr: str
    keys: MasterKeyPair = field(repr=False)

    @property
    def value(self) -> str:
        return getattr(self.owner, self.attr)


@dataclass
class DecryptReport:
    """Outcome of a successful walk."""

    decrypted: int = 0
    unauthenticated: list[str] = field(default_factory=list)


def _decrypt_leaf(leaf: Leaf) -> tuple[str, bool]:
    try:
        cs = cipherstring.parse(leaf.value)
        text = cipherstring.decrypt_text(cs, leaf.keys.enc_key, leaf.keys.mac_key)
    except BitExporterError as err:
        raise err.at(leaf.path) from None
    return text, cs.authenticated


class VaultWalker:
    """Decrypts a ``Sync`` graph in place.

    Args:
        keys: The unwrapped account master key pair.
        org_keys: Organization id → key pair, for organization-owned nodes.
        workers: Number of threads for leaf decryption; 1 is sequential.
    """

    def __init__(
        self,
        keys: MasterKeyPair,
        org_keys: Optional[Mapping[str, MasterKeyPair]] = None,
        workers: int = 1,
    ):
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self._keys = keys
        self._org_keys = dict(org_keys or {})
        self._workers = workers
        self._item_keys: list[MasterKeyPair] = []

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def _owner_keys(self, organization_id: Optional[str], path: str) -> MasterKeyPair:
        if organization_id is None:
            return self._keys
        try:
            return self._org_keys[organization_id]
        except KeyError:
            raise KeyUnwrapError(
                f"No key available for organization {organization_id}",
                field=path,
            ) from None

    def _leaf(self, path: str, owner: Any, attr: str, keys: MasterKeyPair) -> Iterator[Leaf]:
        if owner is not None and getattr(owner, attr):
            yield Leaf(f"{path}.{to_camel(attr)}", owner, attr, keys)

    def _cipher_keys(self, cipher: Cipher, path: str) -> MasterKeyPair:
        keys = self._owner_keys(cipher.organization_id, path)
        if not cipher.key:
            return keys
        try:
            item_keys = unwrap_symmetric_key(cipher.key, keys)
        except KeyUnwrapError as err:
            raise err.at(f"{path}.key") from None
        self._item_keys.append(item_keys)
        return item_keys

    def _cipher_leaves(self, cipher: Cipher, path: str) -> Iterator[Leaf]:
        keys = self._cipher_keys(cipher, path)
        yield from self._leaf(path, cipher, "name", keys)
        yield from self._leaf(path, cipher, "notes", keys)

        match cipher.type:
            case CipherType.LOGIN:
                login = cipher.login
                for attr in LOGIN_FIELDS:
                    yield from self._leaf(f"{path}.login", login, attr, keys)
                for i, uri in enumerate((login.uris if login else None) or ()):
                    yield from self._leaf(f"{path}.login.uris[{i}]", uri, "uri", keys)
            case CipherType.CARD:
                for attr in CARD_FIELDS:
                    yield from self._leaf(f"{path}.card", cipher.card, attr, keys)
            case CipherType.IDENTITY:
                for attr in IDENTITY_FIELDS:
                    yield from self._leaf(f"{path}.identity", cipher.identity, attr, keys)
            case CipherType.SSH_KEY:
                for attr in SSH_KEY_FIELDS:
                    yield from self._leaf(f"{path}.sshKey", cipher.ssh_key, attr, keys)
            case CipherType.SECURE_NOTE:
                pass  # only name and notes are encrypted
            case _:
                raise BitExporterError(f"Unknown cipher type {cipher.type}", field=path)

        for i, custom in enumerate(cipher.fields or ()):
            yield from self._leaf(f"{path}.fields[{i}]", custom, "name", keys)
            yield from self._leaf(f"{path}.fields[{i}]", custom, "value", keys)
        for i, entry in enumerate(cipher.password_history or ()):
            yield from self._leaf(f"{path}.passwordHistory[{i}]", entry, "password", keys)
        # validated only, never exported
        for i, attachment in enumerate(cipher.attachments or ()):
            yield from self._leaf(f"{path}.attachments[{i}]", attachment, "file_name", keys)

    def leaves(self, sync: Sync) -> Iterator[Leaf]:
        """Yield every encrypted leaf of ``sync`` in a fixed order."""
        profile = sync.profile
        for attr in ("name", "email"):
            if cipherstring.looks_like_cipher_string(getattr(profile, attr)):
                yield Leaf(f"profile.{attr}", profile, attr, self._keys)
        for folder in sync.folders or ():
            yield from self._leaf(f"folders[{folder.id}]", folder, "name", self._keys)
        for collection in sync.collections or ():
            path = f"collections[{collection.id}]"
            keys = self._owner_keys(collection.organization_id, path)
            yield from self._leaf(path, collection, "name", keys)
        for cipher in sync.ciphers or ():
            yield from self._cipher_leaves(cipher, f"ciphers[{cipher.id}]")

    # ------------------------------------------------------------------
    # Decryption
    # ------------------------------------------------------------------

    def _decrypt_leaves(self, leaves: list[Leaf]) -> list[tuple[str, bool]]:
        if self._workers == 1 or len(leaves) < 2:
            return [_decrypt_leaf(leaf) for leaf in leaves]
        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            # map() yields in submission order, so the first failure raised
            # is the first failing leaf in traversal order.
            return list(pool.map(_decrypt_leaf, leaves))

    def decrypt_all(self, sync: Sync) -> DecryptReport:
        """Decrypt every encrypted leaf of ``sync`` in place.

        Returns:
            Count of decrypted leaves and paths of unauthenticated ones.

        Raises:
            BitExporterError: The first failure in traversal order, with
                ``field`` set to the failing path. The graph is not modified.
        """
        try:
            leaves = list(self.leaves(sync))
            logger.info(
                "Decrypting %d field(s) with %d worker(s)",
                len(leaves), self._workers,
            )
            results = self._decrypt_leaves(leaves)
        finally:
            for item_keys in self._item_keys:
                item_keys.wipe()
            self._item_keys.clear()

        report = DecryptReport()
        for leaf, (text, authenticated) in zip(leaves, results):
            setattr(leaf.owner, leaf.attr, text)
            report.decrypted += 1
            if not authenticated:
                report.unauthenticated.append(leaf.path)
        if report.unauthenticated:
            logger.warning(
                "%d field(s) used a legacy type without integrity protection",
                len(report.unauthenticated),
            )
        return report


def decrypt_all(
    sync: Sync,
    keys: MasterKeyPair,
    *,
    org_keys: Optional[Mapping[str, MasterKeyPair]] = None,
    workers: int = 1,
) -> DecryptReport:
    """Convenience wrapper around ``VaultWalker.decrypt_all``."""
    return VaultWalker(keys, org_keys=org_keys, workers=workers).decrypt_all(sync)
