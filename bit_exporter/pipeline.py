"""
Export Pipeline — fetch → derive → unwrap → walk → project → write.

The pipeline receives an explicit ``ExportConfig``; it never reads the
environment. Every key created during a run is wiped on all exit paths, and
the export file is written only after the whole run succeeded.
"""
import logging
from contextlib import ExitStack
from pathlib import Path
from typing import Optional

from .api import BitwardenClient
from .config import ExportConfig
from .exceptions import KeyUnwrapError
from .export import ExportDocument, project, write_export
from .models import Auth, Sync
from .vault.kdf import derive_user_key
from .vault.keys import (
    MasterKeyPair,
    load_private_key,
    unwrap_master_key,
    unwrap_organization_key,
)
from .vault.walker import DecryptReport, VaultWalker

logger = logging.getLogger("bit_exporter")


def _load_organization_keys(
    sync: Sync,
    auth: Auth,
    keys: MasterKeyPair,
    stack: ExitStack,
) -> dict[str, MasterKeyPair]:
    """Unwrap the keys of organizations that own items in ``sync``.

    Each key is registered on ``stack`` so it is wiped with the run.
    """
    needed = sync.organization_ids
    if not needed:
        return {}
    wrapped_private_key = sync.profile.private_key or auth.private_key
    if not wrapped_private_key:
        raise KeyUnwrapError(
            "Vault holds organization items but no account private key",
            field="profile.privateKey",
        )
    private_key = load_private_key(wrapped_private_key, keys)

    org_keys: dict[str, MasterKeyPair] = {}
    for org in sync.profile.organizations or ():
        if org.id not in needed or not org.key:
            continue
        try:
            pair = unwrap_organization_key(org.key, private_key)
        except KeyUnwrapError as err:
            raise err.at(f"profile.organizations[{org.id}].key") from None
        org_keys[org.id] = stack.enter_context(pair)
    logger.info("Unwrapped %d organization key(s)", len(org_keys))
    return org_keys


def decrypt_vault(
    sync: Sync,
    auth: Auth,
    password: str,
    *,
    email: Optional[str] = None,
    workers: int = 1,
) -> DecryptReport:
    """Decrypt ``sync`` in place with the master password.

    Args:
        sync: Vault graph as fetched from the server.
        auth: Auth record holding the wrapped master key and KDF parameters.
        password: Master password.
        email: Account email; defaults to the profile email.
        workers: Threads used for field decryption.

    Returns:
        DecryptReport of the walk.

    Raises:
        BitExporterError: On the first failure of any stage. ``sync`` is left
            unchanged.
    """
    email = email or sync.profile.email
    with derive_user_key(password, email, auth.kdf) as user_key:
        keys = unwrap_master_key(auth.key, user_key)
    with keys, ExitStack() as stack:
        org_keys = _load_organization_keys(sync, auth, keys, stack)
        walker = VaultWalker(keys, org_keys=org_keys, workers=workers)
        report = walker.decrypt_all(sync)
    logger.info("Decrypted %d field(s)", report.decrypted)
    return report


def build_export(sync: Sync, auth: Auth, config: ExportConfig) -> ExportDocument:
    """Decrypt (when configured) and project the vault into an export document."""
    if not config.decrypt:
        return project(sync, decrypted=False, wrapped_master_key=auth.key)
    logger.info("Decrypting data")
    report = decrypt_vault(
        sync,
        auth,
        config.password.get_secret_value(),
        workers=config.workers,
    )
    return project(sync, decrypted=True, report=report)


async def fetch_state(config: ExportConfig) -> tuple[Sync, Auth]:
    """Log in and fetch the vault graph."""
    async with BitwardenClient(
        config.api_url,
        config.client_id,
        config.client_secret.get_secret_value(),
        device_identifier=config.device_identifier,
        timeout=config.timeout,
    ) as client:
        auth = await client.login()
        sync = await client.sync()
    return sync, auth


async def run_export(config: ExportConfig) -> Path:
    """Run one export end to end and return the written file path."""
    logger.info("Obtaining data")
    sync, auth = await fetch_state(config)
    document = build_export(sync, auth, config)
    return write_export(document, config.out_file)
