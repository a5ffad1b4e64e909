"""
Tests for projecting the vault graph into the export document and writing it.
"""
import os
import stat

import orjson
import pytest

from bit_exporter.exceptions import ExportWriteError
from bit_exporter.export import dumps, project, write_export
from bit_exporter.models import Sync
from bit_exporter.vault.cipherstring import parse
from bit_exporter.vault.walker import DecryptReport, decrypt_all

WRAPPED_KEY = "2.AAAAAAAAAAAAAAAAAAAAAA==|AAAAAAAAAAAAAAAAAAAAAA==|" + "A" * 43 + "="


class TestProject:
    """Tests for project()."""

    def test_encrypted_export_carries_key(self, vault):
        """A non-decrypted export keeps the wrapped key and CipherStrings."""
        doc = project(vault, decrypted=False, wrapped_master_key=WRAPPED_KEY)

        assert doc.encrypted is True
        assert doc.key == WRAPPED_KEY
        assert doc.folders[0].name == vault.folders[0].name
        assert doc.folders[0].name.startswith("2.")
        assert doc.unauthenticated_fields is None

    def test_encrypted_export_requires_key(self, vault):
        with pytest.raises(ValueError):
            project(vault, decrypted=False)

    def test_parsed_key_is_serialized(self, vault):
        doc = project(vault, decrypted=False, wrapped_master_key=parse(WRAPPED_KEY))
        assert doc.key == WRAPPED_KEY

    def test_decrypted_export_has_no_key(self, vault, master_keys):
        report = decrypt_all(vault, master_keys)
        doc = project(vault, decrypted=True, wrapped_master_key=WRAPPED_KEY, report=report)

        assert doc.encrypted is False
        assert doc.key is None
        assert doc.folders[0].name == "Personal"
        data = orjson.loads(dumps(doc))
        assert "key" not in data
        assert data["encrypted"] is False

    def test_decrypted_drops_item_keys(self, vault_payload):
        payload = vault_payload()
        payload["ciphers"][0]["key"] = WRAPPED_KEY
        sync = Sync.model_validate(payload)

        assert project(sync, decrypted=False, wrapped_master_key="k").items[0].key == WRAPPED_KEY
        assert project(sync, decrypted=True).items[0].key is None

    def test_unauthenticated_fields(self, vault):
        report = DecryptReport(decrypted=1, unauthenticated=["folders[f1].name"])
        doc = project(vault, decrypted=True, report=report)
        assert doc.unauthenticated_fields == ["folders[f1].name"]

    def test_items_are_tagged(self, vault):
        """Each item carries only the section matching its type."""
        doc = project(vault, decrypted=False, wrapped_master_key=WRAPPED_KEY)
        login, card, identity, note, ssh = doc.items

        assert login.login is not None and login.card is None
        assert card.card is not None and card.login is None
        assert identity.identity is not None
        assert note.secure_note is not None and note.secure_note.type == 0
        assert ssh.ssh_key is not None
        assert [item.type for item in doc.items] == [1, 3, 4, 2, 5]

    def test_secure_note_section_defaulted(self, vault_payload):
        payload = vault_payload()
        del payload["ciphers"][3]["secureNote"]
        sync = Sync.model_validate(payload)

        doc = project(sync, decrypted=True)
        assert doc.items[3].secure_note.type == 0


class TestDumps:
    """JSON serialization."""

    def test_camel_case_keys(self, vault, master_keys):
        decrypt_all(vault, master_keys)
        data = orjson.loads(dumps(project(vault, decrypted=True)))

        assert set(data) == {"encrypted", "folders", "collections", "items"}
        login = data["items"][0]
        assert login["folderId"] == "f1"
        assert login["passwordHistory"][0]["lastUsedDate"] == "2024-01-01T00:00:00Z"
        assert login["login"]["uris"][0]["uri"] == "https://mail.example.com"
        assert data["items"][1]["card"]["cardholderName"] == "Jane Doe"
        assert data["items"][4]["sshKey"]["keyFingerprint"] == "SHA256:abc"

    def test_none_omitted(self, vault, master_keys):
        decrypt_all(vault, master_keys)
        data = orjson.loads(dumps(project(vault, decrypted=True)))
        identity = data["items"][2]["identity"]
        assert "middleName" not in identity
        assert "totp" not in data["items"][0]["login"]

    def test_attachments_not_exported(self, vault):
        data = orjson.loads(dumps(project(vault, decrypted=False, wrapped_master_key="k")))
        assert "attachments" not in data["items"][0]

    def test_indented(self, vault):
        raw = dumps(project(vault, decrypted=False, wrapped_master_key="k"))
        assert raw.startswith(b"{\n  ")


class TestWriteExport:
    """Atomic file output."""

    def test_writes_file(self, vault, tmp_path):
        doc = project(vault, decrypted=False, wrapped_master_key=WRAPPED_KEY)
        target = tmp_path / "export.json"

        assert write_export(doc, target) == target
        assert orjson.loads(target.read_bytes())["key"] == WRAPPED_KEY

    def test_owner_only_permissions(self, vault, tmp_path):
        target = write_export(
            project(vault, decrypted=False, wrapped_master_key="k"), tmp_path / "out.json",
        )
        assert stat.S_IMODE(os.stat(target).st_mode) == 0o600

    def test_replaces_existing(self, vault, tmp_path):
        target = tmp_path / "out.json"
        target.write_text("old")
        write_export(project(vault, decrypted=False, wrapped_master_key="k"), target)

        assert orjson.loads(target.read_bytes())["encrypted"] is True
        assert os.listdir(tmp_path) == ["out.json"]

    def test_failed_write_leaves_nothing(self, vault, tmp_path, monkeypatch):
        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("bit_exporter.export.os.replace", broken_replace)
        with pytest.raises(ExportWriteError, match="disk full"):
            write_export(
                project(vault, decrypted=False, wrapped_master_key="k"), tmp_path / "out.json",
            )
        assert os.listdir(tmp_path) == []

    def test_missing_directory(self, vault, tmp_path):
        """A missing target directory is reported as a write-stage error."""
        target = tmp_path / "missing" / "out.json"
        with pytest.raises(ExportWriteError) as exc_info:
            write_export(project(vault, decrypted=False, wrapped_master_key="k"), target)

        assert exc_info.value.stage == "write"
        assert exc_info.value.field == str(target)
        assert not target.parent.exists()
