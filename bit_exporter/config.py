"""
Export Configuration — Validated settings for one export run.

Reads settings from the environment (optionally seeded from a ``.env`` file):
    BW_API_URL = <server base url, e.g. https://vault.example.com>
    BW_CLIENT_ID = <personal API key client_id>
    BW_CLIENT_SECRET = <personal API key client_secret>
    BW_PASSWORD = <master password, only needed to decrypt>

Only ``ExportConfig.from_env`` touches process state; the pipeline receives
an ``ExportConfig`` explicitly.

Security Note:
    Never log the client secret or the password. Both are kept as SecretStr.
"""
import os
import uuid
import logging
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

logger = logging.getLogger("bit_exporter.config")

DEFAULT_OUT_FILE = "bit-export.json"


def _require_env(name: str) -> str:
    """Read a required environment variable.

    Raises:
        RuntimeError: If the variable is unset or empty.
    """
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"${name} variable is not set")
    return value


def load_env_file(env_file: Optional[Union[str, Path]] = None) -> bool:
    """Load a ``.env`` file into the environment without overriding it.

    Args:
        env_file: Explicit file; by default ``.env`` is searched from the
            current directory upwards.

    Returns:
        True if a file was found and loaded.

    Raises:
        FileNotFoundError: If an explicit ``env_file`` does not exist.
    """
    if env_file is not None:
        env_path = Path(env_file)
        if not env_path.is_file():
            raise FileNotFoundError(f"Environment file not found: {env_path}")
        return load_dotenv(env_path, override=False)
    found = find_dotenv(usecwd=True)
    if not found:
        return False
    return load_dotenv(found, override=False)


class ExportConfig(BaseModel):
    """Validated export configuration."""

    api_url: str
    client_id: str
    client_secret: SecretStr
    password: Optional[SecretStr] = None
    out_file: Path = Field(default=Path(DEFAULT_OUT_FILE))
    decrypt: bool = False
    workers: int = Field(default=1, ge=1, le=64)
    device_identifier: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"api_url must be an http(s) URL: {v!r}")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_password_for_decrypt(self) -> "ExportConfig":
        """Decrypting needs a non-empty master password."""
        if self.decrypt and (
            self.password is None or not self.password.get_secret_value()
        ):
            raise ValueError("A master password is required to decrypt the export")
        return self

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        **overrides: Any,
    ) -> "ExportConfig":
        """Create ExportConfig from the environment.

        Args:
            env_file: Optional ``.env`` file to load first.
            **overrides: Values taking precedence over the environment
                (``out_file``, ``decrypt``, ``workers``, ``password``...).

        Returns:
            Populated ExportConfig instance.

        Raises:
            RuntimeError: If a required variable is not set.
        """
        load_env_file(env_file)
        values: dict[str, Any] = {
            "api_url": _require_env("BW_API_URL"),
            "client_id": _require_env("BW_CLIENT_ID"),
            "client_secret": _require_env("BW_CLIENT_SECRET"),
        }
        password = os.environ.get("BW_PASSWORD")
        if password:
            values["password"] = password
        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        logger.debug(
            "Loaded configuration for %s (decrypt=%s)", config.api_url, config.decrypt,
        )
        return config
