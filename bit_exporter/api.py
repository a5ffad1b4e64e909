"""
Server API client — Authenticates with a personal API key and fetches the
synchronized vault.

Endpoints (relative to the configured base URL):
- ``POST /identity/connect/token`` (client credentials grant)
- ``GET /api/sync?excludeDomains=true``

Security Note:
    Never log the client secret, the access token or response bodies.
"""
import asyncio
import logging
from typing import Any, Optional

import aiohttp
from pydantic import ValidationError

from .exceptions import ApiError
from .models import Auth, Sync

logger = logging.getLogger("bit_exporter.api")

DEVICE_TYPE = 25  # LinuxCLI
DEVICE_NAME = "bit-exporter"

TOKEN_PATH = "/identity/connect/token"
SYNC_PATH = "/api/sync"


class BitwardenClient:
    """Minimal async client for a Bitwarden-compatible server.

    Use as an async context manager; a session passed in by the caller is
    not closed by the client.
    """

    def __init__(
        self,
        api_url: str,
        client_id: str,
        client_secret: str,
        *,
        device_identifier: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self._api_url = api_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._device_identifier = device_identifier
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self.auth: Optional[Auth] = None

    async def __aenter__(self) -> "BitwardenClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, *exc) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _url(self, path: str) -> str:
        return f"{self._api_url}{path}"

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("BitwardenClient must be used as an async context manager")
        return self._session

    async def _read_json(self, response: aiohttp.ClientResponse, what: str) -> dict[str, Any]:
        try:
            payload = await response.json(content_type=None)
        except ValueError:
            payload = None
        if response.status >= 400:
            detail = ""
            if isinstance(payload, dict):
                detail = (
                    payload.get("error_description")
                    or payload.get("message")
                    or payload.get("error")
                    or ""
                )
            raise ApiError(
                f"{what} failed with HTTP {response.status}"
                + (f": {detail}" if detail else ""),
                status=response.status,
            )
        if not isinstance(payload, dict):
            raise ApiError(f"{what} returned an unexpected payload", status=response.status)
        return payload

    async def login(self) -> Auth:
        """Exchange the API key for an access token and the key material.

        Returns:
            Auth record with the wrapped master key and KDF parameters.

        Raises:
            ApiError: On transport errors, rejected credentials or a
                response without the expected fields.
        """
        form = {
            "grant_type": "client_credentials",
            "scope": "api",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "deviceType": str(DEVICE_TYPE),
            "deviceIdentifier": self._device_identifier,
            "deviceName": DEVICE_NAME,
        }
        try:
            async with self.session.post(self._url(TOKEN_PATH), data=form) as response:
                payload = await self._read_json(response, "Authorization")
        except asyncio.TimeoutError:
            raise ApiError("Authorization request timed out") from None
        except aiohttp.ClientError as err:
            raise ApiError(f"Authorization request failed: {err}") from err
        try:
            self.auth = Auth.from_token_response(payload)
        except (KeyError, ValueError, TypeError, ValidationError) as err:
            raise ApiError(f"Authorization response is incomplete: {err}") from None
        logger.info("Authorized with %s", self._api_url)
        return self.auth

    async def sync(self) -> Sync:
        """Fetch the full vault graph.

        Raises:
            ApiError: If not logged in, on transport errors or on an
                unexpected payload.
        """
        if self.auth is None:
            raise ApiError("Not authorized; call login() first")
        headers = {"Authorization": f"Bearer {self.auth.access_token}"}
        try:
            async with self.session.get(
                self._url(SYNC_PATH),
                params={"excludeDomains": "true"},
                headers=headers,
            ) as response:
                payload = await self._read_json(response, "Synchronization")
        except asyncio.TimeoutError:
            raise ApiError("Synchronization request timed out") from None
        except aiohttp.ClientError as err:
            raise ApiError(f"Synchronization request failed: {err}") from err
        try:
            sync = Sync.model_validate(payload)
        except ValidationError as err:
            raise ApiError(
                f"Synchronization payload is invalid ({err.error_count()} error(s))"
            ) from None
        logger.info(
            "Synchronized %d folder(s), %d collection(s), %d item(s)",
            len(sync.folders or ()), len(sync.collections or ()), len(sync.ciphers or ()),
        )
        return sync
