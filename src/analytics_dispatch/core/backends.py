"""
Backend clients for inserting events into BigQuery.

Two interchangeable clients share the tabledata.insertAll call and differ
only in how they obtain an access token:
- Legacy: static bearer token from settings
- Federated: workload identity token exchanged at a security token service
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import aiohttp
import structlog
from aiofiles import open as aio_open

from ..config import AuthMode, BigQuerySettings, FederatedAuthSettings, Settings
from .exceptions import AuthenticationError, BackendInsertError, ConfigurationError

logger = structlog.get_logger(__name__)

TOKEN_EXCHANGE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:token-exchange"
ACCESS_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:access_token"
JWT_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:jwt"


class BackendClient(Protocol):
    """Anything that can insert a batch of event mappings into the sink."""

    async def insert(self, events: Sequence[Mapping[str, Any]]) -> None:
        ...


class BigQueryClient(ABC):
    """
    Shared insertAll implementation.

    Subclasses provide ``_access_token``. The aiohttp session is created on
    first use and closed with ``close``.
    """

    auth_mode: AuthMode

    def __init__(self, settings: BigQuerySettings) -> None:
        self.settings = settings
        self.session: Optional[aiohttp.ClientSession] = None

    async def insert(self, events: Sequence[Mapping[str, Any]]) -> None:
        """
        Insert events as rows of the configured table.

        Raises:
            BackendInsertError: Non-2xx response or rows rejected by BigQuery
            ConfigurationError: Table settings missing
        """
        if not events:
            return

        if not self.settings.project_id or not self.settings.dataset:
            raise ConfigurationError(
                "BigQuery project_id and dataset must be set to insert events",
                details={"auth_mode": self.auth_mode.value},
            )

        token = await self._access_token()
        payload = {
            "skipInvalidRows": False,
            "ignoreUnknownValues": False,
            "rows": rows_for(events),
        }
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "User-Agent": "analytics-dispatch/1.0",
        }

        session = self._get_session()
        async with session.post(
            self.settings.insert_url,
            data=json.dumps(payload, default=str),
            headers=headers,
        ) as response:
            if not 200 <= response.status < 300:
                error_text = await response.text()
                logger.error(
                    "BigQuery insert returned error",
                    status=response.status,
                    auth_mode=self.auth_mode.value,
                    error=error_text,
                )
                raise BackendInsertError(
                    f"BigQuery insert failed with status {response.status}",
                    details={"status": response.status, "body": error_text},
                )

            body = await response.json(content_type=None) or {}

        insert_errors = body.get("insertErrors") or []
        if insert_errors:
            logger.error(
                "BigQuery rejected rows",
                rejected_rows=len(insert_errors),
                rows=len(events),
            )
            raise BackendInsertError(
                "BigQuery rejected rows",
                details={"insert_errors": insert_errors},
            )

        logger.debug("Events inserted", rows=len(events), auth_mode=self.auth_mode.value)

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            )
        return self.session

    @abstractmethod
    async def _access_token(self) -> str:
        """Bearer token for the insert request."""


class LegacyBigQueryClient(BigQueryClient):
    """Authenticates with a static access token."""

    auth_mode = AuthMode.LEGACY

    async def _access_token(self) -> str:
        if not self.settings.access_token:
            raise ConfigurationError("BigQuery access_token must be set for legacy auth")
        return self.settings.access_token


class FederatedBigQueryClient(BigQueryClient):
    """
    Authenticates with workload identity federation.

    Reads the platform-issued identity token from disk, exchanges it for an
    access token and caches that token until shortly before it expires.
    """

    auth_mode = AuthMode.FEDERATED

    def __init__(self, settings: BigQuerySettings, federated: FederatedAuthSettings) -> None:
        super().__init__(settings)
        self.federated = federated
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        subject_token = await self._read_identity_token()
        token, expires_in = await self._exchange_token(subject_token)

        self._token = token
        self._token_expires_at = time.monotonic() + max(
            0, expires_in - self.federated.expiry_margin_seconds
        )
        logger.info("Federated access token refreshed", expires_in=expires_in)
        return token

    async def _read_identity_token(self) -> str:
        try:
            async with aio_open(self.federated.token_file_path, "r") as f:
                subject_token = (await f.read()).strip()
        except OSError as e:
            raise AuthenticationError(
                "Unable to read federated identity token",
                details={"path": str(self.federated.token_file_path), "error": str(e)},
            ) from e

        if not subject_token:
            raise AuthenticationError(
                "Federated identity token file is empty",
                details={"path": str(self.federated.token_file_path)},
            )
        return subject_token

    async def _exchange_token(self, subject_token: str) -> Tuple[str, int]:
        form: Dict[str, str] = {
            "grant_type": TOKEN_EXCHANGE_GRANT_TYPE,
            "audience": self.federated.audience,
            "scope": self.federated.scope,
            "requested_token_type": ACCESS_TOKEN_TYPE,
            "subject_token": subject_token,
            "subject_token_type": JWT_TOKEN_TYPE,
        }

        session = self._get_session()
        async with session.post(self.federated.token_exchange_url, data=form) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error("Token exchange failed", status=response.status, error=error_text)
                raise AuthenticationError(
                    "Token exchange failed",
                    details={"status": response.status, "body": error_text},
                )
            body = await response.json(content_type=None) or {}

        access_token = body.get("access_token")
        if not access_token:
            raise AuthenticationError("Token exchange response has no access_token")
        return access_token, int(body.get("expires_in", 3600))


class BackendClients:
    """Selects the backend client for an auth mode."""

    def __init__(self, legacy: BackendClient, federated: BackendClient) -> None:
        self._clients: Dict[AuthMode, BackendClient] = {
            AuthMode.LEGACY: legacy,
            AuthMode.FEDERATED: federated,
        }

    def select(self, auth_mode: AuthMode) -> BackendClient:
        return self._clients[auth_mode]

    async def close(self) -> None:
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                await close()


def build_backend_clients(settings: Settings) -> BackendClients:
    """Create both BigQuery clients from settings."""
    return BackendClients(
        legacy=LegacyBigQueryClient(settings.bigquery),
        federated=FederatedBigQueryClient(settings.bigquery, settings.federated),
    )


def rows_for(events: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """insertAll row envelopes for a batch, in order."""
    return [{"json": dict(event)} for event in events]
