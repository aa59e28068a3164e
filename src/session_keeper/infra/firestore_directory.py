"""Firestore: diretório de credenciais dos admins e sink de dashboard.

Schema:
/admins/{admin_id}
  ├── phone, password          (credenciais do portal)
  ├── alfaData                 (último payload publicado)
  └── alfaDataFetchedAt        (ISO 8601, UTC)

O cliente Firestore é síncrono; chamadas rodam em worker thread para não
bloquear o event loop.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import anyio

from session_keeper.domain.models import Credentials
from session_keeper.observability.context import mask_identity
from session_keeper.observability.logging import get_logger

if TYPE_CHECKING:
    from google.cloud import firestore

logger: logging.Logger = get_logger(__name__)


def _credentials_from_doc(identity: str, data: dict[str, Any] | None) -> Credentials | None:
    if not data or not data.get("phone") or not data.get("password"):
        return None
    return Credentials(identity=identity, username=str(data["phone"]), password=str(data["password"]))


class FirestoreCredentialsProvider:
    """CredentialsProvider sobre a coleção de admins."""

    def __init__(self, client: firestore.Client, collection: str = "admins") -> None:
        self._client = client
        self._collection = collection

    def _get_sync(self, identity: str) -> Credentials | None:
        doc = self._client.collection(self._collection).document(identity).get()
        if not doc.exists:
            return None
        creds = _credentials_from_doc(identity, doc.to_dict())
        if creds is None:
            logger.warning("Admin without credentials", extra={"identity": mask_identity(identity)})
        return creds

    def _list_sync(self) -> list[str]:
        identities: list[str] = []
        for doc in self._client.collection(self._collection).stream():
            if _credentials_from_doc(doc.id, doc.to_dict()) is None:
                logger.warning("Admin skipped (missing phone/password)", extra={"identity": mask_identity(doc.id)})
                continue
            identities.append(doc.id)
        return identities

    async def get(self, identity: str) -> Credentials | None:
        return await anyio.to_thread.run_sync(self._get_sync, identity)

    async def list_identities(self) -> list[str]:
        return await anyio.to_thread.run_sync(self._list_sync)


class InMemoryCredentialsProvider:
    """CredentialsProvider em memória (dev/testes)."""

    def __init__(self, credentials: dict[str, Credentials] | None = None) -> None:
        self._credentials = dict(credentials or {})

    def add(self, credentials: Credentials) -> None:
        self._credentials[credentials.identity] = credentials

    def remove(self, identity: str) -> None:
        self._credentials.pop(identity, None)

    async def get(self, identity: str) -> Credentials | None:
        return self._credentials.get(identity)

    async def list_identities(self) -> list[str]:
        return list(self._credentials)


class FirestoreDashboardSink:
    """PersistenceSink: mescla o payload no documento do admin.

    Falhas são logadas e nunca propagadas (fire-and-forget).
    """

    def __init__(
        self,
        client: firestore.Client,
        collection: str = "admins",
        data_field: str = "alfaData",
    ) -> None:
        self._client = client
        self._collection = collection
        self._data_field = data_field

    def _publish_sync(self, identity: str, data: dict[str, Any]) -> None:
        fetched_at = datetime.now(tz=UTC).isoformat()
        self._client.collection(self._collection).document(identity).set(
            {self._data_field: data, f"{self._data_field}FetchedAt": fetched_at},
            merge=True,
        )

    async def publish(self, identity: str, data: dict[str, Any]) -> None:
        try:
            await anyio.to_thread.run_sync(self._publish_sync, identity, data)
            logger.debug("Dashboard data published", extra={"identity": mask_identity(identity)})
        except Exception as e:  # best effort: nunca bloqueia o refresh
            logger.warning(
                "Dashboard publish failed",
                extra={"identity": mask_identity(identity), "error_type": type(e).__name__},
            )
