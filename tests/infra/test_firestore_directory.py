"""Testes para o diretório de credenciais e o sink de dashboard no Firestore."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import MagicMock

import anyio
import pytest

from session_keeper.domain.models import Credentials
from session_keeper.infra.firestore_directory import (
    FirestoreCredentialsProvider,
    FirestoreDashboardSink,
    InMemoryCredentialsProvider,
)


def _doc(doc_id: str, data: dict | None, exists: bool = True) -> MagicMock:
    doc = MagicMock()
    doc.id = doc_id
    doc.exists = exists
    doc.to_dict.return_value = data
    return doc


class TestFirestoreCredentialsProvider:
    """Testes para leitura de credenciais."""

    @pytest.mark.asyncio
    async def test_get_returns_credentials(self) -> None:
        mock_client = MagicMock()
        mock_client.collection.return_value.document.return_value.get.return_value = _doc(
            "admin-1", {"phone": 70123456, "password": "secret"}
        )
        provider = FirestoreCredentialsProvider(mock_client)

        creds = await provider.get("admin-1")

        assert creds == Credentials(identity="admin-1", username="70123456", password="secret")
        mock_client.collection.assert_called_with("admins")
        mock_client.collection.return_value.document.assert_called_with("admin-1")

    @pytest.mark.asyncio
    async def test_get_missing_document(self) -> None:
        mock_client = MagicMock()
        mock_client.collection.return_value.document.return_value.get.return_value = _doc(
            "admin-1", None, exists=False
        )

        assert await FirestoreCredentialsProvider(mock_client).get("admin-1") is None

    @pytest.mark.asyncio
    async def test_get_without_password(self) -> None:
        mock_client = MagicMock()
        mock_client.collection.return_value.document.return_value.get.return_value = _doc(
            "admin-1", {"phone": "70123456"}
        )

        assert await FirestoreCredentialsProvider(mock_client).get("admin-1") is None

    @pytest.mark.asyncio
    async def test_list_skips_incomplete_admins(self) -> None:
        mock_client = MagicMock()
        mock_client.collection.return_value.stream.return_value = [
            _doc("admin-1", {"phone": "1", "password": "a"}),
            _doc("admin-2", {"phone": "2"}),
            _doc("admin-3", {"phone": "3", "password": "c"}),
        ]

        identities = await FirestoreCredentialsProvider(mock_client, collection="owners").list_identities()

        assert identities == ["admin-1", "admin-3"]
        mock_client.collection.assert_called_with("owners")

    @pytest.mark.asyncio
    async def test_blocking_calls_run_in_worker_thread(self, monkeypatch: pytest.MonkeyPatch) -> None:
        offloaded: list[str] = []

        async def _run_sync(func, *args):
            offloaded.append(func.__name__)
            return func(*args)

        monkeypatch.setattr(anyio.to_thread, "run_sync", _run_sync)
        mock_client = MagicMock()
        mock_client.collection.return_value.document.return_value.get.return_value = _doc(
            "admin-1", {"phone": "1", "password": "a"}
        )
        mock_client.collection.return_value.stream.return_value = []
        provider = FirestoreCredentialsProvider(mock_client)

        await provider.get("admin-1")
        await provider.list_identities()

        assert offloaded == ["_get_sync", "_list_sync"]

    def test_password_not_in_repr(self) -> None:
        creds = Credentials(identity="admin-1", username="70123456", password="secret")
        assert "secret" not in repr(creds)


class TestFirestoreDashboardSink:
    """Testes para publicação do payload."""

    @pytest.mark.asyncio
    async def test_publish_merges_document(self) -> None:
        mock_client = MagicMock()
        sink = FirestoreDashboardSink(mock_client)

        await sink.publish("admin-1", {"balance": "10"})

        set_call = mock_client.collection.return_value.document.return_value.set
        set_call.assert_called_once()
        payload = set_call.call_args[0][0]
        assert payload["alfaData"] == {"balance": "10"}
        assert datetime.fromisoformat(payload["alfaDataFetchedAt"]).tzinfo is not None
        assert set_call.call_args.kwargs == {"merge": True}

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self, caplog) -> None:
        mock_client = MagicMock()
        mock_client.collection.return_value.document.return_value.set.side_effect = Exception(
            "Firestore unavailable"
        )

        await FirestoreDashboardSink(mock_client).publish("admin-1", {"balance": "10"})

        assert any("Dashboard publish failed" in r.message for r in caplog.records)


class TestInMemoryCredentialsProvider:
    @pytest.mark.asyncio
    async def test_add_get_remove(self) -> None:
        provider = InMemoryCredentialsProvider()
        provider.add(Credentials(identity="admin-1", username="1", password="p"))

        assert (await provider.get("admin-1")) is not None
        assert await provider.list_identities() == ["admin-1"]

        provider.remove("admin-1")
        assert await provider.get("admin-1") is None
        assert await provider.list_identities() == []
