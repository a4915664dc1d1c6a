"""Gateway REST: cabeçalhos, mapeamento de erros e serialização."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from modules.cobranca.core.store import ReferencedRowError, RowNotFound, StoreError, SupabaseStore

REST = "https://projeto.supabase.co/rest/v1"


def _store(handler) -> SupabaseStore:
    return SupabaseStore(REST, "anon-key", httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_requests_carry_apikey_and_user_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    await _store(handler).list_cobrancas("tok")

    request = seen[0]
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer tok"
    assert request.url.path == "/rest/v1/cobrancas"
    assert request.url.params["select"] == "*,clientes(*)"
    assert request.url.params["status"] == "eq.aberta"
    assert request.url.params["order"] == "data_vencimento.asc"


@pytest.mark.asyncio
async def test_get_cobranca_returns_none_when_invisible() -> None:
    store = _store(lambda request: httpx.Response(200, json=[]))
    assert await store.get_cobranca("tok", "abc") is None


@pytest.mark.asyncio
async def test_foreign_key_violation_is_referenced_row_error() -> None:
    store = _store(
        lambda request: httpx.Response(409, json={"code": "23503", "message": "violates foreign key"})
    )
    with pytest.raises(ReferencedRowError) as exc_info:
        await store.delete_cliente("tok", "abc")
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_no_affected_rows_is_row_not_found() -> None:
    store = _store(lambda request: httpx.Response(200, json=[]))
    with pytest.raises(RowNotFound):
        await store.update_cobranca("tok", "abc", {"ativa": False})


@pytest.mark.asyncio
async def test_non_json_error_body() -> None:
    store = _store(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(StoreError) as exc_info:
        await store.list_clientes("tok")
    assert exc_info.value.status_code == 500
    assert exc_info.value.code is None


@pytest.mark.asyncio
async def test_transport_failure_is_503() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(StoreError) as exc_info:
        await _store(handler).list_clientes("tok")
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_record_dispatch_patches_status_and_timestamp() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "abc"}])

    at = datetime(2025, 6, 1, 9, 30, tzinfo=timezone.utc)
    await _store(handler).record_dispatch("tok", "abc", "sent", at)

    request = seen[0]
    assert request.method == "PATCH"
    assert request.url.params["id"] == "eq.abc"
    assert request.headers["prefer"] == "return=representation"
    assert json.loads(request.content) == {
        "status_ultimo_disparo": "sent",
        "ultimo_disparo": "2025-06-01T09:30:00+00:00",
    }


@pytest.mark.asyncio
async def test_list_clientes_active_filter() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    await _store(handler).list_clientes("tok", ativo=True)
    assert seen[0].url.params["ativo"] == "eq.true"
    assert seen[0].url.params["order"] == "nome.asc"


@pytest.mark.asyncio
async def test_get_cliente_filters_by_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "abc", "ativo": False}])

    store = _store(handler)
    assert await store.get_cliente("tok", "abc") == {"id": "abc", "ativo": False}
    assert seen[0].url.path == "/rest/v1/clientes"
    assert seen[0].url.params["id"] == "eq.abc"


@pytest.mark.asyncio
async def test_get_cliente_returns_none_when_invisible() -> None:
    store = _store(lambda request: httpx.Response(200, json=[]))
    assert await store.get_cliente("tok", "abc") is None
