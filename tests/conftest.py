from __future__ import annotations

import json
import os
import uuid
from typing import Any

os.environ.setdefault("SUPABASE_URL", "https://projeto.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")

import httpx
import pytest
from fastapi.testclient import TestClient

from auth import AuthenticatedUser, TokenVerificationError
from config import Settings
from main import create_app

SUPABASE_URL = "https://projeto.supabase.co"
WEBHOOK_URL = "https://n8n.exemplo.com/webhook/cobranca"

TOKEN_ANA_OWNER = "token-dono"
TOKEN_OUTRO = "token-outro"
USER_DONO = "11111111-1111-1111-1111-111111111111"
USER_OUTRO = "22222222-2222-2222-2222-222222222222"


class FakeVerifier:
    """Aceita só os tokens conhecidos, sem JWKS."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self.tokens = tokens
        self.calls = 0

    async def verify(self, token: str) -> AuthenticatedUser:
        self.calls += 1
        if token not in self.tokens:
            raise TokenVerificationError("token desconhecido")
        return AuthenticatedUser(id=self.tokens[token], email=None, token=token)


class FakeSupabase:
    """PostgREST + webhook em memória, com RLS por dono do cliente."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self.tokens = tokens
        self.clientes: dict[str, dict[str, Any]] = {}
        self.cobrancas: dict[str, dict[str, Any]] = {}
        self.rest_calls: list[httpx.Request] = []
        self.webhook_calls: list[dict[str, Any]] = []
        self.webhook_status: int | None = 200
        self.failing_status_writes = 0

    # --- dados de apoio ---

    def add_cliente(self, nome: str, telefone: str, user_id: str = USER_DONO, ativo: bool = True) -> dict:
        row = {"id": str(uuid.uuid4()), "nome": nome, "telefone": telefone, "ativo": ativo, "user_id": user_id}
        self.clientes[row["id"]] = row
        return row

    def add_cobranca(self, cliente_id: str, data_vencimento: str = "2025-06-01", **fields: Any) -> dict:
        row = {
            "id": str(uuid.uuid4()),
            "cliente_id": cliente_id,
            "nome": None,
            "data_vencimento": data_vencimento,
            "status": "aberta",
            "ativa": True,
            "ultimo_disparo": None,
            "status_ultimo_disparo": None,
        }
        row.update(fields)
        self.cobrancas[row["id"]] = row
        return row

    # --- transporte ---

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(WEBHOOK_URL):
            return self._webhook(request)
        self.rest_calls.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        user_id = self.tokens.get(token)
        if user_id is None:
            return httpx.Response(401, json={"code": "PGRST301", "message": "JWT inválido"})
        handler = getattr(self, f"_{request.method.lower()}")
        return handler(request, table, user_id)

    def _webhook(self, request: httpx.Request) -> httpx.Response:
        self.webhook_calls.append(json.loads(request.content))
        if self.webhook_status is None:
            raise httpx.ConnectError("conexão recusada", request=request)
        return httpx.Response(self.webhook_status, text="ok")

    def _visible(self, table: str, user_id: str) -> dict[str, dict[str, Any]]:
        if table == "clientes":
            return {k: v for k, v in self.clientes.items() if v["user_id"] == user_id}
        return {
            k: v
            for k, v in self.cobrancas.items()
            if self.clientes.get(v["cliente_id"], {}).get("user_id") == user_id
        }

    @staticmethod
    def _matches(row: dict[str, Any], params: httpx.QueryParams) -> bool:
        for key, value in params.multi_items():
            if key in ("select", "order") or not value.startswith("eq."):
                continue
            expected = value[3:]
            actual = row.get(key)
            if isinstance(actual, bool):
                actual = str(actual).lower()
            if str(actual) != expected:
                return False
        return True

    def _embed(self, row: dict[str, Any], params: httpx.QueryParams) -> dict[str, Any]:
        if "clientes(" in params.get("select", ""):
            return {**row, "clientes": self.clientes.get(row["cliente_id"])}
        return dict(row)

    def _get(self, request: httpx.Request, table: str, user_id: str) -> httpx.Response:
        params = request.url.params
        rows = [self._embed(r, params) for r in self._visible(table, user_id).values() if self._matches(r, params)]
        order = params.get("order")
        if order:
            column = order.split(".")[0]
            rows.sort(key=lambda r: r.get(column) or "")
        return httpx.Response(200, json=rows)

    def _post(self, request: httpx.Request, table: str, user_id: str) -> httpx.Response:
        data = json.loads(request.content)
        if table == "cobrancas":
            cliente = self.clientes.get(data.get("cliente_id"))
            if cliente is None or cliente["user_id"] != user_id:
                return httpx.Response(403, json={"code": "42501", "message": "row-level security"})
            row = self.add_cobranca(**data)
        else:
            if data.get("user_id") != user_id:
                return httpx.Response(403, json={"code": "42501", "message": "row-level security"})
            row = self.add_cliente(data["nome"], data["telefone"], user_id=user_id, ativo=data.get("ativo", True))
        return httpx.Response(201, json=[row])

    def _patch(self, request: httpx.Request, table: str, user_id: str) -> httpx.Response:
        fields = json.loads(request.content)
        if "status_ultimo_disparo" in fields and self.failing_status_writes > 0:
            self.failing_status_writes -= 1
            return httpx.Response(503, json={"message": "indisponível"})
        rows = [r for r in self._visible(table, user_id).values() if self._matches(r, request.url.params)]
        for row in rows:
            row.update(fields)
        return httpx.Response(200, json=[dict(r) for r in rows])

    def _delete(self, request: httpx.Request, table: str, user_id: str) -> httpx.Response:
        rows = [r for r in self._visible(table, user_id).values() if self._matches(r, request.url.params)]
        store = self.clientes if table == "clientes" else self.cobrancas
        for row in rows:
            if table == "clientes" and any(c["cliente_id"] == row["id"] for c in self.cobrancas.values()):
                return httpx.Response(
                    409,
                    json={"code": "23503", "message": "violates foreign key constraint"},
                )
        for row in rows:
            del store[row["id"]]
        return httpx.Response(200, json=rows)


@pytest.fixture()
def tokens() -> dict[str, str]:
    return {TOKEN_ANA_OWNER: USER_DONO, TOKEN_OUTRO: USER_OUTRO}


@pytest.fixture()
def backend(tokens: dict[str, str]) -> FakeSupabase:
    return FakeSupabase(tokens)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        supabase_url=SUPABASE_URL,
        supabase_anon_key="anon-key",
        n8n_webhook_url=WEBHOOK_URL,
        allowed_origins=["http://localhost:3000"],
    )


def _build_client(settings: Settings, backend: FakeSupabase, tokens: dict[str, str]):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(backend))
    app = create_app(settings, http_client=http_client, verifier=FakeVerifier(tokens))
    return TestClient(app)


@pytest.fixture()
def client(settings: Settings, backend: FakeSupabase, tokens: dict[str, str]):
    with _build_client(settings, backend, tokens) as test_client:
        yield test_client


@pytest.fixture()
def unconfigured_client(settings: Settings, backend: FakeSupabase, tokens: dict[str, str]):
    with _build_client(settings.model_copy(update={"n8n_webhook_url": None}), backend, tokens) as test_client:
        yield test_client


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TOKEN_ANA_OWNER}"}
