# store.py
# Gateway para o banco hospedado (Supabase / PostgREST).
# Toda chamada leva o token do usuário, para que as policies de RLS decidam o que ele enxerga.

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import httpx

logger = logging.getLogger("cobrancas.store")

CLIENTES = "clientes"
COBRANCAS = "cobrancas"

# Código Postgres de violação de chave estrangeira
FOREIGN_KEY_VIOLATION = "23503"


class StoreError(Exception):
    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class RowNotFound(StoreError):
    """Nenhuma linha visível para o usuário com esse id."""


class ReferencedRowError(StoreError):
    """A linha ainda é referenciada por outra tabela (ex.: cliente com cobranças)."""


class SupabaseStore:
    """Acesso às tabelas `clientes` e `cobrancas` via REST.

    O `httpx.AsyncClient` é criado no startup e reaproveitado; nada aqui guarda
    estado por requisição.
    """

    def __init__(self, rest_url: str, anon_key: str, client: httpx.AsyncClient):
        self.rest_url = rest_url.rstrip("/")
        self.anon_key = anon_key
        self._client = client

    def _headers(self, token: str, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        token: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        try:
            resp = await self._client.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=json,
                headers=self._headers(token, prefer),
            )
        except httpx.HTTPError as exc:
            logger.error("store_unreachable method=%s table=%s error=%r", method, table, exc)
            raise StoreError("Banco de dados indisponível", status_code=503) from exc

        if resp.status_code >= 400:
            raise self._error_from_response(resp, method, table)

        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    @staticmethod
    def _error_from_response(resp: httpx.Response, method: str, table: str) -> StoreError:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        code = body.get("code") if isinstance(body, dict) else None
        message = (body.get("message") if isinstance(body, dict) else None) or resp.text
        logger.warning(
            "store_error method=%s table=%s status=%s code=%s",
            method, table, resp.status_code, code,
        )
        if code == FOREIGN_KEY_VIOLATION:
            return ReferencedRowError(message, status_code=resp.status_code, code=code)
        return StoreError(message, status_code=resp.status_code, code=code)

    @staticmethod
    def _single(rows: List[Dict[str, Any]], table: str, row_id: str) -> Dict[str, Any]:
        if not rows:
            raise RowNotFound(f"{table} {row_id} não encontrado", status_code=404)
        return rows[0]

    # --- Clientes ---

    async def list_clientes(self, token: str, ativo: Optional[bool] = None) -> List[Dict[str, Any]]:
        params = {"select": "*", "order": "nome.asc"}
        if ativo is not None:
            params["ativo"] = f"eq.{str(ativo).lower()}"
        return await self._request("GET", CLIENTES, token, params=params)

    async def create_cliente(self, token: str, data: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request("POST", CLIENTES, token, json=data, prefer="return=representation")
        return rows[0]

    async def update_cliente(self, token: str, cliente_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "PATCH", CLIENTES, token,
            params={"id": f"eq.{cliente_id}"}, json=fields, prefer="return=representation",
        )
        return self._single(rows, CLIENTES, cliente_id)

    async def delete_cliente(self, token: str, cliente_id: str) -> None:
        rows = await self._request(
            "DELETE", CLIENTES, token,
            params={"id": f"eq.{cliente_id}"}, prefer="return=representation",
        )
        self._single(rows, CLIENTES, cliente_id)

    async def get_cliente(self, token: str, cliente_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._request(
            "GET", CLIENTES, token,
            params={"select": "*", "id": f"eq.{cliente_id}"},
        )
        return rows[0] if rows else None

    # --- Cobranças ---

    async def list_cobrancas(self, token: str, status: Optional[str] = "aberta") -> List[Dict[str, Any]]:
        params = {"select": "*,clientes(*)", "order": "data_vencimento.asc"}
        if status:
            params["status"] = f"eq.{status}"
        return await self._request("GET", COBRANCAS, token, params=params)

    async def get_cobranca(self, token: str, cobranca_id: str) -> Optional[Dict[str, Any]]:
        """Cobrança com o cliente embutido em `clientes`, ou None se invisível para o token."""
        rows = await self._request(
            "GET", COBRANCAS, token,
            params={"select": "*,clientes(*)", "id": f"eq.{cobranca_id}"},
        )
        return rows[0] if rows else None

    async def create_cobranca(self, token: str, data: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request("POST", COBRANCAS, token, json=data, prefer="return=representation")
        return rows[0]

    async def update_cobranca(self, token: str, cobranca_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "PATCH", COBRANCAS, token,
            params={"id": f"eq.{cobranca_id}"}, json=fields, prefer="return=representation",
        )
        return self._single(rows, COBRANCAS, cobranca_id)

    async def delete_cobranca(self, token: str, cobranca_id: str) -> None:
        rows = await self._request(
            "DELETE", COBRANCAS, token,
            params={"id": f"eq.{cobranca_id}"}, prefer="return=representation",
        )
        self._single(rows, COBRANCAS, cobranca_id)

    async def record_dispatch(self, token: str, cobranca_id: str, status: str, at: datetime) -> Dict[str, Any]:
        return await self.update_cobranca(
            token,
            cobranca_id,
            {"status_ultimo_disparo": status, "ultimo_disparo": at.isoformat()},
        )
