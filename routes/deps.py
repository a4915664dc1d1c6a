# deps.py
# Dependências que entregam os objetos criados no startup (ver main.lifespan).

import logging
from fastapi import HTTPException, Request, status

from modules.cobranca.core import engine
from modules.cobranca.core.engine import DispatchRelay
from modules.cobranca.core.store import ReferencedRowError, RowNotFound, StoreError, SupabaseStore

logger = logging.getLogger("cobrancas.routes")


def get_store(request: Request) -> SupabaseStore:
    return request.app.state.store


def get_relay(request: Request) -> DispatchRelay:
    return request.app.state.relay


def require_identifier(value: str, detail: str = "ID inválido") -> str:
    if not engine.is_valid_identifier(value):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    return value


def store_failure(exc: StoreError, message: str, not_found: str, conflict: str = "") -> HTTPException:
    """Converte erro do banco em resposta genérica; o detalhe do banco fica só no log."""
    if isinstance(exc, RowNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=not_found)
    if isinstance(exc, ReferencedRowError) and conflict:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=conflict)
    logger.warning("store_failure status=%s code=%s", exc.status_code, exc.code)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=message)
