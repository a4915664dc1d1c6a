# routes/cobranca.py
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from auth import AuthenticatedUser, get_current_user
from modules.cobranca.core import engine
from modules.cobranca.core.store import StoreError, SupabaseStore
from modules.cobranca.sync.board import FILTROS, FILTRO_TODAS, ChargeBoard
from routes.deps import get_store, require_identifier, store_failure
from routes.schemas import AtivaUpdate, AtivoUpdate, Cliente, ClienteIn, Cobranca, CobrancaIn

# Todas as rotas repassam o token do usuário ao banco: quem decide o que ele
# pode ver ou alterar são as policies de RLS, não este código.
router = APIRouter(tags=["Sistema de Cobrança"])

# --- Rotas de Clientes ---

@router.get("/clientes", response_model=List[Cliente])
async def list_clientes(
    q: Optional[str] = None,
    ativo: Optional[bool] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    """Lista os clientes do usuário, ordenados por nome, com busca por nome ou telefone."""
    try:
        rows = await store.list_clientes(user.token, ativo=ativo)
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível carregar os clientes", "Cliente não encontrado")
    if q:
        termo = q.strip().lower()
        rows = [r for r in rows if termo in (r.get("nome") or "").lower() or termo in (r.get("telefone") or "")]
    return rows

@router.post("/clientes", response_model=Cliente, status_code=201)
async def create_cliente(
    data: ClienteIn,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    try:
        return await store.create_cliente(user.token, {**data.model_dump(), "user_id": user.id})
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível salvar o cliente", "Cliente não encontrado")

@router.put("/clientes/{cliente_id}", response_model=Cliente)
async def update_cliente(
    cliente_id: str,
    data: ClienteIn,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    require_identifier(cliente_id)
    try:
        return await store.update_cliente(user.token, cliente_id, data.model_dump())
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível salvar o cliente", "Cliente não encontrado")

@router.patch("/clientes/{cliente_id}/ativo", response_model=Cliente)
async def set_cliente_ativo(
    cliente_id: str,
    data: AtivoUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    require_identifier(cliente_id)
    try:
        return await store.update_cliente(user.token, cliente_id, {"ativo": data.ativo})
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível atualizar o cliente", "Cliente não encontrado")

@router.delete("/clientes/{cliente_id}")
async def delete_cliente(
    cliente_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    """Só exclui clientes sem cobranças; o banco recusa a exclusão caso contrário."""
    require_identifier(cliente_id)
    try:
        await store.delete_cliente(user.token, cliente_id)
    except StoreError as exc:
        raise store_failure(
            exc,
            "Não foi possível excluir o cliente",
            "Cliente não encontrado",
            conflict="Cliente possui cobranças e não pode ser excluído",
        )
    return {"message": "Cliente excluído com sucesso"}

# --- Rotas de Cobranças ---

@router.get("/cobrancas", response_model=List[Cobranca])
async def list_cobrancas(
    q: Optional[str] = None,
    ativa: str = Query(FILTRO_TODAS),
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    """Cobranças abertas com o cliente embutido, por data de vencimento."""
    if ativa not in FILTROS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Filtro inválido")
    try:
        rows = await store.list_cobrancas(user.token)
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível carregar as cobranças", "Cobrança não encontrada")
    return ChargeBoard(rows).filtered(q or "", ativa)

@router.post("/cobrancas", response_model=Cobranca, status_code=201)
async def create_cobranca(
    data: CobrancaIn,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    """Cria a cobrança em aberto; só para cliente visível e ativo."""
    try:
        cliente = await store.get_cliente(user.token, data.cliente_id)
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível criar a cobrança", "Cliente não encontrado")
    if cliente is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cliente não encontrado")
    if not cliente.get("ativo", True):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cliente inativo")

    payload = {**data.model_dump(mode="json"), "status": engine.COBRANCA_ABERTA, "ativa": True}
    try:
        return await store.create_cobranca(user.token, payload)
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível criar a cobrança", "Cliente não encontrado")

@router.patch("/cobrancas/{cobranca_id}/ativa", response_model=Cobranca)
async def set_cobranca_ativa(
    cobranca_id: str,
    data: AtivaUpdate = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    require_identifier(cobranca_id)
    try:
        return await store.update_cobranca(user.token, cobranca_id, {"ativa": data.ativa})
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível atualizar a cobrança", "Cobrança não encontrada")

@router.delete("/cobrancas/{cobranca_id}")
async def delete_cobranca(
    cobranca_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SupabaseStore = Depends(get_store),
):
    """Encerrar a cobrança (cliente pagou) é apagá-la: não existe status 'paga'."""
    require_identifier(cobranca_id)
    try:
        await store.delete_cobranca(user.token, cobranca_id)
    except StoreError as exc:
        raise store_failure(exc, "Não foi possível remover a cobrança", "Cobrança não encontrada")
    return {"message": "Cobrança removida com sucesso"}
