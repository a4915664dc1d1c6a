# schemas.py
# Modelos Pydantic (contrato) usados pelo adapter FastAPI.

from __future__ import annotations
from datetime import date, datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, field_validator

from modules.cobranca.core import engine

StatusDisparo = Literal["sent", "error", "invalid"]


class Cliente(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    nome: str
    telefone: str
    ativo: bool = True
    user_id: Optional[str] = None


class ClienteIn(BaseModel):
    nome: str
    telefone: str
    ativo: bool = True

    @field_validator("nome")
    @classmethod
    def _nome(cls, v: str) -> str:
        return engine.validate_nome(v)

    @field_validator("telefone")
    @classmethod
    def _telefone(cls, v: str) -> str:
        return engine.validate_telefone(v)


class AtivoUpdate(BaseModel):
    ativo: bool


class Cobranca(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    cliente_id: str
    nome: Optional[str] = None
    data_vencimento: date
    status: str = engine.COBRANCA_ABERTA
    ativa: bool = True
    ultimo_disparo: Optional[datetime] = None
    status_ultimo_disparo: Optional[StatusDisparo] = None
    clientes: Optional[Cliente] = None


class CobrancaIn(BaseModel):
    # Campos de disparo (ultimo_disparo, status_ultimo_disparo) nunca vêm do usuário
    model_config = ConfigDict(extra="ignore")

    cliente_id: str
    nome: Optional[str] = None
    data_vencimento: date

    @field_validator("cliente_id")
    @classmethod
    def _cliente_id(cls, v: str) -> str:
        if not engine.is_valid_identifier(v):
            raise ValueError("Cliente inválido")
        return v

    @field_validator("nome")
    @classmethod
    def _nome(cls, v: Optional[str]) -> Optional[str]:
        return engine.normalize_cobranca_nome(v)


class AtivaUpdate(BaseModel):
    ativa: bool
