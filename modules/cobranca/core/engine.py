# engine.py
# Camada de REGRA DE NEGÓCIO do disparo. Não fala HTTP de entrada: a rota só traduz o resultado em resposta.

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging
import re

from auth import SupabaseTokenVerifier, TokenVerificationError
from modules.cobranca.core.notifier import WebhookNotifier
from modules.cobranca.core.store import StoreError, SupabaseStore

logger = logging.getLogger("cobrancas.engine")

STATUS_SENT = "sent"
STATUS_ERROR = "error"
STATUS_INVALID = "invalid"

COBRANCA_ABERTA = "aberta"

NOME_MIN, NOME_MAX = 2, 100
TELEFONE_MIN, TELEFONE_MAX = 10, 20
COBRANCA_NOME_MAX = 100

_IDENTIFIER_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

# ---------- Validações ----------

def is_valid_identifier(value: Any) -> bool:
    return isinstance(value, str) and _IDENTIFIER_RE.fullmatch(value) is not None


def validate_nome(nome: str) -> str:
    nome = (nome or "").strip()
    if len(nome) < NOME_MIN:
        raise ValueError("Nome deve ter pelo menos 2 caracteres")
    if len(nome) > NOME_MAX:
        raise ValueError("Nome muito longo")
    return nome


def validate_telefone(telefone: str) -> str:
    telefone = (telefone or "").strip()
    if len(telefone) < TELEFONE_MIN:
        raise ValueError("Telefone inválido")
    if len(telefone) > TELEFONE_MAX:
        raise ValueError("Telefone muito longo")
    return telefone


def normalize_cobranca_nome(nome: Optional[str]) -> Optional[str]:
    """Nome da cobrança é opcional: em branco vira None."""
    if nome is None:
        return None
    nome = nome.strip()
    if not nome:
        return None
    if len(nome) > COBRANCA_NOME_MAX:
        raise ValueError("Nome da cobrança muito longo")
    return nome

# ---------- Erros do relay ----------

class RelayError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(RelayError):
    status_code = 401


class InvalidInput(RelayError):
    status_code = 400


class NotFound(RelayError):
    status_code = 404


class Misconfigured(RelayError):
    status_code = 500

# ---------- Disparo ----------

def build_payload(cobranca: Dict[str, Any]) -> Dict[str, Any]:
    """Payload mínimo para o webhook, sempre derivado da linha lida do banco."""
    cliente = cobranca["clientes"]
    return {
        "cliente_nome": cliente.get("nome"),
        "cliente_telefone": cliente.get("telefone"),
        "data_vencimento": cobranca.get("data_vencimento"),
        "cobranca_id": cobranca.get("id"),
        "cobranca_nome": cobranca.get("nome"),
    }


def ineligibility_reason(cobranca: Dict[str, Any]) -> Optional[str]:
    if not cobranca.get("ativa"):
        return "Cobrança inativa"
    if cobranca.get("status") != COBRANCA_ABERTA:
        return "Cobrança não está aberta"
    if not cobranca["clientes"].get("ativo", True):
        return "Cliente inativo"
    return None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchRelay:
    """Autentica, revalida e repassa uma cobrança ao webhook, gravando o status do disparo.

    Não guarda estado entre chamadas: duas chamadas para a mesma cobrança geram
    dois envios e o último status gravado prevalece.
    """

    def __init__(
        self,
        verifier: SupabaseTokenVerifier,
        store: SupabaseStore,
        notifier: Optional[WebhookNotifier],
        write_attempts: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.verifier = verifier
        self.store = store
        self.notifier = notifier
        self.write_attempts = max(1, write_attempts)
        self.clock = clock

    async def handle(self, authorization: Optional[str], body: Any) -> Dict[str, Any]:
        token = _bearer_token(authorization)
        if token is None:
            raise Unauthorized("Unauthorized")
        try:
            user = await self.verifier.verify(token)
        except TokenVerificationError as exc:
            logger.info("relay_token_rejected reason=%s", exc)
            raise Unauthorized("Invalid token")

        if self.notifier is None:
            logger.error("N8N_WEBHOOK_URL não configurada")
            raise Misconfigured("Webhook URL não configurada")

        cobranca_id = None
        if isinstance(body, dict) and isinstance(body.get("cobranca"), dict):
            cobranca_id = body["cobranca"].get("id")
        if not is_valid_identifier(cobranca_id):
            raise InvalidInput("Invalid cobranca ID")

        try:
            cobranca = await self.store.get_cobranca(user.token, cobranca_id)
        except StoreError as exc:
            logger.warning("relay_lookup_failed cobranca_id=%s status=%s", cobranca_id, exc.status_code)
            raise NotFound("Cobrança não encontrada")
        if cobranca is None:
            raise NotFound("Cobrança não encontrada")
        if not cobranca.get("clientes"):
            raise NotFound("Cliente da cobrança não encontrado")

        reason = ineligibility_reason(cobranca)
        if reason:
            logger.info("dispatch_refused cobranca_id=%s reason=%s", cobranca_id, reason)
            await self._write_status(user.token, cobranca_id, STATUS_INVALID)
            return {"status": STATUS_INVALID, "message": reason}

        logger.info("dispatch_start cobranca_id=%s user_id=%s", cobranca_id, user.id)
        result = await self.notifier.send(build_payload(cobranca))

        if result.ok:
            await self._write_status(user.token, cobranca_id, STATUS_SENT)
            return {"status": STATUS_SENT}

        await self._write_status(user.token, cobranca_id, STATUS_ERROR)
        return {"status": STATUS_ERROR, "message": result.message or "Falha ao enviar mensagem"}

    async def _write_status(self, token: str, cobranca_id: str, status: str) -> bool:
        """Grava status e horário do disparo; tenta `write_attempts` vezes antes de desistir."""
        for attempt in range(1, self.write_attempts + 1):
            try:
                await self.store.record_dispatch(token, cobranca_id, status, self.clock())
                return True
            except StoreError as exc:
                logger.warning(
                    "dispatch_status_write_failed cobranca_id=%s attempt=%s status=%s error=%s",
                    cobranca_id, attempt, exc.status_code, exc,
                )
        logger.error(
            "dispatch_status_not_persisted cobranca_id=%s status=%s attempts=%s",
            cobranca_id, status, self.write_attempts,
        )
        return False
