# notifier.py
# Cliente do webhook externo (n8n) que efetivamente envia o WhatsApp.

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging
import httpx

logger = logging.getLogger("cobrancas.notifier")


@dataclass(frozen=True)
class NotifierResult:
    ok: bool
    status_code: Optional[int] = None
    message: Optional[str] = None


class WebhookNotifier:
    def __init__(self, url: str, client: httpx.AsyncClient, timeout: float = 30.0):
        self.url = url
        self._client = client
        self._timeout = timeout

    async def send(self, payload: Dict[str, Any]) -> NotifierResult:
        """POST do payload; status HTTP de erro vira resultado, nunca exceção."""
        try:
            resp = await self._client.post(self.url, json=payload, timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.error("webhook_unreachable cobranca_id=%s error=%r", payload.get("cobranca_id"), exc)
            return NotifierResult(ok=False, message=str(exc) or exc.__class__.__name__)

        logger.info(
            "webhook_response cobranca_id=%s status=%s",
            payload.get("cobranca_id"), resp.status_code,
        )
        if not resp.is_success:
            return NotifierResult(
                ok=False,
                status_code=resp.status_code,
                message=f"Erro no webhook: {resp.status_code}",
            )
        return NotifierResult(ok=True, status_code=resp.status_code)
