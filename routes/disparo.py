# routes/disparo.py
# Relay de disparo: mesmo contrato da função `disparar-webhook` (corpo {"error": ...} nos erros).

import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from modules.cobranca.core.engine import DispatchRelay, RelayError
from routes.deps import get_relay

logger = logging.getLogger("cobrancas.disparo")

RELAY_PATH = "/functions/v1/disparar-webhook"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

router = APIRouter(tags=["Disparo"])


# OPTIONS no RELAY_PATH é respondido pelo middleware `relay_preflight` em main.py, antes do CORS.
def preflight_response() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post(RELAY_PATH)
async def disparar_webhook(request: Request, relay: DispatchRelay = Depends(get_relay)):
    """Dispara a cobrança para o webhook. Falha de entrega volta como 200 {"status": "error"}."""
    try:
        body = await request.json()
    except ValueError:
        body = None

    try:
        result = await relay.handle(request.headers.get("authorization"), body)
    except RelayError as exc:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=CORS_HEADERS)

    return JSONResponse(result, status_code=200, headers=CORS_HEADERS)
