import time
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from auth import SupabaseTokenVerifier
from config import Settings, load_settings
from modules.cobranca.core.engine import DispatchRelay
from modules.cobranca.core.notifier import WebhookNotifier
from modules.cobranca.core.store import SupabaseStore

# Importa os roteadores das funcionalidades
from routes import cobranca, disparo

logger = logging.getLogger("cobrancas")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    verifier: Optional[SupabaseTokenVerifier] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Um único cliente HTTP para o processo inteiro: banco, JWKS e webhook
        client = http_client or httpx.AsyncClient()
        app.state.settings = settings
        app.state.verifier = verifier or SupabaseTokenVerifier(settings.auth_url, client)
        app.state.store = SupabaseStore(settings.rest_url, settings.supabase_anon_key, client)
        notifier = None
        if settings.n8n_webhook_url:
            notifier = WebhookNotifier(settings.n8n_webhook_url, client, timeout=settings.notifier_timeout_seconds)
        else:
            logger.warning("N8N_WEBHOOK_URL ausente: o disparo de cobranças responderá 500")
        app.state.relay = DispatchRelay(
            app.state.verifier,
            app.state.store,
            notifier,
            write_attempts=settings.status_write_attempts,
        )
        try:
            yield
        finally:
            if http_client is None:
                await client.aclose()

    app = FastAPI(
        title="Cobranças API",
        description="API de clientes, cobranças e disparo de lembretes por WhatsApp.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials="*" not in settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------
    # Preflight do relay: sempre 200 e permissivo, independente de ALLOWED_ORIGINS
    # -------------------------
    @app.middleware("http")
    async def relay_preflight(request: Request, call_next):
        if request.method == "OPTIONS" and request.url.path == disparo.RELAY_PATH:
            return disparo.preflight_response()
        return await call_next(request)

    # -------------------------
    # Middleware de logging
    # -------------------------
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        rid = str(uuid.uuid4())
        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(
                "rid=%s method=%s path=%s status=%s duration_ms=%s ua=%s",
                rid,
                request.method,
                request.url.path,
                getattr(response, "status_code", "unknown"),
                duration_ms,
                request.headers.get("user-agent", "-"),
            )
            response.headers["X-Request-ID"] = rid
            response.headers["X-Response-Time"] = f"{duration_ms}ms"
            return response
        except Exception as exc:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.exception(
                "rid=%s method=%s path=%s status=500 duration_ms=%s error=%s",
                rid, request.method, request.url.path, duration_ms, repr(exc)
            )
            raise

    # -------------------------
    # Middleware de segurança (headers)
    # -------------------------
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
        response.headers["Cross-Origin-Opener-Policy"] = "same-origin"

        # HSTS apenas em HTTPS
        if settings.enable_hsts and request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"

        return response

    # Rotas
    app.include_router(cobranca.router)
    app.include_router(disparo.router)

    @app.get("/")
    async def read_root():
        return {"message": "Cobranças API está online!"}

    return app


app = create_app()
