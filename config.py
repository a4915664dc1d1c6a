# config.py
# Configuração lida do ambiente uma única vez, no startup do processo.

from __future__ import annotations
import os
from typing import List, Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv


class Settings(BaseModel):
    supabase_url: str
    supabase_anon_key: str
    # Ausência do webhook só é fatal para o relay, não para o resto da API
    n8n_webhook_url: Optional[str] = None
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    enable_hsts: bool = True
    notifier_timeout_seconds: float = 30.0
    status_write_attempts: int = 3
    log_level: str = "INFO"

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.supabase_url}/auth/v1"

    @property
    def realtime_url(self) -> str:
        base = self.supabase_url.replace("https://", "wss://").replace("http://", "ws://")
        return f"{base}/realtime/v1/websocket?apikey={self.supabase_anon_key}&vsn=1.0.0"


def load_settings() -> Settings:
    """Carrega as variáveis de ambiente (.env incluso) e monta o Settings."""
    load_dotenv()

    supabase_url = (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")
    supabase_anon_key = (os.getenv("SUPABASE_ANON_KEY") or "").strip()
    if not supabase_url or not supabase_anon_key:
        raise ValueError("Variáveis de ambiente SUPABASE_URL e SUPABASE_ANON_KEY devem ser definidas.")

    # CORS dinâmico por ambiente
    allowed_origins_env = os.getenv("ALLOWED_ORIGINS")
    if allowed_origins_env:
        origins = [o.strip() for o in allowed_origins_env.split(",") if o.strip()]
    else:
        origins = [os.getenv("FRONTEND_URL", "http://localhost:3000")]

    return Settings(
        supabase_url=supabase_url,
        supabase_anon_key=supabase_anon_key,
        n8n_webhook_url=(os.getenv("N8N_WEBHOOK_URL") or "").strip() or None,
        allowed_origins=origins,
        enable_hsts=os.getenv("ENABLE_HSTS", "1") == "1",
        notifier_timeout_seconds=float(os.getenv("NOTIFIER_TIMEOUT_SECONDS", "30")),
        status_write_attempts=max(1, int(os.getenv("STATUS_WRITE_ATTEMPTS", "3"))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
