from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging
import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

logger = logging.getLogger("cobrancas.auth")

bearer_scheme = HTTPBearer(auto_error=False)

ALGORITHMS = ["RS256", "ES256"]


class TokenVerificationError(Exception):
    """Token ausente, malformado, expirado ou assinado por chave desconhecida."""


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str]
    # Repassado ao Supabase para que as policies de RLS valham em cada chamada
    token: str


class SupabaseTokenVerifier:
    """Valida JWTs do Supabase Auth contra o JWKS do projeto.

    Criado uma vez no startup; o cache de chaves vive na instância, indexado por KID.
    """

    def __init__(self, auth_url: str, client: httpx.AsyncClient):
        self.auth_url = auth_url
        self._client = client
        self._jwks: Dict[str, Any] = {"keys": []}

    async def _fetch_jwks(self) -> Dict[str, Any]:
        resp = await self._client.get(f"{self.auth_url}/.well-known/jwks.json", timeout=10.0)
        resp.raise_for_status()
        return resp.json()

    @staticmethod
    def _find_key_by_kid(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
        for k in jwks.get("keys", []):
            if k.get("kid") == kid:
                return k
        return None

    async def key_for_token(self, token: str) -> Dict[str, Any]:
        """Seleciona a chave pública correta do JWKS com base no 'kid' do token."""
        try:
            # Decodifica apenas o header do JWT (sem validar) para extrair o KID
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenVerificationError("Token malformado") from exc
        kid = header.get("kid")
        if not kid:
            raise TokenVerificationError("Token sem KID")

        key = self._find_key_by_kid(self._jwks, kid)
        if key:
            return key

        # Atualiza JWKS e tenta novamente
        try:
            jwks = await self._fetch_jwks()
        except httpx.HTTPError as exc:
            logger.error("jwks_fetch_failed error=%r", exc)
            raise TokenVerificationError("Falha ao buscar JWKS no Supabase") from exc
        self._jwks = jwks

        key = self._find_key_by_kid(jwks, kid)
        if not key:
            raise TokenVerificationError("Chave pública não encontrada para o token")
        return key

    async def verify(self, token: str) -> AuthenticatedUser:
        key = await self.key_for_token(token)
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=ALGORITHMS,
                audience="authenticated",
                issuer=self.auth_url,
                options={"verify_aud": True, "verify_iss": True},
            )
        except JWTError as exc:
            raise TokenVerificationError(str(exc)) from exc

        user_id = payload.get("sub")
        if not user_id:
            raise TokenVerificationError("Token sem subject")
        return AuthenticatedUser(id=user_id, email=payload.get("email"), token=token)


def get_verifier(request: Request) -> SupabaseTokenVerifier:
    return request.app.state.verifier


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: SupabaseTokenVerifier = Depends(get_verifier),
) -> AuthenticatedUser:
    """Valida o JWT do Supabase e retorna o usuário autenticado."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Credenciais inválidas. Por favor, faça login novamente.",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise credentials_exception
    try:
        return await verifier.verify(credentials.credentials)
    except TokenVerificationError as exc:
        logger.info("token_rejected reason=%s", exc)
        raise credentials_exception
