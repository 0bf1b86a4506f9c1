"""Authentication helpers for Supabase-issued JWTs and provider webhooks."""
from __future__ import annotations

import hmac
from typing import Any, Dict

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

ALGORITHM = "HS256"
AUTH_SCHEME = HTTPBearer(auto_error=False)


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    # Supabase sets aud="authenticated"; the signature is what we rely on.
    return jwt.decode(token, secret, algorithms=[ALGORITHM], options={"verify_aud": False})


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(AUTH_SCHEME),
) -> Dict[str, Any]:
    if creds is None or not creds.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
        )
    secret = request.app.state.settings.supabase_jwt_secret.get_secret_value()
    try:
        payload = decode_token(creds.credentials, secret)
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token"
        )

    user_id = str(payload.get("sub", "")).strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject"
        )
    return {
        "id": user_id,
        "email": payload.get("email"),
    }


def verify_webhook_token(
    request: Request,
    x_webhook_token: str | None = Header(default=None, alias="X-Webhook-Token"),
) -> None:
    """Reject provider notifications that do not carry the shared webhook secret."""
    expected = request.app.state.settings.pix_webhook_token.get_secret_value()
    if not expected or not x_webhook_token or not hmac.compare_digest(
        x_webhook_token.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token"
        )
