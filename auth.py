from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Dict, Optional

from flask import current_app, g, request
from jose import JWTError, jwt

from admin import AdminCredentials
from errors import AuthError

ALGORITHM = "HS256"


def bearer_token(header: Optional[str]) -> str:
    scheme, _, token = (header or "").strip().partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


class TokenIssuer:
    """Issues and checks the signed bearer tokens handed out at login."""

    def __init__(self, secret: str, admin: AdminCredentials, ttl_hours: int = 24) -> None:
        self.secret = secret
        self.admin = admin
        self.ttl = timedelta(hours=ttl_hours)

    def issue(self, username: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {"sub": username, "iat": now, "exp": now + self.ttl}
        return jwt.encode(claims, self.secret, algorithm=ALGORITHM)

    def authorize(self, token: str) -> Dict:
        if not token:
            raise AuthError("No token provided")
        try:
            claims = jwt.decode(token, self.secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            raise AuthError("Invalid token") from exc
        record = self.admin.get()
        if claims.get("sub") != record["username"]:
            raise AuthError("Invalid token")
        return self.admin.public(record)


def token_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        token = bearer_token(request.headers.get("Authorization"))
        g.admin = current_app.extensions["blog"].tokens.authorize(token)
        return view(*args, **kwargs)

    return wrapped
