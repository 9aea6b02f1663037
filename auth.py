from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


TOKEN_MAX_AGE_HOURS = 24 * 30


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="owner-token")


def issue_owner_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def resolve_owner_token(
    token: str, max_age_hours: int = TOKEN_MAX_AGE_HOURS
) -> Optional[int]:
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None
    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        return None
    return user_id


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def current_owner_id(authorization: Optional[str] = Header(default=None)) -> int:
    token = _bearer(authorization)
    user_id = resolve_owner_token(token) if token else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


def require_job_secret(authorization: Optional[str] = Header(default=None)) -> None:
    secret = get_settings().notification_job_secret
    if secret is None:
        return
    if _bearer(authorization) != secret:
        raise HTTPException(status_code=401, detail="Invalid job secret")
