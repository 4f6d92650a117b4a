from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="access-token")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_access_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def read_access_token(token: str, max_age_secs: Optional[int] = None) -> Optional[int]:
    """Return the user id carried by ``token``.

    ``None`` covers every rejection: bad signature, expired token, or a
    payload without an integer user id.
    """
    if max_age_secs is None:
        max_age_secs = get_settings().token_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except SignatureExpired:
        return None
    except BadSignature:
        return None

    if not isinstance(data, dict):
        return None
    user_id = data.get("u")
    if not isinstance(user_id, int):
        return None
    return user_id


def bearer_token_from_header(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
