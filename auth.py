from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import Settings

BCRYPT_MAX_BYTES = 72


class AuthenticationError(ValueError):
    pass


def ensure_password_length(password: str) -> str:
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise AuthenticationError("Password is too long")
    return password


def hash_password(password: str) -> str:
    ensure_password_length(password)
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash or over-long password
        return False


class TokenService:
    """Issues and verifies signed, time-limited bearer tokens carrying a user id."""

    def __init__(self, settings: Settings) -> None:
        self.serializer = URLSafeTimedSerializer(settings.token_secret, salt="auth-token")
        self.max_age_secs = settings.token_max_age_secs

    def issue(self, user_id: int) -> str:
        return self.serializer.dumps({"u": user_id})

    def verify(self, token: str) -> int:
        try:
            data = self.serializer.loads(token, max_age=self.max_age_secs)
        except SignatureExpired as exc:
            raise AuthenticationError("Token has expired") from exc
        except BadSignature as exc:
            raise AuthenticationError("Token is not valid") from exc

        user_id = data.get("u") if isinstance(data, dict) else None
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise AuthenticationError("Token is not valid")
        return user_id


def extract_token(x_auth_token: Optional[str], authorization: Optional[str]) -> str:
    if x_auth_token and x_auth_token.strip():
        return x_auth_token.strip()
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    raise AuthenticationError("No token, authorization denied")
