import base64
import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import bcrypt
from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from app.core.config import settings

ALGORITHM = "HS256"
BCRYPT_MAX_BYTES = 72
_CREDENTIAL_PREFIX = "v2:"


class TokenValidationError(ValueError):
    pass


@dataclass(frozen=True)
class TokenMetadata:
    subject: str
    token_type: str
    jti: str
    expires_at: datetime


def _password_bytes(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes; newer releases raise instead of truncating.
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(_password_bytes(password), hashed.encode("utf-8"))


def create_token(
    subject: str,
    expires_delta: timedelta,
    token_type: str,
    jti: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "type": token_type,
        "jti": jti or str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str, *, expected_type: str | None = None) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    if not payload.get("sub"):
        raise TokenValidationError("Invalid token subject")
    if expected_type and payload.get("type") != expected_type:
        raise TokenValidationError("Invalid token type")
    if not payload.get("jti"):
        raise TokenValidationError("Invalid token id")
    return payload


def get_token_metadata(token: str, *, expected_type: str | None = None) -> TokenMetadata:
    payload = decode_token(token, expected_type=expected_type)
    exp = payload.get("exp")
    if not exp:
        raise TokenValidationError("Invalid token expiration")
    return TokenMetadata(
        subject=str(payload["sub"]),
        token_type=str(payload["type"]),
        jti=str(payload["jti"]),
        expires_at=datetime.fromtimestamp(int(exp), tz=timezone.utc),
    )


def create_access_token(user_id: str) -> str:
    return create_token(
        subject=user_id,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        token_type="access",
    )


def create_refresh_token(user_id: str) -> str:
    return create_token(
        subject=user_id,
        expires_delta=timedelta(days=settings.refresh_token_expire_days),
        token_type="refresh",
    )


def sign_external_token(claims: dict[str, Any], *, secret: str, ttl_seconds: int) -> str:
    """Sign claims for a third-party API that shares an HS256 secret with us (ZainCash)."""
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload["iat"] = int(now.timestamp())
    payload["exp"] = int((now + timedelta(seconds=ttl_seconds)).timestamp())
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def verify_external_token(token: str, *, secret: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid external token") from exc


def _credential_cipher() -> Fernet:
    digest = hashlib.sha256(f"ad-credentials:{settings.secret_key}".encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_credential(plain_text: str) -> str:
    """Encrypt an ad-platform access token for storage; keyed by SECRET_KEY."""
    token = _credential_cipher().encrypt(plain_text.encode("utf-8"))
    return _CREDENTIAL_PREFIX + token.decode("ascii")


def decrypt_credential(cipher_text: str) -> str:
    if not cipher_text.startswith(_CREDENTIAL_PREFIX):
        raise TokenValidationError("Unknown credential format")
    try:
        raw = _credential_cipher().decrypt(cipher_text[len(_CREDENTIAL_PREFIX):].encode("ascii"))
    except InvalidToken as exc:
        # Written under a different SECRET_KEY, or tampered with.
        raise TokenValidationError("Credential cannot be decrypted") from exc
    return raw.decode("utf-8")
