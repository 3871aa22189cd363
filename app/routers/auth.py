import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.rate_limit import client_ip, login_rate_limiter
from app.core.security import (
    TokenValidationError,
    create_access_token,
    create_refresh_token,
    get_token_metadata,
    verify_password,
)
from app.core.security_current import get_current_user, resolve_platform_access
from app.models.refresh_token import RefreshToken
from app.models.user import User
from app.schemas.auth import (
    LoginIn,
    LogoutAllOut,
    LogoutIn,
    RefreshIn,
    SessionListOut,
    SessionOut,
    TokenOut,
    UserProfileOut,
)
from app.services.subscription_service import as_utc

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_PAIR_RESPONSE = {
    200: {
        "description": "Access and refresh tokens",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
                    "refresh_token": "refresh-token",
                    "token_type": "bearer",
                }
            }
        },
    }
}


def _rate_key(identifier: str, ip_address: str) -> str:
    return f"{identifier.strip().lower()}:{ip_address}"


def _enforce_rate_limit(identifier: str, ip_address: str) -> str:
    key = _rate_key(identifier, ip_address)
    retry_after = login_rate_limiter.check(key)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _authenticate_user(db: Session, identifier: str, password: str) -> User:
    normalized_identifier = identifier.strip().lower()
    user = db.execute(
        select(User).where(
            or_(
                func.lower(User.email) == normalized_identifier,
                func.lower(User.username) == normalized_identifier,
            )
        )
    ).scalar_one_or_none()
    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


def issue_token_pair(
    db: Session, *, user_id: str, request: Request | None = None
) -> tuple[TokenOut, str]:
    """Create an access/refresh pair and persist the refresh token's jti."""
    access_token = create_access_token(user_id)
    refresh_token = create_refresh_token(user_id)
    refresh_meta = get_token_metadata(refresh_token, expected_type="refresh")
    user_agent = request.headers.get("user-agent") if request else None
    db.add(
        RefreshToken(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_jti=refresh_meta.jti,
            expires_at=refresh_meta.expires_at,
            created_by_ip=client_ip(request) if request else None,
            user_agent=user_agent[:255] if user_agent else None,
        )
    )
    return (
        TokenOut(access_token=access_token, refresh_token=refresh_token),
        refresh_meta.jti,
    )


def revoke_user_refresh_tokens(db: Session, user_id: str, *, reason: str) -> int:
    """Revoke every live refresh token of a user. Access tokens run out on their own."""
    result = db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=datetime.now(timezone.utc), revoked_reason=reason)
    )
    return result.rowcount or 0


def _login(db: Session, request: Request, identifier: str, password: str) -> TokenOut:
    ip_address = client_ip(request)
    key = _enforce_rate_limit(identifier, ip_address)
    try:
        user = _authenticate_user(db, identifier, password)
    except HTTPException as exc:
        if exc.status_code == 401:
            login_rate_limiter.register_failure(key)
        raise
    login_rate_limiter.register_success(key)
    user.last_login_at = datetime.now(timezone.utc)
    token_pair, _ = issue_token_pair(db, user_id=user.id, request=request)
    db.commit()
    return token_pair


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description="Authenticate with email/username and password.",
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    return _login(db, request, payload.identifier, payload.password)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description=(
        "Form-data login endpoint used by Swagger Authorize. "
        "Use your email or username in the `username` field."
    ),
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login_for_swagger(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    return _login(db, request, form_data.username, form_data.password)


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Get current user profile",
    description="Returns the authenticated user profile and their platform role.",
    responses=error_responses(401, 500),
)
def get_my_profile(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    access = resolve_platform_access(db, user.id)
    return UserProfileOut(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        phone_number=user.phone_number,
        is_super_admin=bool(user.is_super_admin),
        last_login_at=user.last_login_at,
        platform_id=access.platform.id if access else None,
        platform_role=access.role if access else None,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@router.post(
    "/refresh",
    response_model=TokenOut,
    summary="Refresh access token",
    description="Uses a valid refresh token to issue a fresh token pair. The old refresh token is revoked.",
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 500)},
)
def refresh_tokens(payload: RefreshIn, request: Request, db: Session = Depends(get_db)):
    try:
        refresh_meta = get_token_metadata(payload.refresh_token, expected_type="refresh")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    now = datetime.now(timezone.utc)
    token_row = db.execute(
        select(RefreshToken).where(
            and_(
                RefreshToken.token_jti == refresh_meta.jti,
                RefreshToken.user_id == refresh_meta.subject,
            )
        )
    ).scalar_one_or_none()
    expires_at = as_utc(token_row.expires_at) if token_row else None
    if not token_row or token_row.revoked_at is not None or not expires_at or expires_at <= now:
        raise HTTPException(status_code=401, detail="Refresh token is invalid or expired")

    token_row.revoked_at = now
    token_row.revoked_reason = "rotated"
    token_pair, new_jti = issue_token_pair(db, user_id=refresh_meta.subject, request=request)
    token_row.replaced_by_jti = new_jti
    db.commit()
    return token_pair


@router.post(
    "/logout",
    summary="Logout (revoke refresh token)",
    description="Revokes the provided refresh token.",
    responses=error_responses(422, 500),
)
def logout(payload: LogoutIn, db: Session = Depends(get_db)):
    try:
        refresh_meta = get_token_metadata(payload.refresh_token, expected_type="refresh")
    except TokenValidationError:
        return {"ok": True}

    db.execute(
        update(RefreshToken)
        .where(
            RefreshToken.token_jti == refresh_meta.jti,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=datetime.now(timezone.utc), revoked_reason="logout")
    )
    db.commit()
    return {"ok": True}


@router.get(
    "/sessions",
    response_model=SessionListOut,
    summary="List active sessions",
    description="Refresh tokens of the current user that are neither revoked nor expired, newest first.",
    responses=error_responses(401, 500),
)
def list_sessions(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = db.execute(
        select(RefreshToken)
        .where(
            RefreshToken.user_id == user.id,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > datetime.now(timezone.utc),
        )
        .order_by(RefreshToken.created_at.desc(), RefreshToken.id.asc())
    ).scalars().all()
    return SessionListOut(
        items=[
            SessionOut(
                id=row.id,
                created_at=row.created_at,
                expires_at=row.expires_at,
                created_by_ip=row.created_by_ip,
                user_agent=row.user_agent,
            )
            for row in rows
        ]
    )


@router.post(
    "/logout-all",
    response_model=LogoutAllOut,
    summary="Sign out everywhere",
    description="Revokes every refresh token of the current user. Access tokens expire on their own.",
    responses=error_responses(401, 500),
)
def logout_all(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    revoked = revoke_user_refresh_tokens(db, user.id, reason="logout")
    db.commit()
    return LogoutAllOut(revoked=revoked)
