from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.api.auth_utils import (
    clear_refresh_cookie,
    enforce_login_limits,
    record_login_attempt,
    refresh_token_from_request,
    set_refresh_cookie,
)
from app.core.errors import AuthenticationFailed
from app.core.limiter import auth_rate_limit, limiter
from app.core.settings import settings
from app.db.session import get_db
from app.models import User
from app.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    PasswordResetRequested,
    RefreshRequest,
    RegisterRequest,
    TokenPair,
    UserOut,
)
from app.schemas.common import MessageResponse
from app.services import accounts, sessions
from app.services.activity import log_activity

router = APIRouter(prefix="/auth", tags=["auth"])

RESET_REQUESTED_MESSAGE = "If an account exists for that email, a password reset link has been sent"


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(auth_rate_limit)
async def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> AuthResponse:
    user = await accounts.register_user(db, meta, payload)
    accounts.mark_logged_in(db, user)
    tokens, _ = await sessions.issue_tokens(db, user, meta)
    await db.commit()
    set_refresh_cookie(response, tokens.refresh_token)
    return AuthResponse(user=UserOut.model_validate(user), tokens=tokens)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(auth_rate_limit)
async def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> AuthResponse:
    client_ip = meta.ip_address or "unknown"
    email = str(credentials.email)
    await enforce_login_limits(client_ip, email)
    try:
        user = await accounts.authenticate(db, email, credentials.password)
    except AuthenticationFailed:
        await record_login_attempt(email, success=False)
        raise
    await record_login_attempt(email, success=True)

    accounts.mark_logged_in(db, user)
    tokens, _ = await sessions.issue_tokens(db, user, meta)
    log_activity(
        db,
        meta,
        user_id=user.id,
        action="user.login",
        resource_type="user",
        resource_id=user.id,
    )
    await db.commit()
    set_refresh_cookie(response, tokens.refresh_token)
    return AuthResponse(user=UserOut.model_validate(user), tokens=tokens)


@router.post("/refresh", response_model=TokenPair)
async def refresh_tokens(
    request: Request,
    response: Response,
    payload: RefreshRequest | None = None,
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> TokenPair:
    token = refresh_token_from_request(request, payload.refresh_token if payload else None)
    _, tokens = await sessions.rotate_refresh_token(db, meta, token)
    await db.commit()
    set_refresh_cookie(response, tokens.refresh_token)
    return tokens


@router.post("/logout", status_code=204)
async def logout(
    response: Response,
    current_user: User = Depends(deps.get_current_user_allow_password_change),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> None:
    await sessions.revoke_everything(db, current_user)
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="user.logout",
        resource_type="user",
        resource_id=current_user.id,
    )
    await db.commit()
    clear_refresh_cookie(response)
    return None


@router.get("/me", response_model=UserOut)
async def read_current_user(
    current_user: User = Depends(deps.get_current_user_allow_password_change),
) -> UserOut:
    return UserOut.model_validate(current_user)


@router.post("/password/change", response_model=TokenPair)
async def change_password(
    payload: ChangePasswordRequest,
    response: Response,
    current_user: User = Depends(deps.get_current_user_allow_password_change),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> TokenPair:
    await accounts.change_password(
        db,
        meta,
        current_user,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    tokens, _ = await sessions.issue_tokens(db, current_user, meta)
    await db.commit()
    set_refresh_cookie(response, tokens.refresh_token)
    return tokens


@router.post("/password-reset/request", response_model=PasswordResetRequested)
@limiter.limit(auth_rate_limit)
async def request_password_reset(
    payload: PasswordResetRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> PasswordResetRequested:
    token = await accounts.request_password_reset(db, str(payload.email))
    expose = settings.environment.lower() == "development"
    return PasswordResetRequested(
        message=RESET_REQUESTED_MESSAGE,
        reset_token=token if expose else None,
    )


@router.post("/password-reset/confirm", response_model=MessageResponse)
@limiter.limit(auth_rate_limit)
async def confirm_password_reset(
    payload: PasswordResetConfirm,
    request: Request,
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> MessageResponse:
    await accounts.confirm_password_reset(
        db,
        meta,
        reset_token=payload.reset_token,
        new_password=payload.new_password,
    )
    await db.commit()
    return MessageResponse(message="Password has been reset")
