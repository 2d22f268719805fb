"""Account routes: signup, login, refresh, email verification and password management."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .. import auth
from ..auth import Identity
from ..database import get_session
from ..dependencies import get_notifier
from ..errors import AuthenticationFailure
from ..models import AccountStatus, ConsumedToken, User
from ..notifier import Notifier
from ..time_utils import utcnow
from ..tokens import Credential, InvalidToken, TokenService, TokenType, get_token_service
from .schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    PrincipalPublic,
    RefreshRequest,
    ResendVerificationRequest,
    ResetPasswordRequest,
    SignupRequest,
)

logger = logging.getLogger("app.routes.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _verify_single_use(tokens: TokenService, token: str, purpose: TokenType) -> Credential:
    result = tokens.verify(token, expected_type=purpose)
    if isinstance(result, InvalidToken):
        raise HTTPException(status_code=400, detail=f"Invalid or expired token ({result.reason.value})")
    if not result.email or not result.jti:
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    return result


async def _ensure_unconsumed(session, credential: Credential) -> None:
    existing = await session.exec(select(ConsumedToken).where(ConsumedToken.jti == credential.jti))
    if existing.first():
        raise HTTPException(status_code=400, detail="Token has already been used")


async def _commit_redemption(session, credential: Credential) -> None:
    """Record the token as consumed in the same transaction as its effect."""
    session.add(
        ConsumedToken(jti=credential.jti, purpose=credential.type.value, email=credential.email)
    )
    try:
        await session.commit()
    except IntegrityError:
        # Lost a race with a concurrent redemption of the same token.
        await session.rollback()
        raise HTTPException(status_code=400, detail="Token has already been used")


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignupRequest,
    session=Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
    notifier: Notifier = Depends(get_notifier),
):
    if await auth.get_user_by_email(session, payload.email):
        raise HTTPException(status_code=409, detail="An account with this email already exists")

    try:
        user = await auth.create_user(session, payload.email, payload.password, name=payload.name)
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=409, detail="An account with this email already exists")

    token = tokens.issue_single_use(TokenType.EMAIL_VERIFICATION, user.email)
    notifier.notify_verification(user.email, token)
    logger.info("Account created", extra={"user_id": user.id})
    return {
        "message": "Account created. Please check your email to verify your address.",
        "user_id": user.id,
    }


@router.post("/login")
async def login(
    payload: LoginRequest,
    session=Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    user = await auth.authenticate_user(session, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.status != AccountStatus.ACTIVE.value:
        raise HTTPException(status_code=403, detail=f"Account is {user.status}")

    user.last_login = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)

    pair = tokens.issue_pair(user)
    return {
        "access_token": pair.access_token,
        "refresh_token": pair.refresh_token,
        "token_type": pair.token_type,
        "user": PrincipalPublic.from_user(user),
    }


@router.post("/refresh")
async def refresh(
    payload: RefreshRequest,
    session=Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    result = tokens.verify(payload.refresh_token, expected_type=TokenType.REFRESH)
    if isinstance(result, InvalidToken):
        raise AuthenticationFailure(result.reason.value, result.message)

    principal_id = result.principal_id
    user = await session.get(User, principal_id) if principal_id is not None else None
    if not user or user.status != AccountStatus.ACTIVE.value:
        raise AuthenticationFailure("malformed", "Account no longer available")

    # The new access token carries the role as stored now, not as it was at login.
    return {
        "access_token": tokens.issue_access(user),
        "token_type": "bearer",
        "user": PrincipalPublic.from_user(user),
    }


@router.get("/verify-email")
async def verify_email(
    token: str = Query(...),
    session=Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    credential = _verify_single_use(tokens, token, TokenType.EMAIL_VERIFICATION)
    await _ensure_unconsumed(session, credential)

    user = await auth.get_user_by_email(session, credential.email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.email_verified = True
    user.updated_at = utcnow()
    session.add(user)
    await _commit_redemption(session, credential)
    return {"message": "Email verified successfully"}


@router.post("/resend-verification")
async def resend_verification(
    payload: ResendVerificationRequest,
    session=Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
    notifier: Notifier = Depends(get_notifier),
):
    user = await auth.get_user_by_email(session, payload.email)
    if not user:
        logger.info("Verification resend requested for unknown account")
        return {"message": "If an account exists for this email, a verification email has been sent."}
    if user.email_verified:
        raise HTTPException(status_code=400, detail="Email already verified")

    token = tokens.issue_single_use(TokenType.EMAIL_VERIFICATION, user.email)
    notifier.notify_verification(user.email, token)
    return {"message": "If an account exists for this email, a verification email has been sent."}


@router.get("/me", response_model=PrincipalPublic)
async def me(identity: Identity = Depends(auth.authenticate), session=Depends(get_session)):
    user = await session.get(User, identity.id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return PrincipalPublic.from_user(user)


@router.post("/forgot-password")
async def forgot_password(
    payload: ForgotPasswordRequest,
    session=Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
    notifier: Notifier = Depends(get_notifier),
):
    user = await auth.get_user_by_email(session, payload.email)
    if user and user.status == AccountStatus.ACTIVE.value:
        token = tokens.issue_single_use(TokenType.PASSWORD_RESET, user.email)
        notifier.notify_password_reset(user.email, user.name, token)
    else:
        logger.info("Password reset requested for unknown or inactive account")
    # Same answer either way so the endpoint cannot be used to probe for accounts.
    return {"message": "If an account exists for this email, a password reset link has been sent."}


@router.get("/verify-reset-token")
async def verify_reset_token(
    token: str = Query(...),
    session=Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    """Check a reset token before showing the reset form. The token stays redeemable."""
    credential = _verify_single_use(tokens, token, TokenType.PASSWORD_RESET)
    await _ensure_unconsumed(session, credential)
    if not await auth.get_user_by_email(session, credential.email):
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    return {"valid": True, "email": credential.email, "expires_at": credential.expires_at.isoformat()}


@router.post("/reset-password")
async def reset_password(
    payload: ResetPasswordRequest,
    session=Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    credential = _verify_single_use(tokens, payload.token, TokenType.PASSWORD_RESET)
    await _ensure_unconsumed(session, credential)

    user = await auth.get_user_by_email(session, credential.email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.password_hash = auth.get_password_hash(payload.new_password)
    user.updated_at = utcnow()
    session.add(user)
    await _commit_redemption(session, credential)
    logger.info("Password reset completed", extra={"user_id": user.id})
    return {"message": "Password has been reset successfully"}


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    identity: Identity = Depends(auth.authenticate),
    session=Depends(get_session),
):
    """Change the caller's password. Requires the current password."""
    user = await session.get(User, identity.id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not auth.verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    if auth.verify_password(payload.new_password, user.password_hash):
        raise HTTPException(status_code=400, detail="New password must be different from current password")

    user.password_hash = auth.get_password_hash(payload.new_password)
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    logger.info("Password changed", extra={"user_id": user.id})
    return {"message": "Password changed successfully"}
