import logging

from fastapi import APIRouter, Depends, HTTPException, status

from aura_runner.api.deps import get_auth, require_user
from aura_runner.core.auth import AuthSession
from aura_runner.core.errors import ApiNetworkError, AuthError
from aura_runner.schemas.auth import LoginRequest, LoginResponse


router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=LoginResponse)
async def login_user(payload: LoginRequest, auth: AuthSession = Depends(get_auth)) -> LoginResponse:
    try:
        user = await auth.login(payload.email, payload.password)
    except ApiNetworkError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc
    return LoginResponse(user_id=user.id, email=user.email, role=user.role, expires_at=auth.expires_at)


@router.post("/logout")
async def logout_user(auth: AuthSession = Depends(get_auth)) -> dict:
    await auth.logout()
    return {"signed_out": True}


@router.get("/me")
async def get_me(auth: AuthSession = Depends(require_user)) -> dict:
    if not await auth.ensure_fresh():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    try:
        user = auth.user or await auth.verify()
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    full_name = f"{user.first_name} {user.last_name}".strip()
    if not full_name and user.email:
        full_name = user.email.split("@", 1)[0]
    logger.info("Auth me resolved", extra={"user_id": user.id, "role": user.role})
    return {
        "id": user.id,
        "email": user.email,
        "full_name": full_name,
        "role": user.role,
        "is_admin": auth.is_admin,
        "is_manager": auth.is_manager,
        "is_student": auth.is_student,
    }
