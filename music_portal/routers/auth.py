# music_portal/routers/auth.py
"""Login, token refresh and account endpoints."""
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user
from ..core.database import get_db
from ..schemas.auth_schemas import ChangePasswordRequest, LoginRequest, RefreshRequest
from ..services.auth_service import AuthService, serialize_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


@router.post("/login", response_model=dict)
async def login(payload: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """Exchange email and password for an access and refresh token pair"""
    ip_address = request.client.host if request.client else None
    return await AuthService(db).login(payload.email, payload.password, payload.school_slug, ip_address)


@router.post("/refresh", response_model=dict)
async def refresh(payload: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Rotate the refresh token"""
    return await AuthService(db).refresh(payload.refresh_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(payload: RefreshRequest, db: AsyncSession = Depends(get_db)):
    await AuthService(db).logout(payload.refresh_token)


@router.post("/logout-all", status_code=status.HTTP_204_NO_CONTENT)
async def logout_everywhere(
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Revoke every refresh token of the caller"""
    await AuthService(db).revoke_all_tokens(current.id)
    logger.info(f"User {current.id} signed out of all sessions")


@router.get("/me", response_model=dict)
async def me(current: CurrentUser = Depends(get_current_user)):
    return serialize_user(current.user)


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    payload: ChangePasswordRequest,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await AuthService(db).change_password(current.user, payload.current_password, payload.new_password)
