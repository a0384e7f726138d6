from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.db import get_db
from buddy.models import User
from buddy.services.account_service import get_profile
from buddy.services.auth_service import get_current_user
from buddy.schemas import ProfileOut

router = APIRouter(prefix="/profiles", tags=["profiles"])

@router.get("/me", response_model=Optional[ProfileOut])
async def get_my_profile(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """내 프로필 (연결 코드 포함). 프로필이 없으면 null"""
    return await get_profile(db, current_user.id)
