from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession
import re

from campus_market.core.config import settings
from campus_market.db.session import get_db
from campus_market.models.user import User, UserProfileUpdate, UserSyncRequest
from campus_market.services.auth import CurrentUser, get_current_user
from campus_market.services.user import get_or_create_local_user

router = APIRouter(prefix="/auth", tags=["auth"])

def _email_allowed(email: str) -> bool:
    domain = re.escape(settings.ALLOWED_EMAIL_DOMAIN.lower())
    return re.fullmatch(rf"[a-zA-Z0-9._%+-]+@{domain}", email.lower()) is not None

@router.post("/sync")
async def sync_user(
    body: UserSyncRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not _email_allowed(current_user.email):
        raise HTTPException(
            status_code=400,
            detail=f"Registration restricted to {settings.ALLOWED_EMAIL_DOMAIN} addresses",
        )

    user, created = await get_or_create_local_user(
        db, current_user, name=body.name, university_id=body.university_id
    )
    content = jsonable_encoder({"user": User.model_validate(user)})
    return JSONResponse(status_code=201 if created else 200, content=content)

@router.get("/me")
async def get_me(current_user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    user, _ = await get_or_create_local_user(db, current_user)
    return {"user": User.model_validate(user)}

@router.put("/me")
async def update_profile(
    body: UserProfileUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user, _ = await get_or_create_local_user(db, current_user)

    updates = body.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(user, field, value)
    await db.commit()
    await db.refresh(user)

    return {"user": User.model_validate(user)}
