from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.db import functions as queries
from campus_market.db.models import User
from campus_market.services.auth import CurrentUser

logger = logging.getLogger(__name__)

def default_display_name(email: str, name: Optional[str] = None) -> str:
    return name or email.split("@")[0]

async def get_or_create_local_user(
    db: AsyncSession,
    current_user: CurrentUser,
    name: Optional[str] = None,
    university_id: Optional[str] = None,
) -> tuple:
    """Return (user, created) for the authenticated identity, mirroring it locally if needed"""
    user = await queries.get_user_by_id(db, current_user.id)
    if user:
        return user, False

    # Same id as the identity provider so tokens map straight to rows
    user = User(
        id=current_user.id,
        email=current_user.email,
        name=default_display_name(current_user.email, name or current_user.name),
        university_id=university_id,
        is_admin=False,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info(f"Mirrored identity {current_user.id} as local user")
    return user, True
