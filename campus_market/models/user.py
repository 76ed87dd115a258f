from pydantic import Field
from typing import Optional
from datetime import datetime

from campus_market.models.base import ApiModel

class UserPublic(ApiModel):
    id: str
    name: str
    avatar_url: Optional[str] = None

class UserSummary(UserPublic):
    email: str

class User(ApiModel):
    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None
    university_id: Optional[str] = None
    bio: Optional[str] = None
    is_admin: bool = False
    is_blocked: bool = False
    created_at: datetime
    updated_at: datetime

class UserSyncRequest(ApiModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    university_id: Optional[str] = Field(None, max_length=100)

class UserProfileUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
