from pydantic import Field

from campus_market.models.base import ApiModel

class UploadUrlRequest(ApiModel):
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str
    folder: str = Field("products", pattern=r"^[A-Za-z0-9_-]{1,50}$")

class UploadUrlResponse(ApiModel):
    url: str
    key: str
    public_url: str
