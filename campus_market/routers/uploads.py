from fastapi import APIRouter, Depends
import logging

from campus_market.models.upload import UploadUrlRequest, UploadUrlResponse
from campus_market.services.auth import CurrentUser, get_current_user
from campus_market.services.storage import ObjectStorage, get_object_storage

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/uploads", tags=["uploads"])

@router.post("/signed-url", response_model=UploadUrlResponse)
async def get_upload_url(
    body: UploadUrlRequest,
    current_user: CurrentUser = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_object_storage),
):
    """Sign a short-lived PUT URL for one product image"""
    upload = storage.create_upload_url(body.filename, body.content_type, body.folder)

    logger.info(f"Signed upload {upload.key} for {current_user.id}")
    return UploadUrlResponse(url=upload.url, key=upload.key, public_url=upload.public_url)
