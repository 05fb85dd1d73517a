"""
Storage API endpoints - signed blob downloads.
"""

import mimetypes
from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..container import AppServices
from ..utils.auth import decode_download_token
from .deps import get_services

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/signed/{token}")
async def signed_download(
    token: str,
    services: AppServices = Depends(get_services),
):
    """
    Download a blob with a signed token; no bearer header needed.

    Raises:
        HTTPException: 403 if the token is invalid or expired, 404 if the blob is gone
    """
    path = decode_download_token(token)
    if path is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired download link",
        )

    content = await services.blob_store.load(path)
    if content is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    filename = path.rsplit("/", 1)[-1]
    media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
