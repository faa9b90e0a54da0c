from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse
import os

from ..uploads import UnsafePath, guess_content_type, resolve_upload_path

router = APIRouter(prefix="/api/uploads", tags=["uploads"])


@router.get("/{file_path:path}")
def serve_upload(file_path: str):
    try:
        path = resolve_upload_path(file_path)
    except UnsafePath:
        raise HTTPException(status_code=400, detail="invalid file path") from None
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="file not found")
    return FileResponse(
        path,
        media_type=guess_content_type(path),
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
