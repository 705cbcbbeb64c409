"""
Ediens Backend — Stored File Route
====================================

What:  Serves processed images and avatars from the storage root.
Security:
    - Paths resolve inside STORAGE_ROOT only (no ../ escapes)
    - Raw uploads in tmp/ are never served
"""

from fastapi import APIRouter
from fastapi.responses import FileResponse

from ediens.schemas.common import ErrorResponse
from ediens.services.file_service import file_service

router = APIRouter(tags=["Files"])


@router.get(
    "/uploads/{file_path:path}",
    summary="Serve an uploaded image",
    responses={
        200: {"description": "Image file"},
        400: {"description": "Invalid path", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
)
async def serve_file(file_path: str) -> FileResponse:
    full_path = file_service.resolve_stored_path(file_path)
    return FileResponse(
        path=str(full_path),
        media_type="image/jpeg",
        # Stored names are UUIDs; content never changes
        headers={"Cache-Control": "public, max-age=86400"},
    )
