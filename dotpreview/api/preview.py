from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..models.api import PreviewMetaResponse
from ..registry import PreviewHandle
from .dependencies import require_preview

router = APIRouter(tags=["preview"])

# rendered markup is displayed standalone; nothing it references may load
MARKUP_CSP = "default-src 'none'; img-src data:; style-src 'unsafe-inline'; sandbox"


def _headers(revision: int, timestamp: str) -> dict:
    return {
        "Cache-Control": "no-store",
        "X-Preview-Revision": str(revision),
        "X-Preview-Generated-At": timestamp,
    }


@router.get("/documents/{document_id}/preview", response_model=PreviewMetaResponse)
async def preview_meta(
    response: Response,
    handle: PreviewHandle = Depends(require_preview),
) -> PreviewMetaResponse:
    snapshot = handle.surface.snapshot()
    response.headers["Cache-Control"] = "no-store"
    return PreviewMetaResponse(
        document_id=handle.document_id,
        kind=snapshot.kind,
        status=snapshot.status,
        error=snapshot.error,
        zoom=snapshot.zoom,
        revision=snapshot.revision,
        updated_at=snapshot.iso_timestamp(),
        image_size=snapshot.image_size,
        has_markup=snapshot.markup is not None,
        scheduler=handle.scheduler.snapshot(),
    )


@router.get("/documents/{document_id}/preview/image")
async def preview_image(handle: PreviewHandle = Depends(require_preview)) -> Response:
    snapshot = handle.surface.snapshot()
    if snapshot.image is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No image rendered")
    return Response(
        content=snapshot.image,
        media_type="image/png",
        headers=_headers(snapshot.revision, snapshot.iso_timestamp()),
    )


@router.get("/documents/{document_id}/preview/markup")
async def preview_markup(handle: PreviewHandle = Depends(require_preview)) -> Response:
    snapshot = handle.surface.snapshot()
    if snapshot.markup is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No markup rendered")
    headers = _headers(snapshot.revision, snapshot.iso_timestamp())
    headers["Content-Security-Policy"] = MARKUP_CSP
    headers["X-Content-Type-Options"] = "nosniff"
    headers["X-Preview-Zoom"] = f"{snapshot.zoom:g}"
    return Response(content=snapshot.markup, media_type="image/svg+xml", headers=headers)
