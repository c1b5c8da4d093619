from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..errors import SchedulerClosedError
from ..models.api import (
    AnnotationModel,
    AnnotationsResponse,
    DocumentStatusResponse,
    DocumentUpdateRequest,
    IssueModel,
    ZoomRequest,
)
from ..preview.annotations import annotate
from ..registry import PreviewHandle, PreviewRegistry
from .dependencies import get_registry, require_preview

router = APIRouter(tags=["documents"])


def _status(handle: PreviewHandle) -> DocumentStatusResponse:
    return DocumentStatusResponse(
        document_id=handle.document_id,
        path=str(handle.path) if handle.path else None,
        scheduler=handle.scheduler.snapshot(),
    )


@router.put(
    "/documents/{document_id}",
    response_model=DocumentStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def update_document(
    document_id: str,
    payload: DocumentUpdateRequest,
    registry: PreviewRegistry = Depends(get_registry),
) -> DocumentStatusResponse:
    try:
        handle = await registry.update(
            document_id,
            payload.text,
            force=payload.force,
            path=payload.path,
            output_format=payload.format,
        )
    except SchedulerClosedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _status(handle)


@router.put("/documents/{document_id}/zoom", response_model=DocumentStatusResponse)
async def set_zoom(
    payload: ZoomRequest,
    handle: PreviewHandle = Depends(require_preview),
) -> DocumentStatusResponse:
    try:
        handle.scheduler.set_zoom(payload.percent)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _status(handle)


@router.get("/documents/{document_id}/annotations", response_model=AnnotationsResponse)
async def document_annotations(handle: PreviewHandle = Depends(require_preview)) -> AnnotationsResponse:
    report = handle.scheduler.last_report
    if report is None:
        return AnnotationsResponse(document_id=handle.document_id)
    annotations = annotate(report.issues, handle.text or "")
    return AnnotationsResponse(
        document_id=handle.document_id,
        sequence_id=report.sequence_id,
        issues=[IssueModel.from_issue(issue) for issue in report.issues],
        annotations=[AnnotationModel.from_annotation(item) for item in annotations],
        raw=report.raw_text,
    )


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_document(
    document_id: str,
    registry: PreviewRegistry = Depends(get_registry),
) -> Response:
    if not await registry.close(document_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Preview not open")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
