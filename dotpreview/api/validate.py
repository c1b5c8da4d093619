from __future__ import annotations

from fastapi import APIRouter, Depends

from ..app import AppState, get_app_state
from ..models.api import AnnotationModel, IssueModel, ValidateRequest, ValidateResponse
from ..preview.annotations import annotate
from ..rendering.validation import validate

router = APIRouter(tags=["validate"])


@router.post("/validate", response_model=ValidateResponse)
async def validate_source(
    payload: ValidateRequest,
    state: AppState = Depends(get_app_state),
) -> ValidateResponse:
    settings = state.settings
    result = await validate(
        state.runner,
        payload.text,
        settings.renderer.validation_timeout,
        max_chars=settings.preview.max_source_chars,
    )
    return ValidateResponse(
        skipped=result.skipped,
        exit_code=result.exit_code,
        issues=[IssueModel.from_issue(issue) for issue in result.issues],
        annotations=[AnnotationModel.from_annotation(item) for item in annotate(result.issues, payload.text)],
        raw=result.raw_text,
    )
