from __future__ import annotations

from fastapi import APIRouter, Depends

from ..app import AppState, get_app_state
from ..models.api import HealthResponse

router = APIRouter(tags=["status"])


@router.get("/health", response_model=HealthResponse)
async def health(state: AppState = Depends(get_app_state)) -> HealthResponse:
    return HealthResponse(
        ok=True,
        executable=state.runner.executable,
        previews=len(state.registry),
    )
