from __future__ import annotations

from fastapi import Depends, HTTPException, status

from ..app import AppState, get_app_state
from ..registry import PreviewHandle, PreviewRegistry


def get_registry(state: AppState = Depends(get_app_state)) -> PreviewRegistry:
    return state.registry


def require_preview(
    document_id: str,
    registry: PreviewRegistry = Depends(get_registry),
) -> PreviewHandle:
    handle = registry.get(document_id)
    if handle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Preview not open")
    return handle
