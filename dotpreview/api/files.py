from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict

from fastapi import APIRouter, Depends

from ..models.api import FileChangeBatch, FileChangeResponse
from ..registry import PreviewRegistry, is_graph_file
from .dependencies import get_registry

router = APIRouter(tags=["files"])
logger = logging.getLogger(__name__)


def _read_source(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


@router.post("/files/changed", response_model=FileChangeResponse)
async def files_changed(
    payload: FileChangeBatch,
    registry: PreviewRegistry = Depends(get_registry),
) -> FileChangeResponse:
    """Re-render every open preview whose backing graph file changed."""

    result = FileChangeResponse()
    texts: Dict[Path, str] = {}
    for change in payload.changes:
        if not is_graph_file(change.path):
            result.ignored.append(change.path)
            continue
        handles = registry.documents_for_path(change.path)
        if not handles:
            result.ignored.append(change.path)
            continue

        path = registry.resolve_path(change.path)
        text = change.text
        if text is None:
            text = texts.get(path)
        if text is None:
            try:
                text = await asyncio.to_thread(_read_source, path)
            except OSError as exc:
                logger.warning("Could not read changed file %s: %s", path, exc)
                result.errors[change.path] = str(exc)
                continue
        texts[path] = text

        for handle in handles:
            await registry.update(handle.document_id, text, force=True)
            result.rerendered.append(handle.document_id)
    return result
