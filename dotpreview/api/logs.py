from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..app import AppState, get_app_state

router = APIRouter(tags=["logs"])

TAIL_BLOCK_SIZE = 8192


class LogTailResponse(BaseModel):
    path: Optional[str] = None
    lines: List[str] = []


def read_tail(path: Path, limit: int, block_size: int = TAIL_BLOCK_SIZE) -> List[str]:
    """Return the last ``limit`` lines of ``path``, reading backwards from the end."""

    blocks: List[bytes] = []
    newlines = 0
    with path.open("rb") as handle:
        position = handle.seek(0, os.SEEK_END)
        while position > 0 and newlines <= limit:
            step = min(block_size, position)
            position -= step
            handle.seek(position)
            block = handle.read(step)
            blocks.append(block)
            newlines += block.count(b"\n")
    text = b"".join(reversed(blocks)).decode("utf-8", errors="replace")
    return text.splitlines()[-limit:]


@router.get("/logs/tail", response_model=LogTailResponse)
async def tail_logs(
    limit: int = Query(100, ge=1, le=1000, description="Number of log lines to return"),
    state: AppState = Depends(get_app_state),
) -> LogTailResponse:
    path = state.log_file
    if path is None:
        return LogTailResponse()
    if not path.is_file():
        return LogTailResponse(path=str(path))
    return LogTailResponse(path=str(path), lines=read_tail(path, limit))
