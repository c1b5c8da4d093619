from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from ..preview.annotations import Annotation
from ..rendering.models import Issue


class IssueModel(BaseModel):
    severity: Literal["error", "warning"]
    line: int
    message: str
    numbered: bool = True

    @classmethod
    def from_issue(cls, issue: Issue) -> "IssueModel":
        return cls(
            severity=issue.severity.name.lower(),
            line=issue.line,
            message=issue.message,
            numbered=issue.numbered,
        )


class AnnotationModel(BaseModel):
    line: int = Field(..., description="0-based line of the document")
    start: int
    end: int
    severity: Literal["error", "warning"]
    message: str
    tooltip: str

    @classmethod
    def from_annotation(cls, annotation: Annotation) -> "AnnotationModel":
        return cls(
            line=annotation.line,
            start=annotation.start,
            end=annotation.end,
            severity=annotation.severity.name.lower(),
            message=annotation.message,
            tooltip=annotation.tooltip,
        )


class DocumentUpdateRequest(BaseModel):
    text: str = Field(..., description="Full DOT source of the document")
    force: bool = Field(False, description="Render even when the text did not change")
    path: Optional[str] = Field(default=None, description="File backing the document, for change events")
    format: Optional[Literal["png", "svg"]] = Field(
        default=None,
        description="Output format; only used when the preview is opened",
    )


class ZoomRequest(BaseModel):
    percent: float = Field(..., gt=0, le=1000, description="Zoom level in percent")


class DocumentStatusResponse(BaseModel):
    document_id: str
    path: Optional[str] = None
    scheduler: Dict[str, Any]


class AnnotationsResponse(BaseModel):
    document_id: str
    sequence_id: Optional[int] = None
    issues: List[IssueModel] = Field(default_factory=list)
    annotations: List[AnnotationModel] = Field(default_factory=list)
    raw: str = ""


class PreviewMetaResponse(BaseModel):
    document_id: str
    kind: str
    status: Optional[str] = None
    error: Optional[str] = None
    zoom: float
    revision: int
    updated_at: str
    image_size: Optional[Tuple[int, int]] = None
    has_markup: bool = False
    scheduler: Dict[str, Any]


class FileChange(BaseModel):
    path: str
    text: Optional[str] = Field(default=None, description="New content; read from disk when omitted")


class FileChangeBatch(BaseModel):
    changes: List[FileChange] = Field(default_factory=list)


class FileChangeResponse(BaseModel):
    rerendered: List[str] = Field(default_factory=list)
    ignored: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class ValidateRequest(BaseModel):
    text: str


class ValidateResponse(BaseModel):
    skipped: bool = False
    exit_code: Optional[int] = None
    issues: List[IssueModel] = Field(default_factory=list)
    annotations: List[AnnotationModel] = Field(default_factory=list)
    raw: str = ""


class HealthResponse(BaseModel):
    ok: bool
    executable: Optional[str] = None
    previews: int
